# lq/analysis/types.py

from __future__ import annotations

import math
from dataclasses import dataclass, field

NAN = float("nan")


@dataclass(frozen=True)
class CounterSample:
    """
    One timestamped snapshot of the station counters.

    Absent values are NaN, which is distinct from a zero counter.

    Parameters
    ----------
    timestamp : float
        Monotonic clock reading (seconds) when the sample was taken.
    signal_dbm : float
        Signal strength in dBm.
    tx_packets, tx_retries, tx_failed, beacon_losses : float
        Transmit-side monotonic counters.
    rx_packets, rx_duplicates, rx_drops : float
        Receive-side monotonic counters.
    """
    timestamp: float
    signal_dbm: float = NAN
    tx_packets: float = NAN
    tx_retries: float = NAN
    tx_failed: float = NAN
    beacon_losses: float = NAN
    rx_packets: float = NAN
    rx_duplicates: float = NAN
    rx_drops: float = NAN

    def has(self, *names: str) -> bool:
        """True when every named counter is present."""
        return all(not math.isnan(getattr(self, n)) for n in names)


@dataclass(frozen=True)
class ChannelDelta:
    """
    Counter differences for one channel over one reporting interval.

    Parameters
    ----------
    packets : float
        Packet counter delta.
    events : dict[str, float]
        Error-event deltas keyed by counter name.
    interval_s : float
        Interval length in seconds.
    """
    packets: float
    events: dict[str, float]
    interval_s: float

    @property
    def valid(self) -> bool:
        return self.packets >= 0.0 and all(v >= 0.0 for v in self.events.values())

    def rate(self, name: str) -> float:
        return self.events[name] / self.interval_s


@dataclass
class LinkScore:
    """
    Derived score for one channel.

    ``composite`` is always defined. The ratio and rates are NaN unless a
    valid delta existed for the interval.
    """
    composite: float = 100.0
    ratio: float = NAN
    packet_rate: float = NAN
    rates: dict[str, float] = field(default_factory=dict)
    has_delta: bool = False

    def rate(self, name: str) -> float:
        return self.rates.get(name, NAN)


@dataclass
class TickMetrics:
    """
    Everything the engine produced for one sample.

    Parameters
    ----------
    rssi : float | None
        Normalized RSSI (0-100), or None when the signal was absent.
    tx, rx : float | None
        Reported per-channel values, or None when the channel has never
        produced valid counters for the current peer.
    combined : float | None
        Combined EMA value, None until either channel reported.
    tx_score, rx_score : LinkScore | None
        Unsmoothed scores for this tick, None when the channel was unavailable.
    sample : CounterSample
        The raw sample this tick was computed from.
    interval_s : float
        Interval used for the rates.
    """
    rssi: float | None
    tx: float | None
    rx: float | None
    combined: float | None
    tx_score: LinkScore | None
    rx_score: LinkScore | None
    sample: CounterSample
    interval_s: float


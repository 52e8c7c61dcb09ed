"""
Turn consecutive station counter samples into link-quality scores.

Per sample, the engine:
- normalizes the signal strength to 0-100
- derives per-channel (TX, RX) deltas, rates and ratios against the
  previous sample of the same peer
- maps them onto a weighted 0-100 composite
- smooths each channel, and their combination, with an EMA
"""

from __future__ import annotations

import math

from lq.analysis.config import ChannelWeights, EngineConfig
from lq.analysis.smoothing import SmoothingState
from lq.analysis.types import ChannelDelta, CounterSample, LinkScore, TickMetrics
from lq.utils.log import get_logger

logger = get_logger(__name__)


def clamp(value: float, lo: float, hi: float) -> float:
    if value < lo:
        return lo
    if value > hi:
        return hi
    return value


def normalize_linear(value: float, lo: float, hi: float) -> float:
    """
    Map *value* linearly from [lo, hi] onto [0, 100], clamped.
    """
    if hi <= lo:
        return 0.0
    return clamp((value - lo) / (hi - lo) * 100.0, 0.0, 100.0)


def normalize_rssi(signal_dbm: float, cfg: EngineConfig) -> float | None:
    """
    Normalized RSSI, or None when the signal strength is absent.
    """
    if math.isnan(signal_dbm):
        return None
    return normalize_linear(signal_dbm, cfg.rssi_min_dbm, cfg.rssi_max_dbm)


def sub_score(metric: float, threshold: float) -> float:
    return 100.0 * (1.0 - clamp(metric / threshold, 0.0, 1.0))


def channel_delta(
    current: CounterSample,
    previous: CounterSample,
    weights: ChannelWeights,
    interval_s: float,
) -> ChannelDelta:
    """
    Counter differences between two samples for one channel.
    """
    return ChannelDelta(
        packets=getattr(current, weights.packets) - getattr(previous, weights.packets),
        events={
            name: getattr(current, name) - getattr(previous, name)
            for name in weights.events
        },
        interval_s=interval_s,
    )


def score_channel(
    current: CounterSample,
    previous: CounterSample | None,
    weights: ChannelWeights,
    interval_s: float,
) -> LinkScore:
    """
    Score one channel over one interval.

    Parameters
    ----------
    current
        Sample taken at the end of the interval.
    previous
        Last sample of the same peer with this channel's counters present,
        or None.
    weights
        Composite recipe for the channel.
    interval_s
        Interval length in seconds (must be > 0).

    Returns
    -------
    LinkScore
        Without a previous sample, or when any counter went backwards, the
        optimistic default (composite 100, no delta).
    """
    if previous is None:
        return LinkScore()

    delta = channel_delta(current, previous, weights, interval_s)
    if not delta.valid:
        logger.debug("Counters went backwards on %s; treating as reset", weights.packets)
        return LinkScore()

    rates = {name: delta.rate(name) for name in weights.events}
    numerator = delta.events[weights.retries]
    if weights.failures:
        numerator += weights.failure_weight * delta.events[weights.failures]
    ratio = max(numerator / max(delta.packets, 1.0), 0.0)

    metrics = {"ratio": ratio, **rates}
    composite = sum(
        term.weight * sub_score(metrics[term.metric], term.threshold)
        for term in weights.terms
    )
    return LinkScore(
        composite=clamp(composite, 0.0, 100.0),
        ratio=ratio,
        packet_rate=delta.packets / interval_s,
        rates=rates,
        has_delta=True,
    )


class MetricEngine:
    """
    Stateful scorer for a single tracked peer.
    """
    def __init__(self, cfg: EngineConfig | None = None) -> None:
        self.cfg = cfg or EngineConfig()
        self.smoothing = SmoothingState(self.cfg.ema_alpha, self.cfg.ema_seed)
        self.peer: str | None = None
        self._channels: dict[str, ChannelWeights] = {"tx": self.cfg.tx, "rx": self.cfg.rx}
        self._prev: dict[str, CounterSample | None] = {}
        self._reported: dict[str, float] = {}
        self._last_ts: float | None = None
        self.failures = 0

    def reset(self) -> None:
        """
        Forget previous counters and return every EMA to its seed.
        """
        self.smoothing.reset()
        self._prev.clear()
        self._reported.clear()
        self._last_ts = None

    def source_lost(self) -> None:
        """
        The counter source reported the peer missing; the peer is forgotten.
        """
        self.reset()
        self.peer = None
        self.failures = 0

    def query_failed(self) -> None:
        """
        One counter query failed. The previous snapshot is invalidated; a
        second consecutive failure also resets smoothing and the peer.
        """
        self.failures += 1
        if self.failures >= 2:
            self.source_lost()
            return
        self._prev.clear()
        self._last_ts = None

    def observe_peer(self, mac: str | None) -> bool:
        """
        Record the peer a sample belongs to. Returns True when it changed.
        """
        if not mac:
            return False
        mac = mac.lower()
        if mac == self.peer:
            return False
        logger.info("Tracking station %s", mac)
        self.peer = mac
        self.reset()
        return True

    def _interval(self, sample: CounterSample) -> float:
        if self._last_ts is None:
            return self.cfg.fallback_interval_s
        elapsed = sample.timestamp - self._last_ts
        if elapsed <= 0.0:
            return self.cfg.fallback_interval_s
        return elapsed

    def process(self, sample: CounterSample, peer: str | None = None) -> TickMetrics:
        """
        Score one sample and advance the smoothing state.
        """
        self.failures = 0
        self.observe_peer(peer)
        interval_s = self._interval(sample)
        self._last_ts = sample.timestamp

        scores: dict[str, LinkScore | None] = {}
        for channel, weights in self._channels.items():
            if not sample.has(*weights.counters):
                # next present sample starts a fresh delta
                self._prev[channel] = None
                scores[channel] = None
                continue
            score = score_channel(sample, self._prev.get(channel), weights, interval_s)
            if score.has_delta:
                self._reported[channel] = self.smoothing.update(channel, score.composite)
            else:
                self._reported[channel] = score.composite
            self._prev[channel] = sample
            scores[channel] = score

        return TickMetrics(
            rssi=normalize_rssi(sample.signal_dbm, self.cfg),
            tx=self._reported.get("tx"),
            rx=self._reported.get("rx"),
            combined=self._combine(scores),
            tx_score=scores["tx"],
            rx_score=scores["rx"],
            sample=sample,
            interval_s=interval_s,
        )

    def _combine(self, scores: dict[str, LinkScore | None]) -> float | None:
        inputs = [
            self._reported[channel]
            for channel, score in scores.items()
            if score is not None and score.has_delta
        ]
        if inputs:
            self.smoothing.update("combined", sum(inputs) / len(inputs))
        if not self._reported:
            return None
        return self.smoothing.value("combined")

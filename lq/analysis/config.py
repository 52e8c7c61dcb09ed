# lq/analysis/config.py

from dataclasses import dataclass, field


@dataclass(frozen=True)
class SubScore:
    """
    One weighted term of a composite score.

    Attributes
    ----------
    metric
        Name of the derived metric ("ratio" or a rate name).
    weight
        Weight of this term in the composite.
    threshold
        Metric value at (and above) which the term scores 0.
    """
    metric:    str
    weight:    float
    threshold: float


@dataclass(frozen=True)
class ChannelWeights:
    """
    Composite-score recipe for one channel.

    Attributes
    ----------
    packets
        Counter holding the packet total.
    events
        Error-event counters turned into per-second rates.
    retries
        Counter forming the ratio numerator.
    failures
        Optional counter added to the ratio numerator, scaled by ``failure_weight``.
    failure_weight
        Multiplier applied to the failure counter in the ratio numerator.
    terms
        Weighted sub-scores, each mapped to ``100 * (1 - clamp01(metric / threshold))``.
    """
    packets:        str
    events:         tuple[str, ...]
    retries:        str
    terms:          tuple[SubScore, ...]
    failures:       str | None = None
    failure_weight: float = 0.0

    @property
    def counters(self) -> tuple[str, ...]:
        return (self.packets, *self.events)

    @classmethod
    def tx(cls):
        """Transmit side: retry/failure ratio, retries, failures, beacon loss."""
        return cls(
            packets="tx_packets",
            events=("tx_retries", "tx_failed", "beacon_losses"),
            retries="tx_retries",
            failures="tx_failed",
            failure_weight=4.0,
            terms=(
                SubScore("ratio",         0.55, 0.10),
                SubScore("tx_retries",    0.25, 60.0),
                SubScore("tx_failed",     0.10, 3.0),
                SubScore("beacon_losses", 0.10, 1.0),
            ),
        )

    @classmethod
    def rx(cls):
        """Receive side: duplicate ratio, duplicates and drops."""
        return cls(
            packets="rx_packets",
            events=("rx_duplicates", "rx_drops"),
            retries="rx_duplicates",
            terms=(
                SubScore("ratio",         0.70, 0.08),
                SubScore("rx_duplicates", 0.20, 50.0),
                SubScore("rx_drops",      0.10, 5.0),
            ),
        )


@dataclass
class EngineConfig:
    """
    Configuration for the metric derivation engine.

    Attributes
    ----------
    ema_alpha
        Smoothing factor for every channel EMA.
    ema_seed
        Value every EMA starts from (and returns to on reset).
    rssi_min_dbm
        Signal strength that maps to 0.
    rssi_max_dbm
        Signal strength that maps to 100.
    sample_interval_s
        Configured interval; used when the measured interval is unusable.
    tx
        Transmit composite recipe.
    rx
        Receive composite recipe.
    """
    ema_alpha:         float = 0.4
    ema_seed:          float = 100.0
    rssi_min_dbm:      float = -85.0
    rssi_max_dbm:      float = 20.0
    sample_interval_s: float = 1.0
    tx:                ChannelWeights = field(default_factory=ChannelWeights.tx)
    rx:                ChannelWeights = field(default_factory=ChannelWeights.rx)

    @property
    def fallback_interval_s(self) -> float:
        return self.sample_interval_s if self.sample_interval_s > 0 else 1.0

    @classmethod
    def for_interval_ms(cls, interval_ms: int):
        """Preset for a sampler ticking every *interval_ms* milliseconds."""
        return cls(sample_interval_s=max(interval_ms, 0) / 1000.0)

"""
Relay ingest: per-metric freshness and the link-down fallback decision.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from lq.transport.wire import scan_metrics
from lq.utils.log import get_logger

logger = get_logger(__name__)

STALE_TIMEOUT_MS = 5000


@dataclass
class RelayMetricState:
    """
    Last value received for one metric key.
    """
    value: float = 0.0
    last_update_ms: int = 0
    seen: bool = False


@dataclass(frozen=True)
class Inclusion:
    """
    Metrics to show this tick, in tracking order, and whether the link is down.
    """
    values: dict[str, float] = field(default_factory=dict)
    fallback: bool = False


class StalenessTracker:
    """
    Owns the RelayMetricState of every tracked key.

    Parameters
    ----------
    keys
        Metric keys to extract from inbound records, in display order.
    start_ms
        Monotonic time (ms) the relay started.
    stale_timeout_ms
        Age at which a metric (or the whole stream) counts as stale.
    """
    def __init__(
        self,
        keys: tuple[str, ...] | list[str],
        start_ms: int,
        stale_timeout_ms: int = STALE_TIMEOUT_MS,
    ) -> None:
        self.keys = tuple(keys)
        self.metrics: dict[str, RelayMetricState] = {k: RelayMetricState() for k in self.keys}
        self.start_ms = start_ms
        self.stale_timeout_ms = stale_timeout_ms
        self.last_data_ms: int | None = None
        self.records = 0
        self.dropped = 0

    def ingest(self, payload: str, now_ms: int) -> list[str]:
        """
        Apply one inbound record. Returns the keys it updated.
        """
        found = scan_metrics(payload, self.keys)
        if not found:
            self.dropped += 1
            logger.warning("No usable metrics in payload: %r", payload.strip()[:200])
            return []
        for key, value in found.items():
            state = self.metrics[key]
            state.value = value
            state.last_update_ms = now_ms
            state.seen = True
        self.records += 1
        self.last_data_ms = now_ms
        return list(found)

    def is_fresh(self, key: str, now_ms: int) -> bool:
        state = self.metrics[key]
        return state.seen and now_ms - state.last_update_ms < self.stale_timeout_ms

    def fallback_active(self, now_ms: int) -> bool:
        if self.last_data_ms is None:
            return now_ms - self.start_ms >= self.stale_timeout_ms
        return now_ms - self.last_data_ms >= self.stale_timeout_ms

    def included(self, now_ms: int) -> Inclusion:
        """
        Decide which metrics are shown at *now_ms* and at what value.
        """
        if self.fallback_active(now_ms):
            return Inclusion({k: 0.0 for k in self.keys}, fallback=True)
        return Inclusion(
            {k: s.value for k, s in self.metrics.items() if self.is_fresh(k, now_ms)},
            fallback=False,
        )

"""
Text codecs for the sampler -> relay record and the relay -> display message.

Both are single-line JSON objects terminated by a newline. The relay side
does not parse the record as JSON: it scans for the numeric fields it knows,
so a truncated or partly broken record still yields whatever is readable.
"""

from __future__ import annotations

import json
import math
import re

from lq.analysis.types import LinkScore, TickMetrics
from lq.utils.validate import DisplayMessage, RawDiagnostics, WireMetricRecord, metric_label

NUMBER_RE = r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?"


def _finite(value: float | None, digits: int) -> float | None:
    if value is None or math.isnan(value) or math.isinf(value):
        return None
    return round(value, digits)


def _raw_block(tick: TickMetrics) -> RawDiagnostics:
    tx = tick.tx_score or LinkScore()
    rx = tick.rx_score or LinkScore()
    return RawDiagnostics(
        signal=_finite(tick.sample.signal_dbm, 2),
        retry_ratio=_finite(tx.ratio, 6),
        retry_rate=_finite(tx.rate("tx_retries"), 3),
        fail_rate=_finite(tx.rate("tx_failed"), 3),
        beacon_rate=_finite(tx.rate("beacon_losses"), 3),
        packet_rate=_finite(tx.packet_rate, 3),
        rx_ratio=_finite(rx.ratio, 6),
        rx_retry_rate=_finite(rx.rate("rx_duplicates"), 3),
        rx_drop_rate=_finite(rx.rate("rx_drops"), 3),
        rx_packet_rate=_finite(rx.packet_rate, 3),
    )


def build_record(tick: TickMetrics) -> WireMetricRecord:
    """
    Freeze one engine tick into the record sent to the relay.

    Channels without a value (RSSI invalid, channel never valid for this
    peer) are left out of both the named fields and the display arrays.
    """
    fields = {
        "rssi":    _finite(tick.rssi, 2),
        "link":    _finite(tick.combined, 2),
        "link_tx": _finite(tick.tx, 2),
        "link_rx": _finite(tick.rx, 2),
    }
    present = {k: v for k, v in fields.items() if v is not None}
    return WireMetricRecord(
        **present,
        text=[metric_label(k) for k in present],
        value=list(present.values()),
        raw=_raw_block(tick),
    )


def encode_record(record: WireMetricRecord) -> bytes:
    """
    Serialize a record; absent channels are omitted, raw fields stay ``null``.
    """
    payload = record.model_dump(mode="json")
    for key in ("rssi", "link", "link_tx", "link_rx"):
        if payload.get(key) is None:
            payload.pop(key, None)
    return (json.dumps(payload, separators=(",", ":")) + "\n").encode()


def scan_number(payload: str, key: str) -> float | None:
    """
    Find the first ``"key": <number>`` in *payload*.

    Returns None when the key is missing, or its value is not a finite number.
    """
    m = re.search(rf'"{re.escape(key)}"\s*:\s*({NUMBER_RE})', payload)
    if not m:
        return None
    try:
        value = float(m.group(1))
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def scan_metrics(payload: str, keys: tuple[str, ...] | list[str]) -> dict[str, float]:
    """
    Extract every readable metric among *keys* from a record.
    """
    found: dict[str, float] = {}
    for key in keys:
        value = scan_number(payload, key)
        if value is not None:
            found[key] = value
    return found


def encode_display(message: DisplayMessage) -> bytes:
    payload = message.model_dump(mode="json", exclude_none=True)
    return (json.dumps(payload, separators=(",", ":")) + "\n").encode()

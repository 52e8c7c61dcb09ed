"""
Pydantic schemas for wire records, display messages and runtime configuration.
"""

import ipaddress
import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# sizeof(sockaddr_un.sun_path) minus the terminating NUL
MAX_UNIX_PATH = 107

DEFAULT_PORT = 5005
DEFAULT_SOCKET = "/run/pixelpilot/osd.sock"

METRIC_LABELS = {
    "rssi":    "RSSI",
    "link":    "Link",
    "link_tx": "TX",
    "link_rx": "RX",
}


def metric_label(key: str) -> str:
    return METRIC_LABELS.get(key, key.upper())


class RawDiagnostics(BaseModel):
    """
    Unsmoothed per-tick values; None is serialized as ``null`` ("undefined").
    """
    model_config = ConfigDict(frozen=True)

    signal:         Optional[float] = None
    retry_ratio:    Optional[float] = None
    retry_rate:     Optional[float] = None
    fail_rate:      Optional[float] = None
    beacon_rate:    Optional[float] = None
    packet_rate:    Optional[float] = None
    rx_ratio:       Optional[float] = None
    rx_retry_rate:  Optional[float] = None
    rx_drop_rate:   Optional[float] = None
    rx_packet_rate: Optional[float] = None


class WireMetricRecord(BaseModel):
    """
    One sampler tick, as sent to the relay.
    """
    model_config = ConfigDict(frozen=True)

    rssi:    Optional[float] = None
    link:    Optional[float] = None
    link_tx: Optional[float] = None
    link_rx: Optional[float] = None
    text:    list[str] = Field(default_factory=list)
    value:   list[float] = Field(default_factory=list)
    raw:     RawDiagnostics = Field(default_factory=RawDiagnostics)

    @model_validator(mode="after")
    def _arrays_match(self):
        if len(self.text) != len(self.value):
            raise ValueError("text and value must have the same length")
        return self


class DisplayMessage(BaseModel):
    """
    Message forwarded from the relay to the display socket.
    """
    model_config = ConfigDict(frozen=True)

    text:   list[str]
    value:  list[float]
    ttl_ms: Optional[int] = None

    @model_validator(mode="after")
    def _arrays_match(self):
        if len(self.text) != len(self.value):
            raise ValueError("text and value must have the same length")
        return self


def _check_port(port: int) -> int:
    if not 0 < port <= 65535:
        raise ValueError(f"Invalid port: {port}")
    return port


class SenderConfig(BaseModel):
    """
    Runtime configuration of the sampler (`lq send`).
    """
    device:      Optional[str] = None
    mac:         str
    host:        str = "127.0.0.1"
    port:        int = DEFAULT_PORT
    interval_ms: int = 1000
    count:       int = 0

    @field_validator("mac")
    @classmethod
    def _normalize_mac(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("A MAC address is required (use -m or `lq stations` first)")
        return v

    @field_validator("host")
    @classmethod
    def _ipv4_host(cls, v: str) -> str:
        try:
            ipaddress.IPv4Address(v)
        except ValueError:
            raise ValueError(f"Invalid IPv4 host: {v}") from None
        return v

    @field_validator("port")
    @classmethod
    def _valid_port(cls, v: int) -> int:
        return _check_port(v)

    @field_validator("interval_ms")
    @classmethod
    def _non_negative_interval(cls, v: int) -> int:
        return max(v, 0)

    @field_validator("count")
    @classmethod
    def _non_negative_count(cls, v: int) -> int:
        return max(v, 0)


class RelayConfig(BaseModel):
    """
    Runtime configuration of the relay (`lq relay`).
    """
    socket_path:         str = DEFAULT_SOCKET
    bind:                str = "0.0.0.0"
    port:                int = DEFAULT_PORT
    ttl_ms:              int = 0
    metrics:             tuple[str, ...] = ("rssi", "link")
    stale_timeout_ms:    int = 5000
    heartbeat_ms:        int = 1000
    connect_retry_ms:    int = 1000
    poll_timeout_ms:     int = 1000
    change_epsilon:      float = 0.001

    @field_validator("socket_path")
    @classmethod
    def _path_fits(cls, v: str) -> str:
        if not v:
            raise ValueError("Socket path must not be empty")
        if len(os.fsencode(v)) > MAX_UNIX_PATH:
            raise ValueError(f"Socket path too long: {v}")
        return v

    @field_validator("bind")
    @classmethod
    def _bind_address(cls, v: str) -> str:
        if v == "*":
            return v
        try:
            ipaddress.IPv4Address(v)
        except ValueError:
            raise ValueError(f"Invalid bind address: {v}") from None
        return v

    @field_validator("port")
    @classmethod
    def _valid_port(cls, v: int) -> int:
        return _check_port(v)

    @field_validator("ttl_ms")
    @classmethod
    def _non_negative_ttl(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Invalid TTL: {v}")
        return v

    @field_validator("metrics")
    @classmethod
    def _known_keys(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        keys = tuple(k.strip() for k in v if k.strip())
        if not keys:
            raise ValueError("At least one metric key is required")
        for k in keys:
            if k not in METRIC_LABELS:
                raise ValueError(f"Unknown metric key: {k}")
        if len(set(keys)) != len(keys):
            raise ValueError(f"Duplicate metric keys: {','.join(keys)}")
        return keys

    @property
    def bind_host(self) -> str:
        return "0.0.0.0" if self.bind == "*" else self.bind

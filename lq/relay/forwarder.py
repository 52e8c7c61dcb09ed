"""
Relay forwarder: change detection, fallback heartbeats and the reconnecting
UNIX datagram connection to the display.
"""

from __future__ import annotations

import socket
from dataclasses import dataclass
from typing import Callable

from lq.relay.state import Inclusion
from lq.transport.wire import encode_display
from lq.utils.log import get_logger
from lq.utils.validate import DisplayMessage, metric_label

logger = get_logger(__name__)

CONNECT_RETRY_MS = 1000
HEARTBEAT_MS = 1000
CHANGE_EPSILON = 0.001


def unix_dgram_socket() -> socket.socket:
    return socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)


class DisplayConnection:
    """
    Lazily connected datagram socket to the display, with a fixed retry backoff.

    Parameters
    ----------
    path
        Filesystem path of the display's socket.
    retry_ms
        Minimum spacing between connection attempts.
    factory
        Returns a fresh unconnected socket.
    """
    def __init__(
        self,
        path: str,
        retry_ms: int = CONNECT_RETRY_MS,
        factory: Callable[[], socket.socket] = unix_dgram_socket,
    ) -> None:
        self.path = path
        self.retry_ms = retry_ms
        self.factory = factory
        self.sock: socket.socket | None = None
        self.last_attempt_ms: int | None = None

    @property
    def connected(self) -> bool:
        return self.sock is not None

    def ensure(self, now_ms: int) -> bool:
        """
        Connect if needed and allowed by the backoff. True when connected.
        """
        if self.sock is not None:
            return True
        if self.last_attempt_ms is not None and now_ms - self.last_attempt_ms < self.retry_ms:
            return False
        self.last_attempt_ms = now_ms

        sock = None
        try:
            sock = self.factory()
            sock.connect(self.path)
        except OSError as e:
            logger.warning("connect(%s) failed: %s", self.path, e)
            if sock is not None:
                sock.close()
            return False
        self.sock = sock
        logger.info("Connected to UNIX socket %s", self.path)
        return True

    def send(self, payload: bytes, now_ms: int) -> bool:
        """
        Send one datagram. On failure the socket is dropped and the backoff restarts.
        """
        if self.sock is None:
            return False
        try:
            self.sock.send(payload)
        except OSError as e:
            logger.warning("send() to %s failed: %s", self.path, e)
            self.close()
            self.last_attempt_ms = now_ms
            return False
        return True

    def close(self) -> None:
        if self.sock is not None:
            self.sock.close()
            self.sock = None


@dataclass
class RelaySnapshot:
    """
    What was last forwarded for one metric.
    """
    value: float = 0.0
    present: bool = False


class RelayForwarder:
    """
    Decides when to forward the included metrics and sends them.

    Parameters
    ----------
    keys
        Tracked metric keys.
    connection
        Downstream display connection (owned by the forwarder).
    ttl_ms
        Validity attached to each message; 0 omits it.
    heartbeat_ms
        Spacing of repeated sends while in fallback.
    epsilon
        Smallest value change that counts as a change.
    """
    def __init__(
        self,
        keys: tuple[str, ...] | list[str],
        connection: DisplayConnection,
        ttl_ms: int = 0,
        heartbeat_ms: int = HEARTBEAT_MS,
        epsilon: float = CHANGE_EPSILON,
    ) -> None:
        self.connection = connection
        self.ttl_ms = ttl_ms
        self.heartbeat_ms = heartbeat_ms
        self.epsilon = epsilon
        self.snapshot: dict[str, RelaySnapshot] = {k: RelaySnapshot() for k in keys}
        self.snapshot_valid = False
        self.update_counter = 0
        self.last_send_ms: int | None = None
        self.last_fallback_ms: int | None = None

    def changed(self, values: dict[str, float]) -> bool:
        """
        True when *values* differ from the last forwarded set.
        """
        if not self.snapshot_valid:
            return True
        for key, snap in self.snapshot.items():
            present = key in values
            if present != snap.present:
                return True
            if present and abs(values[key] - snap.value) > self.epsilon:
                return True
        return False

    def heartbeat_due(self, fallback: bool, now_ms: int) -> bool:
        if not fallback:
            self.last_fallback_ms = None
            return False
        return self.last_fallback_ms is None or now_ms - self.last_fallback_ms >= self.heartbeat_ms

    def build_message(self, values: dict[str, float], now_ms: int) -> DisplayMessage:
        count = self.update_counter + 1
        hz = 0.0
        if self.last_send_ms is not None and now_ms > self.last_send_ms:
            hz = 1000.0 / (now_ms - self.last_send_ms)
        return DisplayMessage(
            text=[f"{metric_label(k)} #{count} @ {hz:.2f} Hz" for k in values],
            value=[round(v, 2) for v in values.values()],
            ttl_ms=self.ttl_ms if self.ttl_ms > 0 else None,
        )

    def tick(self, inclusion: Inclusion, packet_updated: bool, now_ms: int) -> DisplayMessage | None:
        """
        Forward if a trigger fired. Returns the message actually sent, if any.
        """
        values = inclusion.values
        if not values:
            return None

        changed = self.changed(values)
        heartbeat = self.heartbeat_due(inclusion.fallback, now_ms)
        if not (packet_updated or changed or heartbeat):
            return None

        message = self.build_message(values, now_ms)
        if not self.connection.ensure(now_ms):
            return None
        payload = encode_display(message)
        if not self.connection.send(payload, now_ms):
            return None

        self.last_send_ms = now_ms
        self.update_counter += 1
        if inclusion.fallback:
            self.last_fallback_ms = now_ms
        for key, snap in self.snapshot.items():
            snap.present = key in values
            snap.value = values.get(key, 0.0)
        self.snapshot_valid = True
        logger.debug("Forwarded: %s", payload.decode().rstrip())
        return message

    def close(self) -> None:
        self.connection.close()

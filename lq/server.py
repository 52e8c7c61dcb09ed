# lq/server.py
"""
UDP -> display relay loop for the lq CLI.
"""

import selectors
import socket
import time
from typing import Callable, Optional

from lq.relay.forwarder import DisplayConnection, RelayForwarder
from lq.relay.state import StalenessTracker
from lq.utils.log import get_logger
from lq.utils.signals import StopFlag
from lq.utils.validate import DisplayMessage, RelayConfig

logger = get_logger(__name__)

RECV_BUFSIZE = 4096


def now_ms() -> int:
    return int(time.monotonic() * 1000)


def open_udp(host: str, port: int) -> socket.socket:
    """
    Bind a non-blocking UDP socket for inbound records.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.setblocking(False)
    return sock


class RelayServer:
    """
    Single-threaded relay: one optional datagram in, at most one message out, per tick.
    """
    def __init__(
        self,
        cfg: RelayConfig,
        clock: Callable[[], int] = now_ms,
        connection: Optional[DisplayConnection] = None,
    ) -> None:
        self.cfg = cfg
        self.clock = clock
        self.tracker = StalenessTracker(cfg.metrics, clock(), cfg.stale_timeout_ms)
        self.forwarder = RelayForwarder(
            cfg.metrics,
            connection or DisplayConnection(cfg.socket_path, cfg.connect_retry_ms),
            ttl_ms=cfg.ttl_ms,
            heartbeat_ms=cfg.heartbeat_ms,
            epsilon=cfg.change_epsilon,
        )

    def step(self, datagram: Optional[bytes] = None) -> Optional[DisplayMessage]:
        """
        Ingest *datagram* (if any), then re-evaluate staleness and forward.
        """
        now = self.clock()
        updated = False
        if datagram is not None:
            updated = bool(self.tracker.ingest(datagram.decode("utf-8", errors="replace"), now))
        return self.forwarder.tick(self.tracker.included(now), updated, now)

    def serve(self, sock: socket.socket, stop: StopFlag) -> None:
        """
        Wait for records with a bounded timeout until *stop* is set.

        Closes the display connection and *sock* on the way out.
        """
        sel = selectors.DefaultSelector()
        sel.register(sock, selectors.EVENT_READ)
        timeout = self.cfg.poll_timeout_ms / 1000.0
        try:
            while not stop:
                datagram = None
                if sel.select(timeout):
                    try:
                        datagram, _ = sock.recvfrom(RECV_BUFSIZE)
                    except BlockingIOError:
                        pass
                    except OSError as e:
                        logger.warning("recvfrom() failed: %s", e)
                self.step(datagram)
        finally:
            self.forwarder.close()
            sel.close()
            sock.close()
        logger.info(
            "Relay stopped (%d records, %d dropped, %d forwarded)",
            self.tracker.records, self.tracker.dropped, self.forwarder.update_counter,
        )


def run_relay(cfg: RelayConfig, stop: Optional[StopFlag] = None) -> None:
    """
    Bind the inbound socket and relay until stopped.
    """
    sock = open_udp(cfg.bind_host, cfg.port)
    logger.info("Listening on %s:%d for UDP metrics", cfg.bind, cfg.port)
    RelayServer(cfg).serve(sock, stop or StopFlag().install())

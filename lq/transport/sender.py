"""
Fire-and-forget UDP transmission of wire records.
"""

from __future__ import annotations

import socket

from lq.transport.wire import encode_record
from lq.utils.log import get_logger
from lq.utils.validate import WireMetricRecord

logger = get_logger(__name__)


class WireSender:
    """
    Owns the UDP socket used by the sampler.

    Parameters
    ----------
    host
        IPv4 address of the relay.
    port
        UDP port of the relay.
    sock
        Optional pre-built datagram socket (tests inject a fake here).
    """
    def __init__(self, host: str, port: int, sock: socket.socket | None = None) -> None:
        self.dest = (host, port)
        self.sock = sock or socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sent = 0
        self.failed = 0

    def send(self, record: WireMetricRecord) -> bool:
        """
        Send one record. A failure is logged and reported, never raised.
        """
        payload = encode_record(record)
        try:
            self.sock.sendto(payload, self.dest)
        except OSError as e:
            self.failed += 1
            logger.warning("sendto %s:%d failed: %s", self.dest[0], self.dest[1], e)
            return False
        self.sent += 1
        logger.debug("Sent %s", payload.decode().rstrip())
        return True

    def close(self) -> None:
        self.sock.close()

    def __enter__(self) -> "WireSender":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

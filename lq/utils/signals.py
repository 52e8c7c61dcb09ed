"""
Cooperative shutdown for the single-threaded loops.
"""

import signal
import threading


class StopFlag:
    """
    Set by SIGINT/SIGTERM; loops check it once per iteration or wait on it.
    """
    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._event.is_set()

    def __bool__(self) -> bool:
        return self.stopped

    def set(self, *_) -> None:
        self._event.set()

    def wait(self, timeout: float) -> bool:
        """
        Sleep up to *timeout* seconds; returns early (True) once stopped.
        """
        return self._event.wait(timeout)

    def install(self) -> "StopFlag":
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, self.set)
        return self

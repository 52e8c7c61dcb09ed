"""
Exception hierarchy for the lq toolkit.
"""


class LinkQualityError(Exception):
    """Base class for all lq errors."""


class CounterSourceError(LinkQualityError):
    """The station counters could not be obtained for this tick."""


class StationNotFound(CounterSourceError):
    """The requested peer is not associated on the interface."""

    def __init__(self, device: str, mac: str | None) -> None:
        super().__init__(f"Station {mac or '(any)'} not found on {device}")
        self.device = device
        self.mac = mac


class CounterQueryFailed(CounterSourceError):
    """The diagnostic tool could not be run or returned an error."""


class InterfaceDetectionError(LinkQualityError):
    """No managed wireless interface could be found."""

"""
iw parser: extract station counters, managed interfaces and associated peers
from the text output of the `iw` tool.
"""

import subprocess
import time
from typing import Callable, Optional

from lq.analysis.types import CounterSample
from lq.errors import CounterQueryFailed, InterfaceDetectionError, StationNotFound
from lq.utils.log import get_logger

logger = get_logger(__name__)

IW_TIMEOUT_S = 2.0

# "iw dev X station get" line prefix -> CounterSample field
STATION_FIELDS = {
    "signal:":        "signal_dbm",
    "tx packets:":    "tx_packets",
    "tx retries:":    "tx_retries",
    "tx failed:":     "tx_failed",
    "beacon loss:":   "beacon_losses",
    "rx packets:":    "rx_packets",
    "rx duplicates:": "rx_duplicates",
    "rx drop misc:":  "rx_drops",
}

Runner = Callable[[list[str]], str]


def run_iw(cmd: list[str]) -> str:
    """
    Return stdout of *cmd*; raise CounterQueryFailed if it cannot be run.
    """
    try:
        return subprocess.check_output(
            cmd, text=True, stderr=subprocess.DEVNULL, timeout=IW_TIMEOUT_S
        )
    except (subprocess.SubprocessError, OSError) as e:
        raise CounterQueryFailed(f"{' '.join(cmd)} failed: {e}") from e


def _first_number(text: str) -> Optional[float]:
    """
    First whitespace-separated token of *text* as a float, or None.
    """
    parts = text.split()
    if not parts:
        return None
    try:
        return float(parts[0])
    except ValueError:
        return None


def parse_station(
    output: str, target_mac: Optional[str], timestamp: float
) -> tuple[CounterSample, str]:
    """
    Parse `iw dev <iface> station get|dump` output for one station.

    Parameters
    ----------
    output
        Raw text printed by iw.
    target_mac
        Station to look for (case-insensitive); None takes the first one.
    timestamp
        Monotonic time to stamp the sample with.

    Returns
    -------
    tuple[CounterSample, str]
        The sample (missing lines stay NaN) and the MAC actually matched.

    Raises
    ------
    StationNotFound
        When no matching "Station" block is present.
    """
    values: dict[str, float] = {}
    matched: Optional[str] = None

    for line in output.splitlines():
        line = line.strip()
        if line.startswith("Station "):
            if matched is not None:
                break
            parts = line.split()
            mac = parts[1].lower() if len(parts) > 1 else ""
            if target_mac is None or mac == target_mac.lower():
                matched = mac
            continue
        if matched is None:
            continue
        for prefix, name in STATION_FIELDS.items():
            if line.startswith(prefix):
                value = _first_number(line[len(prefix):])
                if value is not None:
                    values[name] = value
                break

    if matched is None:
        raise StationNotFound("", target_mac)
    return CounterSample(timestamp=timestamp, **values), matched


def parse_managed_interface(output: str) -> Optional[str]:
    """
    First interface listed by `iw dev` whose type is "managed".
    """
    current = None
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("Interface "):
            current = line.split()[1]
        elif line.startswith("type ") and current:
            if line.split()[1] == "managed":
                return current
    return None


def parse_station_macs(output: str) -> list[str]:
    """
    MAC addresses of every "Station" block in `iw dev <iface> station dump`.
    """
    macs = []
    for line in output.splitlines():
        parts = line.strip().split()
        if len(parts) >= 2 and parts[0] == "Station":
            macs.append(parts[1])
    return macs


def detect_default_interface(runner: Runner = run_iw) -> str:
    """
    Name of the first managed (STA) interface.
    """
    iface = parse_managed_interface(runner(["iw", "dev"]))
    if not iface:
        raise InterfaceDetectionError("No managed interface found via iw dev")
    return iface


def list_stations(iface: str, runner: Runner = run_iw) -> list[str]:
    return parse_station_macs(runner(["iw", "dev", iface, "station", "dump"]))


class IwStationSource:
    """
    Counter source backed by `iw dev <iface> station get <mac>`.
    """
    def __init__(
        self,
        device: str,
        runner: Runner = run_iw,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.device = device
        self.runner = runner
        self.clock = clock

    def fetch(self, mac: Optional[str]) -> tuple[CounterSample, str]:
        """
        Sample the counters of *mac*.

        Raises
        ------
        CounterQueryFailed
            iw could not be run.
        StationNotFound
            The station is not associated on this interface.
        """
        ts = self.clock()
        output = self.runner(["iw", "dev", self.device, "station", "get", mac or ""])
        try:
            return parse_station(output, mac, ts)
        except StationNotFound:
            raise StationNotFound(self.device, mac) from None

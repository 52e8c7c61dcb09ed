import json

import pytest

from lq.analysis.engine import MetricEngine
from lq.analysis.types import CounterSample
from lq.errors import CounterQueryFailed, StationNotFound
from lq.sampler import Sampler, describe_tick, run_sampler
from lq.transport.sender import WireSender
from lq.utils.signals import StopFlag
from lq.utils.validate import SenderConfig

MAC = "aa:bb:cc:dd:ee:ff"


class FakeUdpSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []
        self.closed = False

    def sendto(self, data, dest):
        if self.fail:
            raise OSError(101, "Network is unreachable")
        self.sent.append((json.loads(data), dest))
        return len(data)

    def close(self):
        self.closed = True


class FakeSource:
    """Replays a script of samples and exceptions."""
    def __init__(self, script):
        self.script = list(script)
        self.calls = 0

    def fetch(self, mac):
        item = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(item, Exception):
            raise item
        return item, MAC


def sample(ts, packets, retries):
    return CounterSample(
        timestamp=ts,
        signal_dbm=-60.0,
        tx_packets=packets,
        tx_retries=retries,
        tx_failed=0,
        beacon_losses=0,
    )


def make_sampler(script, fail=False):
    sock = FakeUdpSocket(fail=fail)
    sender = WireSender("127.0.0.1", 5005, sock=sock)
    return Sampler(FakeSource(script), MetricEngine(), sender, MAC), sock


def test_tick_sends_one_record():
    sampler, sock = make_sampler([sample(0.0, 1000, 50)])
    tick = sampler.tick()
    assert tick.tx == 100.0
    payload, dest = sock.sent[0]
    assert dest == ("127.0.0.1", 5005)
    assert payload["link_tx"] == 100.0
    assert payload["text"] == ["RSSI", "Link", "TX"]


def test_source_failure_resets_engine_and_sends_nothing():
    sampler, sock = make_sampler([
        sample(0.0, 1000, 50),
        sample(1.0, 1100, 90),
        StationNotFound("wlan0", MAC),
        sample(3.0, 1200, 95),
    ])
    sampler.tick()
    assert sampler.tick().tx < 100.0
    assert sampler.tick() is None
    assert sampler.engine.peer is None
    assert len(sock.sent) == 2

    tick = sampler.tick()
    assert not tick.tx_score.has_delta
    assert tick.tx == 100.0


def test_single_query_failure_keeps_smoothing():
    sampler, sock = make_sampler([
        sample(0.0, 1000, 50),
        sample(1.0, 1100, 90),
        CounterQueryFailed("iw timed out"),
        sample(3.0, 1200, 95),
    ])
    sampler.tick()
    smoothed = sampler.tick().tx
    assert sampler.tick() is None
    assert sampler.engine.peer == MAC

    tick = sampler.tick()
    assert not tick.tx_score.has_delta
    assert sampler.engine.smoothing.value("tx") == smoothed
    assert len(sock.sent) == 3


def test_two_query_failures_reset_engine():
    sampler, _ = make_sampler([
        sample(0.0, 1000, 50),
        sample(1.0, 1100, 90),
        CounterQueryFailed("iw timed out"),
        CounterQueryFailed("iw timed out"),
        sample(4.0, 1200, 95),
    ])
    sampler.tick()
    sampler.tick()
    sampler.tick()
    sampler.tick()
    assert sampler.engine.peer is None
    assert sampler.engine.smoothing.value("tx") == 100.0


def test_send_failure_does_not_stop_tick():
    sampler, sock = make_sampler([sample(0.0, 1000, 50)], fail=True)
    assert sampler.tick() is not None
    assert sampler.sender.failed == 1
    assert sampler.tick() is not None
    assert sampler.sender.failed == 2


def test_run_sampler_honours_count():
    sleeps = []
    sock = FakeUdpSocket()
    source = FakeSource([sample(float(i), 1000 + i * 100, 50 + i) for i in range(5)])
    cfg = SenderConfig(mac=MAC, interval_ms=250, count=3)

    ticks = run_sampler(cfg, source, WireSender(cfg.host, cfg.port, sock=sock), sleep=sleeps.append)
    assert ticks == 3
    assert len(sock.sent) == 3
    assert sleeps == [0.25, 0.25]
    assert sock.closed


def test_run_sampler_zero_interval_runs_once():
    sock = FakeUdpSocket()
    cfg = SenderConfig(mac=MAC, interval_ms=0)
    ticks = run_sampler(cfg, FakeSource([sample(0.0, 1, 0)]), WireSender(cfg.host, cfg.port, sock=sock))
    assert ticks == 1


def test_run_sampler_survives_query_failures():
    sock = FakeUdpSocket()
    cfg = SenderConfig(mac=MAC, interval_ms=10, count=3)
    source = FakeSource([CounterQueryFailed("iw timed out")])
    ticks = run_sampler(cfg, source, WireSender(cfg.host, cfg.port, sock=sock), sleep=lambda s: None)
    assert ticks == 3
    assert sock.sent == []


def test_describe_tick_handles_undefined_values():
    engine = MetricEngine()
    line = describe_tick(engine.process(sample(0.0, 1000, 50), MAC), MAC)
    assert line.startswith(f"mac={MAC} Hz=1.00")
    assert "ratio=nan" in line
    assert "rx=nan" in line

    line = describe_tick(engine.process(sample(1.0, 1100, 55), MAC), MAC)
    assert "ratio=0.0500" in line
    assert "retries/s=5.00" in line


@pytest.mark.parametrize("interval_ms,expected", [(-5, 0), (500, 500)])
def test_sender_config_clamps_interval(interval_ms, expected):
    assert SenderConfig(mac=MAC, interval_ms=interval_ms).interval_ms == expected


class StoppingSource(FakeSource):
    """Requests a stop while the first fetch is in progress."""
    def __init__(self, script, stop):
        super().__init__(script)
        self.stop = stop

    def fetch(self, mac):
        self.stop.set()
        return super().fetch(mac)


def test_run_sampler_stop_interrupts_interval_wait():
    stop = StopFlag()
    sock = FakeUdpSocket()
    cfg = SenderConfig(mac=MAC, interval_ms=3_600_000)
    source = StoppingSource([sample(0.0, 1000, 50)], stop)
    ticks = run_sampler(cfg, source, WireSender(cfg.host, cfg.port, sock=sock), stop=stop)
    assert ticks == 1
    assert sock.closed


def test_stop_flag_wait():
    stop = StopFlag()
    assert not stop.wait(0)
    stop.set()
    assert stop
    assert stop.wait(10)

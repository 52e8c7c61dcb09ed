import json
import socket

from lq.relay.forwarder import DisplayConnection, RelayForwarder
from lq.relay.state import Inclusion

KEYS = ("rssi", "link")


class FakeSocket:
    def __init__(self, fail_connect=False, fail_send=False):
        self.fail_connect = fail_connect
        self.fail_send = fail_send
        self.sent = []
        self.closed = False

    def connect(self, path):
        if self.fail_connect:
            raise FileNotFoundError(2, "No such file or directory")

    def send(self, data):
        if self.fail_send:
            raise ConnectionRefusedError(111, "Connection refused")
        self.sent.append(data)
        return len(data)

    def close(self):
        self.closed = True


class FakeFactory:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.sockets = []

    def __call__(self):
        sock = FakeSocket(**self.kwargs)
        self.sockets.append(sock)
        return sock

    @property
    def payloads(self):
        return [json.loads(d) for s in self.sockets for d in s.sent]


def make_forwarder(ttl_ms=0, **kwargs):
    factory = FakeFactory(**kwargs)
    conn = DisplayConnection("/tmp/osd.sock", factory=factory)
    return RelayForwarder(KEYS, conn, ttl_ms=ttl_ms), factory


def test_first_forward_and_labels():
    fwd, factory = make_forwarder()
    msg = fwd.tick(Inclusion({"rssi": 40.0, "link": 80.123}), True, 1000)
    assert msg.text == ["RSSI #1 @ 0.00 Hz", "Link #1 @ 0.00 Hz"]
    assert msg.value == [40.0, 80.12]
    assert factory.payloads == [{"text": msg.text, "value": msg.value}]

    msg = fwd.tick(Inclusion({"rssi": 41.0, "link": 80.0}), True, 1500)
    assert msg.text == ["RSSI #2 @ 2.00 Hz", "Link #2 @ 2.00 Hz"]


def test_ttl_included_only_when_configured():
    fwd, factory = make_forwarder(ttl_ms=1500)
    fwd.tick(Inclusion({"rssi": 40.0}), True, 0)
    assert factory.payloads[0]["ttl_ms"] == 1500


def test_identical_ticks_forward_once():
    fwd, factory = make_forwarder()
    assert fwd.tick(Inclusion({"rssi": 40.0}), False, 0) is not None
    assert fwd.tick(Inclusion({"rssi": 40.0005}), False, 100) is None
    assert fwd.tick(Inclusion({"rssi": 40.0009}), False, 200) is None
    assert len(factory.payloads) == 1


def test_value_change_forwards():
    fwd, _ = make_forwarder()
    fwd.tick(Inclusion({"rssi": 40.0}), False, 0)
    assert fwd.tick(Inclusion({"rssi": 40.01}), False, 100) is not None


def test_presence_flip_forwards():
    fwd, _ = make_forwarder()
    fwd.tick(Inclusion({"rssi": 40.0, "link": 80.0}), False, 0)
    msg = fwd.tick(Inclusion({"rssi": 40.0}), False, 100)
    assert msg is not None
    assert msg.text == ["RSSI #2 @ 10.00 Hz"]


def test_new_record_forwards_even_if_unchanged():
    fwd, factory = make_forwarder()
    fwd.tick(Inclusion({"rssi": 40.0}), True, 0)
    assert fwd.tick(Inclusion({"rssi": 40.0}), True, 100) is not None
    assert len(factory.payloads) == 2


def test_empty_inclusion_produces_nothing():
    fwd, factory = make_forwarder()
    assert fwd.tick(Inclusion({}), True, 0) is None
    assert factory.sockets == []


def test_fallback_heartbeat_rate_limited():
    fwd, factory = make_forwarder()
    down = Inclusion({"rssi": 0.0, "link": 0.0}, fallback=True)
    assert fwd.tick(down, False, 0) is not None
    assert fwd.tick(down, False, 999) is None
    assert fwd.tick(down, False, 1000) is not None
    assert fwd.last_fallback_ms == 1000
    assert [p["value"] for p in factory.payloads] == [[0.0, 0.0], [0.0, 0.0]]


def test_leaving_fallback_clears_heartbeat():
    fwd, _ = make_forwarder()
    fwd.tick(Inclusion({"rssi": 0.0}, fallback=True), False, 0)
    fwd.tick(Inclusion({"rssi": 40.0}), True, 100)
    assert fwd.last_fallback_ms is None
    assert fwd.tick(Inclusion({"rssi": 0.0}, fallback=True), False, 200) is not None


def test_connect_attempts_are_rate_limited():
    fwd, factory = make_forwarder(fail_connect=True)
    assert fwd.tick(Inclusion({"rssi": 40.0}), True, 0) is None
    assert fwd.tick(Inclusion({"rssi": 40.0}), True, 500) is None
    assert len(factory.sockets) == 1
    assert factory.sockets[0].closed

    assert fwd.tick(Inclusion({"rssi": 40.0}), True, 1000) is None
    assert len(factory.sockets) == 2
    assert fwd.update_counter == 0


def test_send_failure_drops_message_and_backs_off():
    fwd, factory = make_forwarder(fail_send=True)
    assert fwd.tick(Inclusion({"rssi": 40.0}), True, 0) is None
    assert not fwd.connection.connected
    assert factory.sockets[0].closed
    assert fwd.update_counter == 0
    assert not fwd.snapshot_valid

    factory.kwargs["fail_send"] = False
    assert fwd.tick(Inclusion({"rssi": 40.0}), True, 999) is None
    assert len(factory.sockets) == 1

    msg = fwd.tick(Inclusion({"rssi": 41.0}), False, 1000)
    assert msg.text == ["RSSI #1 @ 0.00 Hz"]
    assert factory.payloads == [{"text": msg.text, "value": [41.0]}]


def test_snapshot_updated_after_success():
    fwd, _ = make_forwarder()
    fwd.tick(Inclusion({"link": 80.0}), True, 0)
    assert fwd.snapshot["link"].present
    assert fwd.snapshot["link"].value == 80.0
    assert not fwd.snapshot["rssi"].present


def test_display_connection_real_unix_socket(tmp_path):
    path = tmp_path / "osd.sock"
    display = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    display.bind(str(path))
    try:
        conn = DisplayConnection(str(path))
        assert conn.ensure(0)
        assert conn.send(b'{"text":[],"value":[]}\n', 0)
        assert display.recv(512) == b'{"text":[],"value":[]}\n'
        conn.close()
        assert not conn.connected
    finally:
        display.close()


def test_display_connection_missing_path(tmp_path):
    conn = DisplayConnection(str(tmp_path / "absent.sock"))
    assert not conn.ensure(0)
    assert conn.last_attempt_ms == 0


def test_first_connect_attempt_is_immediate():
    fwd, factory = make_forwarder()
    assert fwd.connection.ensure(0)
    assert len(factory.sockets) == 1

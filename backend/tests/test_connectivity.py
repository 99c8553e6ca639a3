import pytest

from backend.app.connectivity import ConnectivityMonitor


class _Remote:
    def __init__(self, result):
        self.result = result

    def ping(self):
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def test_callbacks_fire_only_on_transitions():
    conn = ConnectivityMonitor(online=True)
    events = []
    conn.subscribe("online", lambda: events.append("online"))
    conn.subscribe("offline", lambda: events.append("offline"))

    assert conn.set_online(True) is False
    assert conn.set_online(False) is True
    assert conn.set_online(False) is False
    assert conn.set_online(True) is True
    assert events == ["offline", "online"]


def test_failing_listener_does_not_block_others():
    conn = ConnectivityMonitor(online=False)
    seen = []

    def boom():
        raise RuntimeError("listener bug")

    conn.subscribe("online", boom)
    conn.subscribe("online", lambda: seen.append(True))
    conn.set_online(True)
    assert seen == [True]
    assert conn.online is True


def test_unknown_event_is_rejected():
    with pytest.raises(ValueError):
        ConnectivityMonitor().subscribe("flaky", lambda: None)


def test_probe_follows_remote_ping():
    conn = ConnectivityMonitor(online=True)
    assert conn.probe(_Remote(False)) is False
    assert conn.online is False
    assert conn.probe(_Remote(True)) is True
    assert conn.online is True
    assert conn.probe(_Remote(RuntimeError("dns"))) is False
    assert conn.online is False

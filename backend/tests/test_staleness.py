from backend.app.connectivity import ConnectivityMonitor
from backend.app.local_store import LocalCacheStore, LocalStorage
from backend.app.staleness import DEFAULT_STALE_AFTER_MS, StalenessPolicy


class _Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def _policy(online=True):
    clock = _Clock(10_000_000)
    cache = LocalCacheStore(LocalStorage(":memory:"), clock=clock)
    conn = ConnectivityMonitor(online=online)
    return StalenessPolicy(cache, conn, clock=clock), cache, conn, clock


def test_local_is_used_right_after_a_write_then_expires():
    policy, cache, _, clock = _policy()
    assert policy.should_use_local("supply") is False

    cache.save("supply", [{"id": "a"}])
    assert policy.should_use_local("supply") is True

    clock.now += DEFAULT_STALE_AFTER_MS - 1
    assert policy.should_use_local("supply") is True

    clock.now += 2
    assert policy.should_use_local("supply") is False


def test_offline_always_uses_local():
    policy, cache, conn, clock = _policy(online=False)
    assert policy.should_use_local("stock") is True
    conn.set_online(True)
    assert policy.should_use_local("stock") is False


def test_window_is_per_collection():
    policy, cache, _, _ = _policy()
    cache.save("recipes", [])
    assert policy.should_use_local("recipes") is True
    assert policy.should_use_local("supply") is False

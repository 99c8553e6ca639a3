import json
import sqlite3

import pytest

from backend.app.local_store import COLLECTION_KEYS, STORAGE_KEYS, LocalCacheStore, LocalStorage


class _BrokenStorage:
    def get_item(self, key):
        raise OSError("disk unavailable")

    def set_item(self, key, value):
        raise OSError("quota exceeded")

    def remove_item(self, key):
        raise OSError("disk unavailable")


def test_local_storage_persists_across_instances(tmp_path):
    path = str(tmp_path / "local.sqlite")
    LocalStorage(path).set_item("k", "v1")
    storage = LocalStorage(path)
    assert storage.get_item("k") == "v1"
    storage.set_item("k", "v2")
    assert storage.get_item("k") == "v2"
    storage.remove_item("k")
    assert storage.get_item("k") is None


def test_save_then_load_returns_same_records_in_order():
    cache = LocalCacheStore(LocalStorage(":memory:"), clock=lambda: 1_000)
    records = [{"id": "b", "name": "Sugar"}, {"id": "a", "name": "Flour"}]
    assert cache.save("supply", records) is True
    assert cache.load("supply") == records

    cache.save("supply", [{"id": "c", "name": "Salt"}])
    assert cache.load("supply") == [{"id": "c", "name": "Salt"}]


def test_snapshot_envelope_layout():
    storage = LocalStorage(":memory:")
    cache = LocalCacheStore(storage, clock=lambda: 1_700_000_000_000)
    cache.save("stock", [{"id": "s1"}])

    envelope = json.loads(storage.get_item(COLLECTION_KEYS["stock"]))
    assert envelope["data"] == [{"id": "s1"}]
    assert envelope["timestamp"] == 1_700_000_000_000
    assert envelope["last_modified"].startswith("2023-11-14T22:13:20")
    assert cache.last_write_time("stock") == 1_700_000_000_000


def test_load_missing_or_corrupt_snapshot_is_empty():
    storage = LocalStorage(":memory:")
    cache = LocalCacheStore(storage)
    assert cache.load("recipes") == []
    assert cache.last_write_time("recipes") == 0

    storage.set_item(COLLECTION_KEYS["recipes"], "{not json")
    assert cache.load("recipes") == []

    storage.set_item(COLLECTION_KEYS["recipes"], json.dumps([1, 2, 3]))
    assert cache.load("recipes") == []

    storage.set_item(COLLECTION_KEYS["recipes"], json.dumps({"data": [{"id": "r1"}, "junk"], "timestamp": 5}))
    assert cache.load("recipes") == [{"id": "r1"}]


def test_unknown_collection_is_rejected():
    cache = LocalCacheStore(LocalStorage(":memory:"))
    with pytest.raises(ValueError):
        cache.save("orders", [])


def test_storage_failures_are_counted_not_raised():
    cache = LocalCacheStore(_BrokenStorage())
    assert cache.save("supply", [{"id": "x"}]) is False
    assert cache.load("supply") == []
    assert cache.storage_errors == 2
    assert cache.last_storage_error == "disk unavailable"


def test_clear_keeps_pos_settings_and_sync_lease():
    storage = LocalStorage(":memory:")
    cache = LocalCacheStore(storage)
    for key in STORAGE_KEYS.values():
        storage.set_item(key, "x")

    cache.clear()

    assert storage.get_item(STORAGE_KEYS["pos_settings"]) == "x"
    assert storage.get_item(STORAGE_KEYS["sync_lease"]) == "x"
    for name, key in STORAGE_KEYS.items():
        if name not in {"pos_settings", "sync_lease"}:
            assert storage.get_item(key) is None


def test_transaction_commits_or_rolls_back_as_a_whole(tmp_path):
    storage = LocalStorage(str(tmp_path / "local.sqlite"))
    storage.set_item("a", "1")

    with pytest.raises(RuntimeError):
        with storage.transaction() as tx:
            tx.set_item("a", "2")
            tx.set_item("b", "2")
            raise RuntimeError("boom")
    assert storage.get_item("a") == "1"
    assert storage.get_item("b") is None

    with storage.transaction() as tx:
        assert tx.get_item("a") == "1"
        tx.set_item("a", "3")
        tx.remove_item("b")
    assert storage.get_item("a") == "3"


def test_transaction_holds_the_write_lock_against_other_connections(tmp_path):
    path = str(tmp_path / "local.sqlite")
    holder = LocalStorage(path)
    other = LocalStorage(path, busy_timeout_s=0.05)

    with holder.transaction() as tx:
        tx.set_item("k", "mine")
        with pytest.raises(sqlite3.OperationalError):
            with other.transaction():
                pass
        assert other.get_item("k") is None
    assert other.get_item("k") == "mine"

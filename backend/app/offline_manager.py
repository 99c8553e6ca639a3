from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from .connectivity import ConnectivityMonitor
from .local_store import LocalCacheStore, LocalStorage
from .logs import json_log
from .pending_changes import PendingChangeQueue
from .record_ids import LocalRef, RecordRef, new_temp_id, now_ms, parse_ref, ref_of
from .remote_store import materialize
from .staleness import StalenessPolicy
from .sync_engine import LEASE_TTL_MS_DEFAULT, SyncEngine
from .validation import COLLECTIONS

OPERATIONS = ("create", "update", "delete")


@dataclass(frozen=True)
class WriteResult:
    ref: RecordRef
    queued: bool

    @property
    def record_id(self) -> str:
        return self.ref.value

    def to_dict(self) -> dict:
        return {
            "id": self.record_id,
            "is_temporary": isinstance(self.ref, LocalRef),
            "queued": self.queued,
        }


@dataclass(frozen=True)
class Notice:
    kind: str
    message: str
    created_at_ms: int


class OfflineDataManager:
    """
    Local-first access to the supply/stock/recipes collections.

    Writes land in the local snapshot first, then go to the remote store when it is reachable;
    anything that cannot be confirmed right away is queued and replayed by the sync engine.
    Remote failures never escape `write` or `read`.
    """

    def __init__(
        self,
        cache: LocalCacheStore,
        queue: PendingChangeQueue,
        remote,
        connectivity: ConnectivityMonitor,
        *,
        stale_after_ms: int = 5 * 60 * 1000,
        max_attempts: int = 3,
        settle_seconds: float = 1.0,
        clock: Callable[[], int] = now_ms,
        timer_factory=threading.Timer,
        lease_ttl_ms: int = LEASE_TTL_MS_DEFAULT,
    ):
        self.cache = cache
        self.queue = queue
        self.remote = remote
        self.connectivity = connectivity
        self.clock = clock
        self.policy = StalenessPolicy(cache, connectivity, stale_after_ms=stale_after_ms, clock=clock)
        self.engine = SyncEngine(
            queue,
            remote,
            connectivity,
            cache.storage,
            max_attempts=max_attempts,
            settle_seconds=settle_seconds,
            refresh=self.refresh_from_remote,
            notify=self._push_notice,
            clock=clock,
            timer_factory=timer_factory,
            lease_ttl_ms=lease_ttl_ms,
        )
        self.engine.attach()
        self._local_lock = threading.RLock()
        # Bumped on every local write; a remote read only lands if its generation is still current.
        self._generations = {c: 0 for c in COLLECTIONS}
        self._notices: deque[Notice] = deque(maxlen=50)

    @classmethod
    def from_settings(cls, settings, remote, storage=None, online: bool = True):
        storage = storage or LocalStorage(settings.local_db_path)
        return cls(
            LocalCacheStore(storage),
            PendingChangeQueue(storage),
            remote,
            ConnectivityMonitor(online=online),
            stale_after_ms=int(settings.stale_after_s) * 1000,
            max_attempts=settings.sync_max_attempts,
            settle_seconds=settings.sync_settle_s,
            lease_ttl_ms=int(settings.sync_lease_s) * 1000,
        )

    # Notices ("saved locally", "syncing N changes", ...) for UI banners.

    def _push_notice(self, kind: str, message: str) -> None:
        self._notices.append(Notice(kind=kind, message=message, created_at_ms=self.clock()))

    def notices(self, since_ms: int = 0) -> list[dict]:
        return [
            {"kind": n.kind, "message": n.message, "created_at_ms": n.created_at_ms}
            for n in list(self._notices)
            if n.created_at_ms >= since_ms
        ]

    # Local snapshot.

    def _check_collection(self, collection: str) -> str:
        c = (collection or "").strip().lower()
        if c not in COLLECTIONS:
            raise ValueError(f"unknown collection: {collection}")
        return c

    def _bump_generation(self, collection: str) -> None:
        with self._local_lock:
            self._generations[collection] = self._generations.get(collection, 0) + 1

    def _generation(self, collection: str) -> int:
        with self._local_lock:
            return self._generations.get(collection, 0)

    def _save_local(self, collection: str, records: list) -> None:
        with self._local_lock:
            self._bump_generation(collection)
            if not self.cache.save(collection, records):
                self._push_notice("storage_error", "Could not save changes on this device")

    def _store_remote_snapshot(self, collection: str, records: list, generation: int) -> bool:
        with self._local_lock:
            if self._generations.get(collection, 0) != generation:
                json_log("info", "local_cache.stale_remote_read_discarded", collection=collection)
                return False
            return self.cache.save(collection, records)

    def apply_local_change(self, collection: str, operation: str, payload: Optional[dict] = None, record_id: Optional[str] = None) -> Optional[str]:
        """Apply a change to the local snapshot. Returns the temporary id given to a created record."""
        collection = self._check_collection(collection)
        temp_id = None
        with self._local_lock:
            records = self.cache.load(collection)
            if operation == "create":
                temp_id = new_temp_id(self.clock()).temp_id
                records.append({**(payload or {}), "id": temp_id, "is_temporary": True})
            elif operation == "update":
                for i, r in enumerate(records):
                    if r.get("id") == record_id:
                        records[i] = {**r, **(payload or {})}
                        break
            elif operation == "delete":
                records = [r for r in records if r.get("id") != record_id]
            else:
                raise ValueError(f"unknown operation: {operation}")
            self._save_local(collection, records)
        return temp_id

    def _promote_temp_id(self, collection: str, temp_id: str, remote_id: str) -> None:
        with self._local_lock:
            records = self.cache.load(collection)
            for r in records:
                if r.get("id") == temp_id:
                    r["id"] = remote_id
                    r.pop("is_temporary", None)
                    break
            self._save_local(collection, records)

    # UI-facing surface.

    def write(self, collection: str, operation: str, payload: Optional[dict] = None, record_id: Optional[str] = None) -> WriteResult:
        collection = self._check_collection(collection)
        operation = (operation or "").strip().lower()
        if operation not in OPERATIONS:
            raise ValueError(f"unknown operation: {operation}")
        if operation != "create" and not record_id:
            raise ValueError(f"{operation} requires a record id")
        clean = {k: v for k, v in (payload or {}).items() if k not in {"id", "is_temporary"}}

        temp_id = self.apply_local_change(collection, operation, clean, record_id)

        # Queued changes go first; a direct write would overtake them.
        if self.connectivity.online and self.queue.count() == 0:
            try:
                if operation == "create":
                    new_id = self.remote.create(collection, clean)
                    self._promote_temp_id(collection, temp_id, str(new_id))
                    return WriteResult(ref=parse_ref(str(new_id)), queued=False)
                target = parse_ref(record_id)
                if isinstance(target, LocalRef):
                    mapped = self.queue.resolve_remote_id(target.temp_id)
                    target = parse_ref(mapped) if mapped else None
                if target is not None:
                    if operation == "update":
                        self.remote.update(collection, target.value, clean)
                    else:
                        self.remote.delete(collection, target.value)
                    return WriteResult(ref=target, queued=False)
            except Exception as ex:
                json_log(
                    "warning",
                    "offline_manager.remote_write_failed",
                    collection=collection,
                    operation=operation,
                    error=str(ex),
                )

        self.queue.enqueue(
            collection,
            operation,
            clean if operation != "delete" else None,
            target_id=record_id,
            temp_id=temp_id,
        )
        self._push_notice("saved_locally", "Changes saved locally. Will sync when online.")
        if self.connectivity.online:
            self.engine.schedule_sync(0)
        ref = LocalRef(temp_id) if temp_id else parse_ref(record_id)
        return WriteResult(ref=ref, queued=True)

    def _has_pending(self, collection: str) -> bool:
        return any(c.collection == collection for c in self.queue.list())

    def read(self, collection: str) -> list:
        collection = self._check_collection(collection)
        if self.policy.should_use_local(collection) or self._has_pending(collection):
            return self.cache.load(collection)
        generation = self._generation(collection)
        try:
            records = materialize(self.remote.read_all(collection))
        except Exception as ex:
            json_log("warning", "offline_manager.remote_read_failed", collection=collection, error=str(ex))
            return self.cache.load(collection)
        if not self._store_remote_snapshot(collection, records, generation):
            return self.cache.load(collection)
        return records

    def adopt_resolved_ids(self) -> int:
        """Swap confirmed temp ids in the local snapshots for their remote ids. Returns records changed."""
        mapping = self.queue.resolved_ids()
        if not mapping:
            return 0
        changed = 0
        with self._local_lock:
            for collection in COLLECTIONS:
                records = self.cache.load(collection)
                touched = False
                for r in records:
                    ref = ref_of(r)
                    if isinstance(ref, LocalRef) and ref.temp_id in mapping:
                        r["id"] = mapping[ref.temp_id]
                        r.pop("is_temporary", None)
                        touched = True
                        changed += 1
                if touched:
                    self._save_local(collection, records)
        return changed

    def refresh_from_remote(self) -> dict:
        """Overwrite every local snapshot with the remote state."""
        out = {}
        # The id map may only go once every snapshot really holds remote ids.
        complete = True
        for collection in COLLECTIONS:
            generation = self._generation(collection)
            try:
                records = materialize(self.remote.read_all(collection))
            except Exception as ex:
                complete = False
                json_log("error", "offline_manager.refresh_failed", collection=collection, error=str(ex))
                out[collection] = None
                continue
            if not self._store_remote_snapshot(collection, records, generation):
                complete = False
            out[collection] = len(records)
        self.adopt_resolved_ids()
        if complete:
            self.queue.forget_resolved_ids()
        return out

    def pending_count(self) -> int:
        return self.queue.count()

    def pending_changes(self) -> list[dict]:
        return [c.to_dict() for c in self.queue.list()]

    def trigger_sync(self):
        return self.engine.sync_pending_changes()

    def set_online(self, online: bool) -> bool:
        return self.connectivity.set_online(online)

    def clear_all_local_data(self) -> None:
        with self._local_lock:
            for c in COLLECTIONS:
                self._bump_generation(c)
            self.cache.clear()

    def status(self) -> dict:
        last = self.engine.last_result
        return {
            "online": self.connectivity.online,
            "pending_count": self.pending_count(),
            "sync_in_progress": self.engine.in_progress,
            "last_sync_ms": self.engine.last_sync_time(),
            "last_result": last.to_dict() if last else None,
            "storage_errors": self.cache.storage_errors,
            "last_storage_error": self.cache.last_storage_error,
            "collections": {
                c: {
                    "last_write_ms": self.cache.last_write_time(c),
                    "use_local": self.policy.should_use_local(c),
                }
                for c in COLLECTIONS
            },
        }

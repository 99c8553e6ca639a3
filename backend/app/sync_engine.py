"""
Replays queued offline changes against the remote store.

One pass walks the pending queue in insertion order and dispatches each change:

- create -> remote.create(collection, payload)
- update -> remote.update(collection, target_id, payload)   (partial merge)
- delete -> remote.delete(collection, target_id)

A confirmed change is removed from the queue. A failed change keeps its place and gets its
retry counter bumped; once the counter reaches `max_attempts` the change is dropped. Failures
never abort the pass. Only one pass runs at a time, across every process sharing the local
store (see `SyncLease`); a trigger that arrives while a pass is running is ignored.
"""

from __future__ import annotations

import json
import os
import socket
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .local_store import STORAGE_KEYS
from .logs import json_log
from .record_ids import LocalRef, now_ms, parse_ref, random_suffix
from .remote_store import RemoteStoreError

MAX_ATTEMPTS_DEFAULT = 3
SETTLE_SECONDS_DEFAULT = 1.0
LEASE_TTL_MS_DEFAULT = 120_000


@dataclass(frozen=True)
class SyncResult:
    status: str
    attempted: int = 0
    synced: int = 0
    failed: int = 0
    dropped: int = 0
    started_at_ms: int = 0
    finished_at_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "attempted": self.attempted,
            "synced": self.synced,
            "failed": self.failed,
            "dropped": self.dropped,
            "started_at_ms": self.started_at_ms,
            "finished_at_ms": self.finished_at_ms,
        }


class SyncLease:
    """
    Cross-process claim on the pending queue.

    The API process and the sync worker share one local store, so the in-process lock alone
    cannot keep two passes from replaying the same changes. The lease is one row (owner +
    expiry) written under the store's write lock; an expired lease left by a crashed holder
    can be taken over.
    """

    def __init__(
        self,
        storage,
        *,
        ttl_ms: int = LEASE_TTL_MS_DEFAULT,
        owner: Optional[str] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.storage = storage
        self.ttl_ms = max(1, int(ttl_ms))
        self.owner = owner or f"{socket.gethostname()}:{os.getpid()}:{random_suffix(6)}"
        self.clock = clock

    def _current(self, kv) -> Optional[dict]:
        raw = kv.get_item(STORAGE_KEYS["sync_lease"])
        try:
            data = json.loads(raw) if raw else None
            if not isinstance(data, dict):
                return None
            data["expires_at_ms"] = int(data.get("expires_at_ms") or 0)
        except (TypeError, ValueError):
            return None
        return data

    def claim(self) -> bool:
        """Take (or extend) the lease. False while another owner holds an unexpired one."""
        now = self.clock()
        with self.storage.transaction() as tx:
            cur = self._current(tx)
            if cur and cur.get("owner") != self.owner and cur["expires_at_ms"] > now:
                return False
            tx.set_item(
                STORAGE_KEYS["sync_lease"],
                json.dumps({"owner": self.owner, "expires_at_ms": now + self.ttl_ms}),
            )
        return True

    def release(self) -> None:
        with self.storage.transaction() as tx:
            cur = self._current(tx)
            if cur and cur.get("owner") == self.owner:
                tx.remove_item(STORAGE_KEYS["sync_lease"])

    def holder(self) -> Optional[str]:
        cur = self._current(self.storage)
        if not cur or cur["expires_at_ms"] <= self.clock():
            return None
        return cur.get("owner")


class SyncEngine:
    def __init__(
        self,
        queue,
        remote,
        connectivity,
        storage,
        *,
        max_attempts: int = MAX_ATTEMPTS_DEFAULT,
        settle_seconds: float = SETTLE_SECONDS_DEFAULT,
        refresh: Optional[Callable[[], None]] = None,
        notify: Optional[Callable[[str, str], None]] = None,
        clock: Callable[[], int] = now_ms,
        timer_factory=threading.Timer,
        lease_ttl_ms: int = LEASE_TTL_MS_DEFAULT,
    ):
        self.queue = queue
        self.remote = remote
        self.connectivity = connectivity
        self.storage = storage
        self.max_attempts = max(1, int(max_attempts or MAX_ATTEMPTS_DEFAULT))
        self.settle_seconds = max(0.0, float(settle_seconds))
        self.refresh = refresh
        self.notify = notify
        self.clock = clock
        self.timer_factory = timer_factory
        self._in_flight = threading.Lock()
        self.lease = SyncLease(storage, ttl_ms=lease_ttl_ms, clock=clock)
        self._timer_lock = threading.Lock()
        self._timer = None
        self.last_result: Optional[SyncResult] = None

    @property
    def in_progress(self) -> bool:
        return self._in_flight.locked()

    def attach(self, connectivity=None) -> None:
        (connectivity or self.connectivity).subscribe("online", self.handle_online)

    def handle_online(self) -> None:
        # Give a flapping connection a moment to settle before replaying.
        self.schedule_sync(self.settle_seconds)

    def schedule_sync(self, delay_seconds: Optional[float] = None) -> None:
        delay = self.settle_seconds if delay_seconds is None else max(0.0, float(delay_seconds))
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = self.timer_factory(delay, self._run_scheduled)
            timer.daemon = True
            self._timer = timer
        timer.start()

    def cancel_scheduled(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _run_scheduled(self) -> None:
        with self._timer_lock:
            self._timer = None
        try:
            self.sync_pending_changes()
        except Exception as ex:
            json_log("error", "sync.scheduled_pass_failed", error=str(ex))

    def last_sync_time(self) -> int:
        try:
            raw = self.storage.get_item(STORAGE_KEYS["last_sync"])
            return int(raw) if raw else 0
        except Exception:
            return 0

    def _set_last_sync_time(self, ts: int) -> None:
        try:
            self.storage.set_item(STORAGE_KEYS["last_sync"], str(ts))
        except Exception as ex:
            json_log("error", "sync.last_sync_write_failed", error=str(ex))

    def _notify(self, kind: str, message: str) -> None:
        if self.notify is None:
            return
        try:
            self.notify(kind, message)
        except Exception as ex:
            json_log("warning", "sync.notify_failed", error=str(ex))

    def _resolve_target(self, change) -> str:
        ref = parse_ref(change.target_id)
        if ref is None:
            raise RemoteStoreError(f"{change.operation} without a target id")
        if isinstance(ref, LocalRef):
            remote_id = self.queue.resolve_remote_id(ref.temp_id)
            if not remote_id:
                raise RemoteStoreError(f"temporary id not yet confirmed: {ref.temp_id}")
            return remote_id
        return ref.id

    def dispatch(self, change) -> Optional[str]:
        """Apply one change remotely. Returns the new record id for creates."""
        if change.operation == "create":
            return self.remote.create(change.collection, dict(change.payload or {}))
        if change.operation == "update":
            self.remote.update(change.collection, self._resolve_target(change), dict(change.payload or {}))
            return None
        if change.operation == "delete":
            self.remote.delete(change.collection, self._resolve_target(change))
            return None
        raise ValueError(f"unknown operation: {change.operation}")

    def sync_pending_changes(self) -> SyncResult:
        started = self.clock()
        if not self.connectivity.online:
            return SyncResult(status="offline", started_at_ms=started, finished_at_ms=started)
        if not self._in_flight.acquire(blocking=False):
            json_log("info", "sync.skipped_in_progress")
            return SyncResult(status="in_progress", started_at_ms=started, finished_at_ms=started)
        try:
            if not self._claim_lease():
                return SyncResult(status="in_progress", started_at_ms=started, finished_at_ms=started)
            try:
                result = self._run_pass(started)
            finally:
                self._release_lease()
        finally:
            self._in_flight.release()
        self.last_result = result
        if result.synced > 0:
            self._refresh()
        return result

    def _claim_lease(self) -> bool:
        try:
            claimed = self.lease.claim()
        except Exception as ex:
            json_log("warning", "sync.lease_unavailable", error=str(ex))
            return False
        if not claimed:
            json_log("info", "sync.skipped_lease_held", holder=self.lease.holder())
        return claimed

    def _release_lease(self) -> None:
        try:
            self.lease.release()
        except Exception as ex:
            json_log("warning", "sync.lease_release_failed", error=str(ex))

    def _run_pass(self, started: int) -> SyncResult:
        pending = self.queue.list()
        if not pending:
            return SyncResult(status="empty", started_at_ms=started, finished_at_ms=self.clock())

        json_log("info", "sync.started", pending=len(pending))
        self._notify("syncing", f"Syncing {len(pending)} changes...")

        attempted = 0
        synced = 0
        failed = 0
        dropped = 0
        for change in pending:
            # Extend the lease between changes; stop if another process took it over.
            if attempted and not self._claim_lease():
                json_log("warning", "sync.lease_lost", remaining=len(pending) - attempted)
                break
            attempted += 1
            try:
                new_id = self.dispatch(change)
            except Exception as ex:
                failed += 1
                retries = self.queue.record_failure(change.id)
                json_log(
                    "warning",
                    "sync.change_failed",
                    change_id=change.id,
                    collection=change.collection,
                    operation=change.operation,
                    retry_count=retries,
                    error=str(ex),
                )
                if retries >= self.max_attempts:
                    self.queue.remove(change.id)
                    dropped += 1
                    json_log(
                        "warning",
                        "sync.change_dropped",
                        change_id=change.id,
                        collection=change.collection,
                        operation=change.operation,
                        attempts=retries,
                    )
                    self._notify(
                        "change_dropped",
                        f"Gave up on {change.operation} in {change.collection} after {retries} attempts",
                    )
                continue

            if change.operation == "create" and change.temp_id and new_id:
                self.queue.remember_remote_id(change.temp_id, str(new_id))
            self.queue.remove(change.id)
            synced += 1

        finished = self.clock()
        self._set_last_sync_time(finished)
        json_log("info", "sync.finished", synced=synced, failed=failed, dropped=dropped)
        self._notify("sync_finished", f"Synced {synced} changes" + (f", {failed} failed" if failed else ""))
        return SyncResult(
            status="completed",
            attempted=attempted,
            synced=synced,
            failed=failed,
            dropped=dropped,
            started_at_ms=started,
            finished_at_ms=finished,
        )

    def _refresh(self) -> None:
        if self.refresh is None:
            return
        try:
            self.refresh()
        except Exception as ex:
            json_log("error", "sync.refresh_failed", error=str(ex))

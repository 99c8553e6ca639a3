from __future__ import annotations

import json
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .local_store import STORAGE_KEYS
from .logs import json_log
from .record_ids import now_ms, random_suffix


@dataclass
class PendingChange:
    id: str
    collection: str
    operation: str
    payload: Optional[dict]
    target_id: Optional[str]
    created_at_ms: int
    created_at: str
    # Placeholder id given to the local copy of a queued create.
    temp_id: Optional[str] = None
    synced: bool = False
    retry_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict) -> Optional["PendingChange"]:
        try:
            return cls(
                id=str(raw["id"]),
                collection=str(raw["collection"]),
                operation=str(raw["operation"]),
                payload=raw.get("payload"),
                target_id=raw.get("target_id"),
                created_at_ms=int(raw.get("created_at_ms") or 0),
                created_at=str(raw.get("created_at") or ""),
                temp_id=raw.get("temp_id"),
                synced=bool(raw.get("synced") or False),
                retry_count=int(raw.get("retry_count") or 0),
            )
        except (KeyError, TypeError, ValueError):
            return None



def _parse_changes(raw: Optional[str]) -> list[PendingChange]:
    if not raw:
        return []
    try:
        rows = json.loads(raw)
    except Exception as ex:
        json_log("warning", "pending_changes.corrupt", error=str(ex))
        return []
    if not isinstance(rows, list):
        return []
    out = []
    for r in rows:
        ch = PendingChange.from_dict(r) if isinstance(r, dict) else None
        if ch is not None:
            out.append(ch)
    return out


def _parse_id_map(raw: Optional[str]) -> dict[str, str]:
    try:
        data = json.loads(raw) if raw else {}
    except Exception as ex:
        json_log("warning", "pending_changes.id_map_unreadable", error=str(ex))
        return {}
    return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}


class PendingChangeQueue:
    """
    Append-only log of mutations not yet confirmed by the remote store.

    Entries are serialized as one JSON list under a fixed storage key and replayed in insertion
    order. Confirmed entries are removed, never flagged. Every read-modify-write runs inside one
    storage transaction, so an API process and a sync worker sharing the file cannot lose each
    other's updates.
    """

    def __init__(self, storage, clock: Callable[[], int] = now_ms):
        self.storage = storage
        self.clock = clock
        self._lock = threading.RLock()

    def _mutate(self, step, event: str, **fields):
        """Run `step(tx)` in one storage transaction. A storage error rolls the step back and is logged."""
        try:
            with self._lock, self.storage.transaction() as tx:
                return step(tx)
        except Exception as ex:
            json_log("error", event, error=str(ex), **fields)
            return None

    def _write(self, tx, changes: list[PendingChange]) -> None:
        tx.set_item(
            STORAGE_KEYS["pending_changes"],
            json.dumps([c.to_dict() for c in changes], default=str),
        )

    def enqueue(
        self,
        collection: str,
        operation: str,
        payload: Optional[dict] = None,
        target_id: Optional[str] = None,
        temp_id: Optional[str] = None,
    ) -> PendingChange:
        ts = self.clock()
        change = PendingChange(
            id=f"{collection}_{operation}_{ts}_{random_suffix()}",
            collection=collection,
            operation=operation,
            payload=dict(payload) if payload is not None else None,
            target_id=None if operation == "create" else target_id,
            created_at_ms=ts,
            created_at=datetime.fromtimestamp(ts / 1000, tz=timezone.utc).isoformat(),
            temp_id=temp_id,
        )

        def append(tx):
            changes = _parse_changes(tx.get_item(STORAGE_KEYS["pending_changes"]))
            changes.append(change)
            self._write(tx, changes)

        self._mutate(append, "pending_changes.write_failed", change_id=change.id)
        json_log("info", "pending_changes.queued", change_id=change.id, collection=collection, operation=operation)
        return change

    def list(self) -> list[PendingChange]:
        try:
            raw = self.storage.get_item(STORAGE_KEYS["pending_changes"])
        except Exception as ex:
            json_log("error", "pending_changes.read_failed", error=str(ex))
            return []
        return _parse_changes(raw)

    def get(self, change_id: str) -> Optional[PendingChange]:
        return next((c for c in self.list() if c.id == change_id), None)

    def remove(self, change_id: str) -> None:
        def drop(tx):
            changes = _parse_changes(tx.get_item(STORAGE_KEYS["pending_changes"]))
            kept = [c for c in changes if c.id != change_id]
            if len(kept) != len(changes):
                self._write(tx, kept)

        self._mutate(drop, "pending_changes.write_failed", change_id=change_id)

    def record_failure(self, change_id: str) -> int:
        """Persist one more failed attempt for `change_id`; returns the new retry count (0 if absent)."""
        def bump(tx):
            changes = _parse_changes(tx.get_item(STORAGE_KEYS["pending_changes"]))
            for c in changes:
                if c.id == change_id:
                    c.retry_count += 1
                    self._write(tx, changes)
                    return c.retry_count
            return 0

        return self._mutate(bump, "pending_changes.write_failed", change_id=change_id) or 0

    def count(self) -> int:
        return len(self.list())

    # Temp id -> remote id map for records created offline.

    def remember_remote_id(self, temp_id: str, remote_id: str) -> None:
        def put(tx):
            mapping = _parse_id_map(tx.get_item(STORAGE_KEYS["temp_ids"]))
            mapping[temp_id] = remote_id
            tx.set_item(STORAGE_KEYS["temp_ids"], json.dumps(mapping))

        self._mutate(put, "pending_changes.id_map_write_failed", temp_id=temp_id)

    def resolved_ids(self) -> dict[str, str]:
        try:
            return _parse_id_map(self.storage.get_item(STORAGE_KEYS["temp_ids"]))
        except Exception as ex:
            json_log("warning", "pending_changes.id_map_unreadable", error=str(ex))
            return {}

    def resolve_remote_id(self, temp_id: str) -> Optional[str]:
        return self.resolved_ids().get(temp_id)

    def forget_resolved_ids(self) -> bool:
        """Drop the id map once no queued change can still reference a temp id."""
        def forget(tx):
            if _parse_changes(tx.get_item(STORAGE_KEYS["pending_changes"])):
                return False
            tx.remove_item(STORAGE_KEYS["temp_ids"])
            return True

        return bool(self._mutate(forget, "pending_changes.id_map_write_failed"))

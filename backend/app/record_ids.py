from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass
from typing import Optional, Union

TEMP_PREFIX = "temp_"

_BASE36 = string.digits + string.ascii_lowercase


@dataclass(frozen=True)
class LocalRef:
    """Placeholder id of a record that has not been confirmed by the remote store."""

    temp_id: str

    @property
    def value(self) -> str:
        return self.temp_id


@dataclass(frozen=True)
class RemoteRef:
    id: str

    @property
    def value(self) -> str:
        return self.id


RecordRef = Union[LocalRef, RemoteRef]


def random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def now_ms() -> int:
    return int(time.time() * 1000)


def new_temp_id(now: Optional[int] = None) -> LocalRef:
    ts = now if now is not None else now_ms()
    return LocalRef(f"{TEMP_PREFIX}{ts}_{random_suffix()}")


def is_temp_id(raw: Optional[str]) -> bool:
    return bool(raw) and str(raw).startswith(TEMP_PREFIX)


def parse_ref(raw: Optional[str]) -> Optional[RecordRef]:
    v = (raw or "").strip()
    if not v:
        return None
    if is_temp_id(v):
        return LocalRef(v)
    return RemoteRef(v)


def ref_of(record: dict) -> Optional[RecordRef]:
    if not isinstance(record, dict):
        return None
    ref = parse_ref(record.get("id"))
    if ref is not None and record.get("is_temporary") and isinstance(ref, RemoteRef):
        # A record flagged temporary never carries an authoritative id.
        return LocalRef(ref.id)
    return ref

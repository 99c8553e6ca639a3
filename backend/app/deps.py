import threading
from typing import Optional

from fastapi import HTTPException

from .config import settings
from .local_store import LocalStorage
from .logs import json_log
from .offline_manager import OfflineDataManager
from .remote_store import build_remote_store

# Process-wide singletons; one local store and one remote adapter per API process.
_lock = threading.Lock()
_storage: Optional[LocalStorage] = None
_remote = None
_manager: Optional[OfflineDataManager] = None


def get_storage() -> LocalStorage:
    global _storage
    with _lock:
        if _storage is None:
            _storage = LocalStorage(settings.local_db_path)
        return _storage


def get_remote():
    global _remote
    with _lock:
        if _remote is None:
            try:
                _remote = build_remote_store(settings)
            except ValueError as ex:
                json_log("error", "deps.remote_misconfigured", backend=settings.remote_backend, error=str(ex))
                raise HTTPException(status_code=503, detail="remote store is not configured")
        return _remote


def get_manager() -> OfflineDataManager:
    global _manager
    if _manager is not None:
        return _manager
    storage = get_storage()
    remote = get_remote()
    with _lock:
        if _manager is None:
            _manager = OfflineDataManager.from_settings(settings, remote, storage=storage)
        return _manager


def reset_singletons() -> None:
    """Drop cached singletons (used on shutdown)."""
    global _storage, _remote, _manager
    with _lock:
        if _manager is not None:
            _manager.engine.cancel_scheduled()
        if _remote is not None and hasattr(_remote, "close"):
            _remote.close()
        _storage = None
        _remote = None
        _manager = None

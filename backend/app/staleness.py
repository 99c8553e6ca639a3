from __future__ import annotations

from typing import Callable

from .record_ids import now_ms

DEFAULT_STALE_AFTER_MS = 5 * 60 * 1000


class StalenessPolicy:
    def __init__(self, cache, connectivity, stale_after_ms: int = DEFAULT_STALE_AFTER_MS, clock: Callable[[], int] = now_ms):
        self.cache = cache
        self.connectivity = connectivity
        self.stale_after_ms = int(stale_after_ms)
        self.clock = clock

    def has_recent_local_write(self, collection: str) -> bool:
        last = self.cache.last_write_time(collection)
        return (self.clock() - last) < self.stale_after_ms

    def should_use_local(self, collection: str) -> bool:
        # Offline, or a local write within the window: serve the snapshot.
        return (not self.connectivity.online) or self.has_recent_local_write(collection)

from __future__ import annotations

import threading
from typing import Callable

from .logs import json_log

EVENTS = ("online", "offline")


class ConnectivityMonitor:
    """Online/offline flag with transition callbacks (fired only when the state flips)."""

    def __init__(self, online: bool = True):
        self._online = bool(online)
        self._lock = threading.Lock()
        self._listeners: dict[str, list[Callable[[], None]]] = {e: [] for e in EVENTS}

    @property
    def online(self) -> bool:
        return self._online

    def subscribe(self, event: str, callback: Callable[[], None]) -> None:
        if event not in self._listeners:
            raise ValueError(f"unknown connectivity event: {event}")
        self._listeners[event].append(callback)

    def set_online(self, online: bool) -> bool:
        """Returns True when the call changed the state."""
        online = bool(online)
        with self._lock:
            if online == self._online:
                return False
            self._online = online
        event = "online" if online else "offline"
        json_log("info", f"connectivity.{event}")
        for cb in list(self._listeners[event]):
            try:
                cb()
            except Exception as ex:
                json_log("error", "connectivity.listener_failed", connectivity_event=event, error=str(ex))
        return True

    def probe(self, remote) -> bool:
        try:
            ok = bool(remote.ping())
        except Exception as ex:
            json_log("warning", "connectivity.probe_failed", error=str(ex))
            ok = False
        self.set_online(ok)
        return ok

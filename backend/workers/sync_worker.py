#!/usr/bin/env python3
"""
Long-running sync worker.

Probes the remote store on an interval and replays the local pending-change queue whenever the
remote is reachable. Uses the same local store file as the API process, so queued changes made
while the API was offline get pushed even when nobody is using the app.

Run with `python3 -m backend.workers.sync_worker [--once]`.
"""

import argparse
import sys
import time
import traceback

from backend.app.config import settings
from backend.app.local_store import LocalStorage
from backend.app.logs import json_log
from backend.app.offline_manager import OfflineDataManager
from backend.app.remote_store import PostgresDocumentStore, build_remote_store


def run_once(manager: OfflineDataManager) -> dict:
    """One probe + sync pass. Never raises."""
    out = {"online": False, "status": None, "synced": 0, "pending": 0}
    try:
        out["online"] = manager.connectivity.probe(manager.remote)
    except Exception as ex:
        json_log("error", "worker.sync.probe_error", error=str(ex))
        traceback.print_exc(file=sys.stderr)
        manager.set_online(False)

    try:
        result = manager.trigger_sync()
        out["status"] = result.status
        out["synced"] = result.synced
    except Exception as ex:
        # Never crash the worker loop due to sync errors.
        json_log("error", "worker.sync.error", error=str(ex))
        traceback.print_exc(file=sys.stderr)
        out["status"] = "error"

    out["pending"] = manager.pending_count()
    return out


def build_manager(db_path: str) -> OfflineDataManager:
    remote = build_remote_store(settings)
    if isinstance(remote, PostgresDocumentStore):
        remote.ensure_schema()
    # Start offline; the first probe decides. While the API process runs a pass it holds the
    # sync lease in the shared local store, and this worker reports "in_progress" until it is released.
    return OfflineDataManager.from_settings(settings, remote, storage=LocalStorage(db_path), online=False)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--local-db", default=settings.local_db_path)
    parser.add_argument("--interval", type=float, default=settings.probe_interval_s)
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    args = parser.parse_args()

    manager = build_manager(args.local_db)
    json_log("info", "worker.sync.started", backend=settings.remote_backend, interval_s=args.interval)
    try:
        while True:
            out = run_once(manager)
            if out["synced"] or out["status"] not in {"empty", "offline"}:
                json_log("info", "worker.sync.pass", **out)
            if args.once:
                break
            # If something was synced, loop again quickly; otherwise back off.
            time.sleep(0 if out["synced"] and out["pending"] else args.interval)
    except KeyboardInterrupt:
        json_log("info", "worker.sync.stopped")
    finally:
        close = getattr(manager.remote, "close", None)
        if close:
            close()


if __name__ == "__main__":
    main()

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..deps import get_manager
from ..logs import json_log

router = APIRouter(prefix="/sync", tags=["sync"])


class ConnectivityIn(BaseModel):
    online: bool


@router.get("/status")
def sync_status(manager=Depends(get_manager)):
    return manager.status()


@router.get("/pending")
def pending_changes(manager=Depends(get_manager)):
    return {"count": manager.pending_count(), "changes": manager.pending_changes()}


@router.post("")
def trigger_sync(manager=Depends(get_manager)):
    result = manager.trigger_sync()
    return {"result": result.to_dict(), "pending_count": manager.pending_count()}


@router.get("/notices")
def list_notices(since_ms: int = 0, manager=Depends(get_manager)):
    return {"notices": manager.notices(since_ms)}


@router.post("/connectivity")
def set_connectivity(data: ConnectivityIn, manager=Depends(get_manager)):
    changed = manager.set_online(data.online)
    return {"online": manager.connectivity.online, "changed": changed}


@router.post("/refresh")
def refresh_local_cache(manager=Depends(get_manager)):
    return {"collections": manager.refresh_from_remote()}


@router.delete("/local-data")
def clear_local_data(manager=Depends(get_manager)):
    pending = manager.pending_count()
    manager.clear_all_local_data()
    json_log("warning", "sync.local_data_cleared", pending_dropped=pending)
    return {"ok": True, "pending_dropped": pending}

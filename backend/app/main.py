from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import time
import uuid
from datetime import datetime, timezone
from .routers.supply import router as supply_router
from .routers.stock import router as stock_router
from .routers.recipes import router as recipes_router
from .routers.pos import router as pos_router
from .routers.sync import router as sync_router
from .config import settings
from .deps import get_manager, get_remote, reset_singletons
from .logs import json_log
from .remote_store import PostgresDocumentStore, RemoteStoreError

app = FastAPI(title="Knox Inventory API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)
SERVICE_NAME = "knox-inventory"


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


@app.exception_handler(RemoteStoreError)
def _remote_store_error(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log("warning", "http.request.remote_failed", request_id=rid, path=req.url.path, error=str(exc))
    content = {"detail": "remote store unavailable", "request_id": rid}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return JSONResponse(status_code=503, content=content)


@app.exception_handler(ValueError)
def _value_error(_req: Request, exc: Exception):
    content = {"detail": "invalid value"}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return JSONResponse(status_code=400, content=content)


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.env in {"local", "dev"} and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    content = {"detail": "internal error", "request_id": rid}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)

# Correlation id + basic structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as exc:
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=dur_ms,
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if not path.startswith("/health"):
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=dur_ms,
        )
    return response

# The inventory and POS pages are served from a different origin during development.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(supply_router)
app.include_router(stock_router)
app.include_router(recipes_router)
app.include_router(pos_router)
app.include_router(sync_router)


@app.on_event("startup")
def _startup():
    try:
        remote = get_remote()
        if isinstance(remote, PostgresDocumentStore):
            remote.ensure_schema()
        manager = get_manager()
        manager.connectivity.probe(remote)
        json_log(
            "info",
            "startup.remote_ready",
            env=settings.env,
            version=settings.api_version,
            backend=settings.remote_backend,
            online=manager.connectivity.online,
            pending=manager.pending_count(),
        )
        if manager.connectivity.online and manager.pending_count():
            manager.engine.schedule_sync()
    except Exception as exc:
        json_log("warning", "startup.remote_probe_failed", env=settings.env, error=str(exc))


@app.on_event("shutdown")
def _shutdown():
    reset_singletons()


@app.get("/")
def root():
    return {"status": "ok", "service": "api"}


def _remote_health():
    try:
        manager = get_manager()
        online = manager.connectivity.probe(manager.remote)
        return online, None if online else "remote unreachable", manager
    except Exception as exc:
        return False, str(exc), None


@app.get("/health")
def health(req: Request):
    request_id = _current_request_id(req)
    ok, err, manager = _remote_health()
    content = {
        "status": "ok" if ok else "degraded",
        "env": settings.env,
        "remote": "ok" if ok else "down",
        "pending_changes": manager.pending_count() if manager else None,
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": request_id,
    }
    # Offline is a supported mode: the local cache keeps serving, so health stays 200.
    if not ok and settings.env in {"local", "dev"}:
        content["error"] = err
    return content


@app.get("/health/live")
def health_live(req: Request):
    return {
        "status": "ok",
        "env": settings.env,
        "service": SERVICE_NAME,
        "request_id": _current_request_id(req),
    }


@app.get("/health/ready")
def health_ready(req: Request):
    request_id = _current_request_id(req)
    ok, err, _manager = _remote_health()
    if not ok:
        content = {
            "status": "degraded",
            "env": settings.env,
            "remote": "down",
            "service": SERVICE_NAME,
            "version": settings.api_version,
            "request_id": request_id,
        }
        if settings.env in {"local", "dev"}:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)
    return {
        "status": "ready",
        "env": settings.env,
        "remote": "ok",
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "request_id": request_id,
    }


@app.get("/meta")
def meta():
    return {
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "env": settings.env,
        "remote_backend": settings.remote_backend,
        "uptime_seconds": int((datetime.now(timezone.utc) - STARTED_AT_UTC).total_seconds()),
        "started_at": STARTED_AT_UTC.isoformat(),
    }

"""
Remote document store adapters.

Every adapter exposes the same surface, addressed by (collection, record id):

- create(collection, payload) -> record id
- update(collection, record_id, partial_payload)   (shallow merge)
- delete(collection, record_id)
- read_all(collection) -> [(record_id, payload), ...]
- ping() -> bool

Adapter-specific failures are wrapped in `RemoteStoreError` (or `RemoteUnavailableError`
for connectivity/timeouts) so callers only ever handle one exception family.
"""

from __future__ import annotations

import json
import socket
import uuid
from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool


class RemoteStoreError(Exception):
    pass


class RemoteUnavailableError(RemoteStoreError):
    pass


def materialize(rows: list[tuple[str, dict]]) -> list[dict]:
    """[(id, payload)] -> [{"id": id, **payload}] in the order given."""
    out = []
    for rid, payload in rows or []:
        rec = dict(payload or {})
        rec["id"] = str(rid)
        rec.pop("is_temporary", None)
        out.append(rec)
    return out


class FirebaseRestStore:
    def __init__(self, base_url: str, auth: str = "", timeout_s: float = 10.0):
        if not (base_url or "").strip():
            raise ValueError("KNOX_REMOTE_URL is required for the firebase backend")
        self.base_url = base_url.strip().rstrip("/")
        self.auth = (auth or "").strip()
        self.timeout_s = max(0.2, float(timeout_s or 10.0))

    def _url(self, path: str, **params) -> str:
        qs = {k: v for k, v in params.items() if v is not None}
        if self.auth:
            qs["auth"] = self.auth
        url = f"{self.base_url}/{quote(path.strip('/'))}.json"
        if qs:
            url = url + "?" + urlencode(qs)
        return url

    def _request(self, method: str, path: str, payload=None, **params):
        data = None
        headers = {}
        if payload is not None:
            data = json.dumps(payload, default=str).encode("utf-8")
            headers["Content-Type"] = "application/json"
        req = Request(self._url(path, **params), data=data, headers=headers, method=method)
        try:
            with urlopen(req, timeout=self.timeout_s) as resp:
                body = resp.read().decode("utf-8") if resp else ""
        except HTTPError as ex:
            # The server answered; this is not a connectivity problem.
            try:
                detail = ex.read().decode("utf-8")
            except Exception:
                detail = ""
            msg = f"http {getattr(ex, 'code', None)} {getattr(ex, 'reason', '')}".strip()
            if detail:
                msg = f"{msg}: {detail[:500]}"
            raise RemoteStoreError(msg) from ex
        except (URLError, socket.timeout, TimeoutError, ConnectionError) as ex:
            raise RemoteUnavailableError(str(ex)) from ex
        if not body:
            return None
        try:
            return json.loads(body)
        except Exception as ex:
            raise RemoteStoreError(f"invalid json from remote: {body[:200]}") from ex

    def create(self, collection: str, payload: dict) -> str:
        res = self._request("POST", collection, payload)
        name = (res or {}).get("name") if isinstance(res, dict) else None
        if not name:
            raise RemoteStoreError("remote did not return a record id")
        return str(name)

    def update(self, collection: str, record_id: str, payload: dict) -> None:
        self._request("PATCH", f"{collection}/{record_id}", payload)

    def delete(self, collection: str, record_id: str) -> None:
        self._request("DELETE", f"{collection}/{record_id}")

    def read_all(self, collection: str) -> list[tuple[str, dict]]:
        data = self._request("GET", collection)
        if not data:
            return []
        if isinstance(data, list):
            # Integer-like keys come back as a sparse array.
            return [(str(i), v) for i, v in enumerate(data) if isinstance(v, dict)]
        # Push ids sort chronologically.
        return [(str(k), v) for k, v in sorted(data.items()) if isinstance(v, dict)]

    def ping(self) -> bool:
        try:
            self._request("GET", "", shallow="true")
            return True
        except RemoteStoreError:
            return False


_DOCUMENTS_DDL = """
CREATE TABLE IF NOT EXISTS knox_documents (
  collection text NOT NULL,
  id text NOT NULL,
  payload jsonb NOT NULL DEFAULT '{}'::jsonb,
  created_at timestamptz NOT NULL DEFAULT now(),
  updated_at timestamptz NOT NULL DEFAULT now(),
  PRIMARY KEY (collection, id)
)
"""


class PostgresDocumentStore:
    def __init__(
        self,
        db_url: str,
        min_size: int = 1,
        max_size: int = 5,
        timeout_s: float = 10.0,
        pool: Optional[ConnectionPool] = None,
    ):
        # Keep row_factory=dict_row so row access matches the rest of the codebase.
        self._pool = pool or ConnectionPool(
            conninfo=db_url,
            min_size=min_size,
            max_size=max_size,
            timeout=timeout_s,
            kwargs={"row_factory": dict_row},
            open=True,
        )

    def _conn(self):
        return self._pool.connection()

    def _run(self, fn):
        try:
            with self._conn() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        return fn(cur)
        except psycopg.OperationalError as ex:
            raise RemoteUnavailableError(str(ex)) from ex
        except psycopg.Error as ex:
            raise RemoteStoreError(str(ex)) from ex

    def ensure_schema(self) -> None:
        self._run(lambda cur: cur.execute(_DOCUMENTS_DDL))

    def create(self, collection: str, payload: dict) -> str:
        rid = uuid.uuid4().hex

        def _create(cur):
            cur.execute(
                """
                INSERT INTO knox_documents (collection, id, payload)
                VALUES (%s, %s, %s::jsonb)
                RETURNING id
                """,
                (collection, rid, json.dumps(payload or {}, default=str)),
            )
            row = cur.fetchone()
            return str(row["id"]) if row else rid

        return self._run(_create)

    def update(self, collection: str, record_id: str, payload: dict) -> None:
        def _update(cur):
            # Shallow merge, same semantics as a realtime-database `update()`.
            cur.execute(
                """
                INSERT INTO knox_documents (collection, id, payload)
                VALUES (%s, %s, %s::jsonb)
                ON CONFLICT (collection, id) DO UPDATE
                SET payload = knox_documents.payload || EXCLUDED.payload,
                    updated_at = now()
                """,
                (collection, record_id, json.dumps(payload or {}, default=str)),
            )

        self._run(_update)

    def delete(self, collection: str, record_id: str) -> None:
        self._run(
            lambda cur: cur.execute(
                "DELETE FROM knox_documents WHERE collection = %s AND id = %s",
                (collection, record_id),
            )
        )

    def read_all(self, collection: str) -> list[tuple[str, dict]]:
        def _read(cur):
            cur.execute(
                """
                SELECT id, payload
                FROM knox_documents
                WHERE collection = %s
                ORDER BY created_at ASC, id ASC
                """,
                (collection,),
            )
            out = []
            for r in cur.fetchall() or []:
                payload = r.get("payload") or {}
                if isinstance(payload, str):
                    payload = json.loads(payload)
                out.append((str(r["id"]), payload))
            return out

        return self._run(_read)

    def ping(self) -> bool:
        try:
            self._run(lambda cur: cur.execute("SELECT 1 AS ok"))
            return True
        except RemoteStoreError:
            return False

    def close(self) -> None:
        try:
            self._pool.close()
        except Exception:
            pass


def build_remote_store(settings):
    backend = (settings.remote_backend or "firebase").strip().lower()
    if backend == "postgres":
        return PostgresDocumentStore(
            settings.db_url,
            min_size=settings.db_pool_min,
            max_size=settings.db_pool_max,
            timeout_s=settings.remote_timeout_s,
        )
    if backend == "firebase":
        return FirebaseRestStore(settings.remote_url, auth=settings.remote_auth, timeout_s=settings.remote_timeout_s)
    raise ValueError(f"unknown KNOX_REMOTE_BACKEND: {backend}")

import os
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except Exception:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        # Comma-separated list of allowed CORS origins for the inventory/POS pages.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )

        # Local persisted key-value store (snapshots + pending queue).
        self.local_db_path = os.getenv("KNOX_LOCAL_DB_PATH", "knox_local.sqlite").strip() or "knox_local.sqlite"

        # Remote document store: "firebase" (Realtime Database REST) or "postgres" (JSONB table).
        self.remote_backend = (os.getenv("KNOX_REMOTE_BACKEND", "firebase").strip().lower() or "firebase")
        self.remote_url = os.getenv("KNOX_REMOTE_URL", "").strip()
        self.remote_auth = os.getenv("KNOX_REMOTE_AUTH", "").strip()
        self.remote_timeout_s = _env_float("KNOX_REMOTE_TIMEOUT_S", 10.0)
        self.db_url = os.getenv("DATABASE_URL", "postgresql://localhost/knox")
        self.db_pool_min = _env_int("DB_POOL_MIN_SIZE", 1)
        self.db_pool_max = _env_int("DB_POOL_MAX_SIZE", 5)

        # Offline queue / sync policy.
        self.stale_after_s = _env_int("KNOX_STALE_AFTER_S", 300)
        self.sync_max_attempts = _env_int("KNOX_SYNC_MAX_ATTEMPTS", 3)
        self.sync_settle_s = _env_float("KNOX_SYNC_SETTLE_S", 1.0)
        # A pass holds the shared-queue lease this long without progress before another process may take over.
        self.sync_lease_s = _env_int("KNOX_SYNC_LEASE_S", 120)
        self.probe_interval_s = _env_float("KNOX_PROBE_INTERVAL_S", 15.0)

        # Pricing.
        self.gst_rate = _env_float("KNOX_GST_RATE", 0.08)
        self.pos_tax_rate = _env_float("KNOX_POS_TAX_RATE", 12.0)


settings = Settings()

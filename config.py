"""
config.py
---------
Central configuration module. Loads all environment variables
from the .env file and exposes them as typed constants.
"""

import os
from dotenv import load_dotenv

load_dotenv()


# ── PostgreSQL ────────────────────────────────────────────
DB_HOST: str = os.getenv("DB_HOST", "localhost")
DB_PORT: int = int(os.getenv("DB_PORT", "5432"))
DB_NAME: str = os.getenv("DB_NAME", "tenants")
DB_USER: str = os.getenv("DB_USER", "postgres")
DB_PASS: str = os.getenv("DB_PASS", "")

DATABASE_URL: str = os.getenv(
    "DATABASE_URL",
    f"postgresql://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)

# Schema holding the catalog of managed tenant schemas
ADMIN_SCHEMA: str = os.getenv("ADMIN_SCHEMA", "tenant_admin")

# ── Connection pools ──────────────────────────────────────
POOL_MIN_CONN: int = int(os.getenv("POOL_MIN_CONN", "1"))
ADMIN_POOL_MAX_CONN: int = int(os.getenv("ADMIN_POOL_MAX_CONN", "10"))
SCHEMA_POOL_MAX_CONN: int = int(os.getenv("SCHEMA_POOL_MAX_CONN", "5"))
POOL_ACQUIRE_TIMEOUT_SECONDS: float = float(os.getenv("POOL_ACQUIRE_TIMEOUT_SECONDS", "5"))

# ── Idle pool eviction ────────────────────────────────────
POOL_IDLE_SECONDS: float = float(os.getenv("POOL_IDLE_SECONDS", "300"))
POOL_EVICT_INTERVAL_SECONDS: float = float(os.getenv("POOL_EVICT_INTERVAL_SECONDS", "60"))

# ── Export ────────────────────────────────────────────────
EXPORT_PAGE_SIZE: int = int(os.getenv("EXPORT_PAGE_SIZE", "500"))

# ── Activity log ──────────────────────────────────────────
# Empty string disables the JSON-lines file sink.
ACTIVITY_LOG_PATH: str = os.getenv("ACTIVITY_LOG_PATH", "logs/activity.jsonl")
# Size at which the file is rotated to `<path>.1`
ACTIVITY_LOG_MAX_BYTES: int = int(os.getenv("ACTIVITY_LOG_MAX_BYTES", str(10 * 1024 * 1024)))

# ── Logging ───────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

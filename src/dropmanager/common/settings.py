"""
Runtime settings, read from the environment (and a local .env file).
"""
import os
from pathlib import Path

from dotenv import load_dotenv

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
load_dotenv()


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# Durable store
DB_ENV_VAR = "DROPMANAGER_DB_PATH"
PERSISTENCE_ENABLED = _env_flag("DROPMANAGER_PERSISTENCE", True)

# Language analysis
ANALYZER_MODEL = os.getenv("DROPMANAGER_ANALYZER_MODEL", "gpt-4o-mini")
OPENAI_TIMEOUT_SECONDS = _env_float("DROPMANAGER_OPENAI_TIMEOUT", 120.0)

# Result cache (seconds)
CACHE_TTL_SECONDS = _env_float("DROPMANAGER_CACHE_TTL_SECONDS", 300.0)
CACHE_SWEEP_SECONDS = _env_float("DROPMANAGER_CACHE_SWEEP_SECONDS", 60.0)

# Background ingestion
UPDATE_QUEUE_SIZE = _env_int("DROPMANAGER_UPDATE_QUEUE_SIZE", 100)

# HTTP service
HOST = os.getenv("DROPMANAGER_HOST", "127.0.0.1")
PORT = _env_int("DROPMANAGER_PORT", 8080)
LOG_LEVEL = os.getenv("DROPMANAGER_LOG_LEVEL", "INFO").upper()

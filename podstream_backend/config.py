"""
Configuration for the PodStream backend.

Values are read from the environment once at import time; helpers clamp
out-of-range numbers and log a warning instead of failing startup.
"""
import logging
import os
from pathlib import Path

from .utils import env_bool

logger = logging.getLogger(__name__)


def _env_raw(*names: str, default: str | None = None) -> str | None:
    for name in names:
        if not name:
            continue
        val = os.getenv(name)
        if val is not None and str(val).strip() != "":
            return str(val).strip()
    return default


def _env_int(default: int, *names: str, min_value: int | None = None, max_value: int | None = None) -> int:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid integer for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


def _env_float(default: float, *names: str, min_value: float | None = None, max_value: float | None = None) -> float:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid float for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


def _env_bool(default: bool, *names: str) -> bool:
    for name in names:
        if name and name in os.environ:
            return env_bool(name, default)
    return default


def _resolve_data_dir() -> Path:
    env_path = _env_raw("PODSTREAM_DATA_DIR")
    if env_path:
        try:
            return Path(env_path).expanduser().resolve()
        except (OSError, RuntimeError):
            logger.warning("Failed to resolve PODSTREAM_DATA_DIR: %s, using fallback", env_path)
    return (Path.cwd() / "podstream_data").resolve()


DATA_DIR_PATH = _resolve_data_dir()
DATA_DIR = str(DATA_DIR_PATH)

# SQLite database (videos, users, favorites, stats)
DB_PATH = Path(_env_raw("PODSTREAM_DB_PATH", default=str(DATA_DIR_PATH / "podstream.sqlite")) or "")
DB = str(DB_PATH)

# Video payloads live as files under the blob directory
BLOB_DIR_PATH = Path(_env_raw("PODSTREAM_BLOB_DIR", default=str(DATA_DIR_PATH / "blobs")) or "")
BLOB_DIR = str(BLOB_DIR_PATH)

# Database tuning
DB_TIMEOUT = _env_float(30.0, "PODSTREAM_DB_TIMEOUT", min_value=1.0, max_value=300.0)
DB_MAX_CONNECTIONS = _env_int(8, "PODSTREAM_DB_MAX_CONNECTIONS", min_value=1, max_value=64)
# 0 disables the per-statement timeout (SQLite busy_timeout still applies).
DB_QUERY_TIMEOUT = _env_float(0.0, "PODSTREAM_DB_QUERY_TIMEOUT", min_value=0.0, max_value=600.0)
DB_LOCK_RETRIES = _env_int(6, "PODSTREAM_DB_LOCK_RETRIES", min_value=0, max_value=50)

# Blob store
UPLOAD_MAX_BYTES = _env_int(
    2 * 1024 * 1024 * 1024,
    "PODSTREAM_UPLOAD_MAX_BYTES",
    min_value=1024,
    max_value=64 * 1024 * 1024 * 1024,
)
BLOB_CHUNK_BYTES = _env_int(256 * 1024, "PODSTREAM_BLOB_CHUNK_BYTES", min_value=4096, max_value=16 * 1024 * 1024)

# HTTP server
HOST = str(_env_raw("PODSTREAM_HOST", default="127.0.0.1"))
PORT = _env_int(3000, "PODSTREAM_PORT", min_value=1, max_value=65535)
DEBUG = _env_bool(False, "PODSTREAM_DEBUG")


def initialize_directories() -> None:
    """Create the data and blob directories if they do not exist."""
    DATA_DIR_PATH.mkdir(parents=True, exist_ok=True)
    BLOB_DIR_PATH.mkdir(parents=True, exist_ok=True)
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)

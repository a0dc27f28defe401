"""
Database schema and migrations.
"""
import re
from typing import Dict, List, Tuple

from ...shared import Result, get_logger, log_success

logger = get_logger(__name__)

CURRENT_SCHEMA_VERSION = 1
# Schema version history (high-level):
# 1: videos, users, favorites, stats singleton, signup histogram, catalog indexes

SCHEMA = """
-- Metadata table for schema versioning
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

-- Videos: payload bytes live in the blob directory under blob_key
CREATE TABLE IF NOT EXISTS videos (
    id TEXT PRIMARY KEY,
    podcast_name TEXT NOT NULL,
    category TEXT NOT NULL,
    content_type TEXT NOT NULL,
    filename TEXT NOT NULL DEFAULT '',
    blob_key TEXT NOT NULL UNIQUE,
    size INTEGER NOT NULL DEFAULT 0,
    views INTEGER NOT NULL DEFAULT 0 CHECK (views >= 0),
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,  -- email-like identifier
    credential TEXT NOT NULL DEFAULT '',  -- opaque handle, hashed upstream
    role TEXT NOT NULL DEFAULT 'listener',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Favorites: video_id is a weak reference (no FK), dangling ids are tolerated
CREATE TABLE IF NOT EXISTS user_favorites (
    user_id TEXT NOT NULL,
    video_id TEXT NOT NULL,
    added_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (user_id, video_id),
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

-- Global counters (singleton row id=1)
CREATE TABLE IF NOT EXISTS stats (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    total_signups INTEGER NOT NULL DEFAULT 0 CHECK (total_signups >= 0),
    total_views INTEGER NOT NULL DEFAULT 0 CHECK (total_views >= 0)
);

-- One row per calendar day (YYYY-MM-DD)
CREATE TABLE IF NOT EXISTS signup_history (
    day TEXT PRIMARY KEY,
    count INTEGER NOT NULL DEFAULT 0 CHECK (count >= 0)
);
"""

INDEXES = """
CREATE INDEX IF NOT EXISTS idx_videos_category ON videos(category);
CREATE INDEX IF NOT EXISTS idx_videos_created ON videos(created_at, id);
CREATE INDEX IF NOT EXISTS idx_user_favorites_video ON user_favorites(video_id);
"""

# Columns added after a schema release go here as (column, definition) pairs per
# table; ensure_columns_exist() adds them to databases created before the change.
# Every column of version 1 is in SCHEMA, so there is nothing to heal yet.
COLUMN_DEFINITIONS: Dict[str, List[Tuple[str, str]]] = {}

_SAFE_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _is_safe_identifier(value: str) -> bool:
    return bool(value and isinstance(value, str) and _SAFE_IDENT_RE.match(value))


async def _get_table_columns(db, table_name: str) -> Result[List[str]]:
    if not _is_safe_identifier(table_name):
        return Result.Err("INVALID_INPUT", f"Invalid table name: {table_name}")
    result = await db.aquery(f"PRAGMA table_info('{table_name}')")
    if not result.ok:
        return Result.Err(result.code, f"Unable to inspect {table_name}: {result.error}")
    return Result.Ok([row["name"] for row in result.data or []])


async def table_has_column(db, table_name: str, column_name: str) -> bool:
    if not _is_safe_identifier(table_name) or not _is_safe_identifier(column_name):
        logger.warning("Invalid identifier in table_has_column: %s.%s", table_name, column_name)
        return False
    columns_result = await _get_table_columns(db, table_name)
    if not columns_result.ok:
        logger.warning("Unable to determine columns for %s: %s", table_name, columns_result.error)
        return False
    return column_name in (columns_result.data or [])


async def _ensure_column(db, table_name: str, column_name: str, definition: str) -> Result[bool]:
    columns_result = await _get_table_columns(db, table_name)
    if not columns_result.ok:
        return Result.Err(columns_result.code, columns_result.error or "PRAGMA failed")
    if column_name in (columns_result.data or []):
        return Result.Ok(True)

    logger.info("Adding missing column %s.%s", table_name, column_name)
    alter_result = await db.aexecute(f"ALTER TABLE {table_name} ADD COLUMN {definition}")
    if not alter_result.ok:
        return Result.Err(alter_result.code, alter_result.error or "ALTER TABLE failed")
    return Result.Ok(True)


async def ensure_columns_exist(db) -> Result[bool]:
    for table, columns in COLUMN_DEFINITIONS.items():
        for column_name, definition in columns:
            result = await _ensure_column(db, table, column_name, definition)
            if not result.ok:
                logger.error("Failed to ensure column %s.%s: %s", table, column_name, result.error)
                return result
    return Result.Ok(True)


async def ensure_tables_exist(db) -> Result[bool]:
    logger.info("Ensuring tables exist...")
    result = await db.aexecutescript(SCHEMA)
    if not result.ok:
        logger.error("Failed to ensure base tables: %s", result.error)
    return result


async def ensure_indexes(db) -> Result[bool]:
    result = await db.aexecutescript(INDEXES)
    if not result.ok:
        logger.error("Failed to ensure indexes: %s", result.error)
    return result


async def ensure_stats_row(db) -> Result[bool]:
    """Create the stats singleton with zero counters if it is missing."""
    result = await db.aexecute(
        "INSERT OR IGNORE INTO stats (id, total_signups, total_views) VALUES (1, 0, 0)"
    )
    if not result.ok:
        logger.error("Failed to ensure stats row: %s", result.error)
        return Result.Err(result.code, result.error or "Failed to ensure stats row")
    return Result.Ok(True)


async def _ensure_schema(db) -> Result[bool]:
    result = await ensure_tables_exist(db)
    if not result.ok:
        return result

    result = await ensure_columns_exist(db)
    if not result.ok:
        return result

    result = await ensure_indexes(db)
    if not result.ok:
        return result

    result = await ensure_stats_row(db)
    if not result.ok:
        return result

    version_result = await db.aset_schema_version(CURRENT_SCHEMA_VERSION)
    if not version_result.ok:
        logger.error("Failed to set schema version: %s", version_result.error)
        return Result.Err(version_result.code, version_result.error or "Failed to set schema version")

    log_success(logger, f"Schema ensured (version {CURRENT_SCHEMA_VERSION})")
    return Result.Ok(True)


async def init_schema(db) -> Result[bool]:
    """
    Initialize the schema (useful for tests or first-time installs).
    """
    return await _ensure_schema(db)


async def migrate_schema(db) -> Result[bool]:
    """
    Repair schema to current version by ensuring expected tables, columns
    and indexes exist.

    Args:
        db: Sqlite instance

    Returns:
        Result with success boolean
    """
    current_version = await db.aget_schema_version()
    logger.info("Ensuring schema (current version %s -> target %s)", current_version, CURRENT_SCHEMA_VERSION)

    repair_result = await _ensure_schema(db)
    if not repair_result.ok:
        return repair_result

    final_version = await db.aget_schema_version()
    if current_version == final_version:
        logger.info("Schema already reported up to date (%s)", final_version)
    else:
        log_success(logger, f"Schema migrated from version {current_version} to {final_version}")

    return Result.Ok(True)

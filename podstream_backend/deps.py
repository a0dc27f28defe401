"""
Dependency injection - builds services.
Simple, debug-friendly DI without framework magic.
"""

from datetime import date
from pathlib import Path
from typing import Callable, Optional

from .adapters.db.schema import migrate_schema
from .adapters.db.sqlite import Sqlite
from .config import (
    BLOB_CHUNK_BYTES,
    BLOB_DIR_PATH,
    DB,
    DB_LOCK_RETRIES,
    DB_MAX_CONNECTIONS,
    DB_QUERY_TIMEOUT,
    DB_TIMEOUT,
    UPLOAD_MAX_BYTES,
    initialize_directories,
)
from .engine import MediaEngine
from .features.blobs import BlobStore
from .features.catalog import CatalogService
from .features.favorites import FavoritesService
from .features.health import HealthService
from .features.histogram import SignupHistogram
from .features.ledger import CounterLedger
from .features.users import UsersService
from .shared import ErrorCode, Result, get_logger, log_success, timer

logger = get_logger(__name__)


def _init_db_or_error(db_path: str) -> Result[Sqlite]:
    logger.info("Initializing database: %s", db_path)
    try:
        return Result.Ok(
            Sqlite(
                db_path,
                max_connections=DB_MAX_CONNECTIONS,
                timeout=DB_TIMEOUT,
                query_timeout=DB_QUERY_TIMEOUT,
                lock_retries=DB_LOCK_RETRIES,
            )
        )
    except OSError as exc:
        logger.error("Failed to initialize database: %s", exc)
        return Result.Err(ErrorCode.STORAGE_FAILURE, f"Failed to initialize database: {exc}")


async def _migrate_db_or_error(db: Sqlite) -> Result[bool]:
    with timer("schema migration", logger):
        migrate_result = await migrate_schema(db)
    if not migrate_result.ok:
        logger.error("Schema migration failed: %s", migrate_result.error)
        return Result.Err(
            migrate_result.code or ErrorCode.STORAGE_FAILURE,
            f"Failed to initialize database: {migrate_result.error}",
        )
    return Result.Ok(True)


def _prepare_directories(db_path: Optional[str], blob_dir: Optional[Path]) -> Result[bool]:
    try:
        if db_path is None and blob_dir is None:
            initialize_directories()
        else:
            if db_path is not None:
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            if blob_dir is not None:
                blob_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Failed to initialize directories: %s", exc)
        return Result.Err(ErrorCode.STORAGE_FAILURE, f"Failed to initialize directories: {exc}")
    return Result.Ok(True)


async def build_services(
    db_path: str | None = None,
    blob_dir: str | Path | None = None,
    clock: Optional[Callable[[], date]] = None,
) -> Result[dict]:
    """
    Build all services (DI container).

    Args:
        db_path: Path to SQLite database (default: from config.DB)
        blob_dir: Directory for video payloads (default: from config.BLOB_DIR)
        clock: Callable returning the current calendar date for signup buckets

    Returns:
        Result[dict] of service instances
    """
    logger.info("Building services...")
    blob_path = Path(blob_dir) if blob_dir is not None else None
    dirs = _prepare_directories(db_path, blob_path)
    if not dirs.ok:
        return Result.Err(dirs.code, dirs.error or "Failed to initialize directories")

    db_res = _init_db_or_error(db_path if db_path is not None else DB)
    if not db_res.ok or db_res.data is None:
        return Result.Err(db_res.code or ErrorCode.STORAGE_FAILURE, db_res.error or "Failed to initialize database")
    db = db_res.data

    migrate_result = await _migrate_db_or_error(db)
    if not migrate_result.ok:
        await db.aclose()
        return Result.Err(migrate_result.code, migrate_result.error or "Schema migration failed")

    blobs = BlobStore(
        db,
        blob_dir=blob_path if blob_path is not None else BLOB_DIR_PATH,
        max_bytes=UPLOAD_MAX_BYTES,
        chunk_size=BLOB_CHUNK_BYTES,
    )
    ledger = CounterLedger(db)
    ensured = await ledger.ensure_stats()
    if not ensured.ok:
        logger.warning("Stats row not ensured at startup: %s", ensured.error)

    histogram = SignupHistogram(db, clock=clock)
    favorites = FavoritesService(db)
    users = UsersService(db)
    catalog = CatalogService(db, blobs)
    engine = MediaEngine(
        db,
        blobs,
        ledger=ledger,
        histogram=histogram,
        favorites=favorites,
        catalog=catalog,
        users=users,
    )

    services = {
        "db": db,
        "blobs": blobs,
        "ledger": ledger,
        "histogram": histogram,
        "favorites": favorites,
        "users": users,
        "catalog": catalog,
        "engine": engine,
        "health": HealthService(db=db, blob_dir=blobs.base_dir),
    }

    log_success(logger, "All services initialized")
    return Result.Ok(services)

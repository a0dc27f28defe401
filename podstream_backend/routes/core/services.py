"""
Service management and initialization.
"""
import asyncio
import threading
from typing import Any

from podstream_backend.deps import build_services
from podstream_backend.shared import ErrorCode, Result, get_logger

logger = get_logger(__name__)

_services: dict[str, Any] | None = None
_services_error: str | None = None
_services_lock: asyncio.Lock | None = None
_services_lock_guard = threading.Lock()
_service_options: dict[str, Any] = {}


def configure_services(**options: Any) -> None:
    """Set the build_services() arguments used for the next (re)build."""
    _service_options.clear()
    _service_options.update({k: v for k, v in options.items() if v is not None})


def _get_services_lock() -> asyncio.Lock:
    global _services_lock
    if _services_lock is not None:
        return _services_lock
    with _services_lock_guard:
        if _services_lock is None:
            _services_lock = asyncio.Lock()
        return _services_lock


async def _dispose_services() -> None:
    """Close the database pool and drop the cached container."""
    global _services
    if not _services:
        return
    db = _services.get("db")
    _services = None
    if db is not None:
        await db.aclose()
        logger.debug("Database connection closed successfully")


async def _build_services(force: bool = False) -> dict[str, Any] | None:
    global _services, _services_error
    async with _get_services_lock():
        if _services and not force:
            return _services
        if force:
            await _dispose_services()

        services_result = await build_services(**_service_options)
        if not services_result.ok:
            _services_error = services_result.error or "Initialization failed"
            logger.error("Failed to initialize services: %s", _services_error)
            _services = None
            return None

        _services = services_result.data
        _services_error = None
        return _services


async def _require_services() -> tuple[dict[str, Any] | None, Result[Any] | None]:
    services = await _build_services()
    if services:
        return services, None
    return None, Result.Err(
        ErrorCode.SERVICE_UNAVAILABLE,
        "Services are unavailable",
        detail=_services_error or "Initialization failed",
    )


def get_services_error() -> str | None:
    """Get the current services error if any."""
    return _services_error


async def shutdown_services() -> None:
    """Dispose services on app shutdown; the next request (or app) rebuilds them."""
    global _services_lock
    async with _get_services_lock():
        await _dispose_services()
    # The lock belongs to the loop that is shutting down.
    _services_lock = None

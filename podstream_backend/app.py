"""
aiohttp application factory.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Callable, Optional

from aiohttp import web

from .config import HOST, PORT, UPLOAD_MAX_BYTES
from .routes import register_routes
from .routes.core import _build_services, configure_services, get_services_error, shutdown_services
from .shared import get_logger, log_success

logger = get_logger(__name__)


def create_app(
    db_path: Optional[str] = None,
    blob_dir: Optional[str | Path] = None,
    clock: Optional[Callable[[], date]] = None,
) -> web.Application:
    """
    Build the PodStream aiohttp application.

    Services are built on startup and closed on cleanup. A failed startup
    build is logged and retried lazily by the first request.
    """
    configure_services(db_path=db_path, blob_dir=blob_dir, clock=clock)
    # Multipart uploads are streamed to disk; the blob store enforces the size limit.
    app = web.Application(client_max_size=int(UPLOAD_MAX_BYTES))
    register_routes(app)

    async def _on_startup(_app: web.Application) -> None:
        services = await _build_services(force=True)
        if services is None:
            logger.error("Starting without services: %s", get_services_error())
        else:
            log_success(logger, "PodStream ready")

    async def _on_cleanup(_app: web.Application) -> None:
        await shutdown_services()

    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app


def main() -> None:
    logger.info("Serving on http://%s:%s", HOST, PORT)
    web.run_app(create_app(), host=HOST, port=PORT, print=None)

"""
Route registration system.
Coordinates all route handlers and registers them with an aiohttp app.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from aiohttp import web

from podstream_backend.observability import API_PREFIX, ensure_observability
from podstream_backend.shared import get_logger

from .handlers import (
    register_account_routes,
    register_health_routes,
    register_media_routes,
    register_stats_routes,
)

logger = get_logger(__name__)

_APP_KEY_SECURITY_MIDDLEWARES_INSTALLED: web.AppKey[bool] = web.AppKey(
    "_podstream_security_middlewares_installed", bool
)
_APP_KEY_ROUTES_REGISTERED: web.AppKey[bool] = web.AppKey("_podstream_routes_registered", bool)


@web.middleware
async def security_headers_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Apply strict security headers to API responses."""
    response = await handler(request)
    if not (request.path or "").startswith(API_PREFIX):
        return response
    # Streamed responses are already sent; their headers are frozen.
    if response.prepared:
        return response
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate")
    return response


def build_route_table() -> web.RouteTableDef:
    """
    Register all route handlers and return the RouteTableDef.
    This is the central registration point for all routes.
    """
    routes = web.RouteTableDef()
    register_health_routes(routes)
    register_media_routes(routes)
    register_account_routes(routes)
    register_stats_routes(routes)
    return routes


def _log_routes(routes: web.RouteTableDef) -> None:
    logger.info("=" * 60)
    logger.info("Routes registered:")
    for item in routes:
        method = getattr(item, "method", "*")
        path = getattr(item, "path", "")
        logger.info("  %s %s", method, path)
    logger.info("=" * 60)


def register_routes(app: web.Application) -> None:
    """
    Register routes, observability and security middlewares onto an aiohttp application.
    Safe to call more than once per app.
    """
    ensure_observability(app)
    if not app.get(_APP_KEY_SECURITY_MIDDLEWARES_INSTALLED):
        app.middlewares.insert(0, security_headers_middleware)
        app[_APP_KEY_SECURITY_MIDDLEWARES_INSTALLED] = True

    if app.get(_APP_KEY_ROUTES_REGISTERED):
        logger.debug("register_routes(app) skipped: routes already registered on this app")
        return
    routes = build_route_table()
    app.add_routes(routes)
    app[_APP_KEY_ROUTES_REGISTERED] = True
    _log_routes(routes)

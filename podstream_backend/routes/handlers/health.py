"""
Health check endpoint.
"""
from aiohttp import web

from podstream_backend.shared import get_logger

from ..core import _json_response, _require_services

logger = get_logger(__name__)


def register_health_routes(routes: web.RouteTableDef) -> None:
    @routes.get("/api/health")
    async def health(request: web.Request):
        """Database/storage status; `overall` is healthy, degraded or unhealthy."""
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)
        result = await svc["health"].status()
        status = 200
        if result.ok and (result.data or {}).get("overall") == "unhealthy":
            logger.warning("Health check reports unhealthy: %s", (result.data or {}).get("database"))
            status = 503
        return _json_response(result, status=status)

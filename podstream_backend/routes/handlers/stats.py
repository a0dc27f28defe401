"""
Engagement statistics endpoint.
"""
from aiohttp import web

from ..core import _json_response, _require_services


def register_stats_routes(routes: web.RouteTableDef) -> None:
    @routes.get("/api/stats")
    async def stats(request: web.Request):
        """Return {totalSignups, totalViews, signupHistory: [{date, count}]}."""
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)
        return _json_response(await svc["engine"].get_stats())

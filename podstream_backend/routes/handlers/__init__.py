"""
Route handler modules.
"""
from .accounts import register_account_routes
from .health import register_health_routes
from .media import register_media_routes
from .stats import register_stats_routes

__all__ = [
    "register_account_routes",
    "register_health_routes",
    "register_media_routes",
    "register_stats_routes",
]

"""
Modular route system for the PodStream API.
Importing this package is side-effect free; route registration is explicit.
"""
from .registry import build_route_table, register_routes

__all__ = ["register_routes", "build_route_table"]

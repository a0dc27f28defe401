"""
Core utilities for route handlers.
"""
from .identity import USER_ID_HEADER, _require_user_id
from .request_json import _read_json
from .response import _json_response, status_for_result
from .services import (
    _build_services,
    _dispose_services,
    _require_services,
    configure_services,
    get_services_error,
    shutdown_services,
)

__all__ = [
    "_json_response",
    "status_for_result",
    "_read_json",
    "_require_user_id",
    "USER_ID_HEADER",
    "_require_services",
    "_build_services",
    "_dispose_services",
    "configure_services",
    "get_services_error",
    "shutdown_services",
]

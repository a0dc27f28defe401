"""Backend-facing alias for shared utilities.

Backend modules import from here so the shared package can move without
touching every feature module.
"""

from __future__ import annotations

import podstream_shared as _root_shared

Result = _root_shared.Result
ErrorCode = _root_shared.ErrorCode
UserRole = _root_shared.UserRole
VIDEO_CONTENT_TYPES = _root_shared.VIDEO_CONTENT_TYPES
get_logger = _root_shared.get_logger
log_success = _root_shared.log_success
log_structured = _root_shared.log_structured
request_id_var = _root_shared.request_id_var
sanitize_error_message = _root_shared.sanitize_error_message
utc_today = _root_shared.utc_today
format_timestamp = _root_shared.format_timestamp
timer = _root_shared.timer

__all__ = [
    "Result",
    "ErrorCode",
    "UserRole",
    "VIDEO_CONTENT_TYPES",
    "get_logger",
    "log_success",
    "log_structured",
    "request_id_var",
    "sanitize_error_message",
    "utc_today",
    "format_timestamp",
    "timer",
]

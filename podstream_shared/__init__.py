"""Shared utilities for PodStream."""
from .errors import sanitize_error_message
from .log import get_logger, log_structured, log_success, request_id_var
from .result import Result
from .time import format_timestamp, now, timer, utc_today
from .types import VIDEO_CONTENT_TYPES, ErrorCode, UserRole

__all__ = [
    "Result",
    "get_logger",
    "log_success",
    "log_structured",
    "request_id_var",
    "now",
    "format_timestamp",
    "timer",
    "utc_today",
    "ErrorCode",
    "UserRole",
    "VIDEO_CONTENT_TYPES",
    "sanitize_error_message",
]

"""
Shared types, enums, and constants.
"""
from enum import Enum
from typing import Final


class ErrorCode(str, Enum):
    """Standardized error codes (string enum)."""
    OK = "OK"

    # Client / validation
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_JSON = "INVALID_JSON"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    UNAUTHORIZED = "UNAUTHORIZED"

    # Server / infrastructure
    STORAGE_FAILURE = "STORAGE_FAILURE"
    CONFLICT_RETRY_EXHAUSTED = "CONFLICT_RETRY_EXHAUSTED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"

    # Operation errors
    UPLOAD_FAILED = "UPLOAD_FAILED"


class UserRole(str, Enum):
    """Role tags carried on user records."""
    LISTENER = "listener"
    CREATOR = "creator"
    ADMIN = "admin"


# Content types the upload route accepts by default (mp4, webm, mps in the legacy UI).
VIDEO_CONTENT_TYPES: Final[frozenset[str]] = frozenset(
    {
        "video/mp4",
        "video/webm",
        "video/mps",
        "application/octet-stream",
    }
)

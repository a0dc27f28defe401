"""
Response utilities for route handlers.
"""

import math

from aiohttp import web

from podstream_backend.shared import ErrorCode, Result

# Result codes that map to a non-200 HTTP status. Unlisted error codes are 500.
_STATUS_BY_CODE = {
    ErrorCode.INVALID_INPUT.value: 400,
    ErrorCode.INVALID_JSON.value: 400,
    ErrorCode.UNAUTHORIZED.value: 401,
    ErrorCode.NOT_FOUND.value: 404,
    ErrorCode.CONFLICT.value: 409,
    ErrorCode.UPLOAD_FAILED.value: 400,
    ErrorCode.STORAGE_FAILURE.value: 500,
    ErrorCode.CONFLICT_RETRY_EXHAUSTED.value: 503,
    ErrorCode.SERVICE_UNAVAILABLE.value: 503,
    ErrorCode.TIMEOUT.value: 504,
}


def status_for_result(result: Result) -> int:
    if result.ok:
        return 200
    return _STATUS_BY_CODE.get(str(result.code or ""), 500)


def _json_response(result: Result, status: int | None = None):
    """
    Convert Result to JSON response.

    Args:
        result: Result object
        status: HTTP status code (optional, derived from `result.code` if None)

    Returns:
        aiohttp web.Response
    """
    if status is None:
        status = status_for_result(result)

    payload = _sanitize_json_payload(
        {
            "ok": result.ok,
            "data": result.data,
            "error": result.error,
            "code": result.code,
            "meta": result.meta,
        }
    )

    response = web.json_response(payload, status=status)
    if result.code == ErrorCode.CONFLICT_RETRY_EXHAUSTED.value:
        response.headers["Retry-After"] = "1"
    return response


def _sanitize_json_payload(value):
    """
    Normalize payload values so they are always valid strict JSON.
    - Converts NaN/Infinity floats to None.
    - Recurses through dict/list/tuple containers.
    """
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, dict):
        return {k: _sanitize_json_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize_json_payload(v) for v in value]
    return value

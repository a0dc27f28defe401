"""
Caller identity.

The upstream session layer authenticates the caller and forwards the stable
user identifier in the `X-User-Id` header.
"""

from aiohttp import web

from podstream_backend.features.users import normalize_user_id
from podstream_backend.shared import ErrorCode, Result

USER_ID_HEADER = "X-User-Id"


def _require_user_id(request: web.Request) -> Result[str]:
    uid = normalize_user_id(request.headers.get(USER_ID_HEADER))
    if not uid:
        return Result.Err(ErrorCode.UNAUTHORIZED, "Sign in required")
    return Result.Ok(uid)

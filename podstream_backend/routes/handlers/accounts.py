"""
Signup, account and favorites endpoints.
"""
from aiohttp import web

from podstream_backend.shared import ErrorCode, Result, UserRole

from ..core import _json_response, _read_json, _require_services, _require_user_id


def register_account_routes(routes: web.RouteTableDef) -> None:
    """Register signup/account/favorites routes."""

    @routes.post("/api/signup")
    async def signup(request: web.Request):
        """
        Register a user and count the signup.

        JSON body: {email, credential, role?}; `credential` is an opaque handle
        produced by the session layer.
        """
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)

        body = await _read_json(request)
        if not body.ok:
            return _json_response(body)
        payload = body.data or {}
        email = str(payload.get("email") or "").strip()
        if not email:
            return _json_response(Result.Err(ErrorCode.INVALID_INPUT, "Missing email"))
        role = str(payload.get("role") or UserRole.LISTENER.value)

        result = await svc["engine"].register_user(email, str(payload.get("credential") or ""), role)
        return _json_response(result)

    @routes.get("/api/account")
    async def account(request: web.Request):
        uid = _require_user_id(request)
        if not uid.ok:
            return _json_response(uid)
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)
        return _json_response(await svc["engine"].get_account(uid.data))

    @routes.post("/api/favorites/{video_id}/toggle")
    async def toggle_favorite(request: web.Request):
        uid = _require_user_id(request)
        if not uid.ok:
            return _json_response(uid)
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)

        result = await svc["engine"].toggle_favorite(uid.data, request.match_info["video_id"])
        if not result.ok:
            return _json_response(result)
        return _json_response(
            Result.Ok({"favorites": result.data, "favorited": bool(result.meta.get("favorited"))})
        )

    @routes.get("/api/favorites")
    async def list_favorites(request: web.Request):
        """Favorites resolved to video summaries; `missing` lists ids whose video is gone."""
        uid = _require_user_id(request)
        if not uid.ok:
            return _json_response(uid)
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)
        return _json_response(await svc["favorites"].resolve(uid.data))

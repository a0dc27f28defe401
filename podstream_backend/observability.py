"""
Observability helpers (request id + timing) for aiohttp routes.
"""

from __future__ import annotations

import os
import threading
import time
from typing import Any
from uuid import uuid4

from aiohttp import web

from .shared import get_logger, request_id_var
from .utils import env_float

logger = get_logger(__name__)

_APPKEY_OBS_INSTALLED = web.AppKey("podstream_observability_installed", bool)

MS_PER_S = 1000.0
_DEFAULT_LOG_RATELIMIT_MS = 2000.0
_DEFAULT_SLOW_MS = 750.0
_DEFAULT_RATELIMIT_CLEAN_INTERVAL_MS = 60_000.0
_DEFAULT_RATELIMIT_CLEAN_MIN_CUTOFF_MS = 120_000.0
_RATELIMIT_CLEAN_WINDOW_MULT = 4.0

# Process-local: keeps a polling client or a 404 loop from flooding the log.
_LOG_RATELIMIT_LOCK = threading.Lock()
_LOG_RATELIMIT_STATE: dict[str, float] = {}
_LOG_RATELIMIT_CLEAN_AT = 0.0

API_PREFIX = "/api/"


def _new_request_id() -> str:
    return uuid4().hex


def _get_request_id(request: web.Request) -> str:
    rid = (request.headers.get("X-Request-ID") or "").strip()
    # Echo sane client ids only; anything else gets a fresh one.
    if rid and len(rid) <= 128 and rid.isprintable():
        return rid
    return _new_request_id()


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


def _should_emit_log(key: str, *, window_ms: float) -> bool:
    """
    Return True if this log key should be emitted now (best-effort rate limit).
    """
    global _LOG_RATELIMIT_CLEAN_AT
    now = time.monotonic() * MS_PER_S
    with _LOG_RATELIMIT_LOCK:
        last = _LOG_RATELIMIT_STATE.get(key, 0.0)
        if last and now - last < window_ms:
            return False
        _LOG_RATELIMIT_STATE[key] = now

        clean_interval_ms = env_float("PODSTREAM_OBS_RATELIMIT_CLEAN_INTERVAL_MS", _DEFAULT_RATELIMIT_CLEAN_INTERVAL_MS)
        if not _LOG_RATELIMIT_CLEAN_AT or now - _LOG_RATELIMIT_CLEAN_AT > clean_interval_ms:
            cutoff = now - max(window_ms * _RATELIMIT_CLEAN_WINDOW_MULT, _DEFAULT_RATELIMIT_CLEAN_MIN_CUTOFF_MS)
            for k, ts in list(_LOG_RATELIMIT_STATE.items()):
                if ts < cutoff:
                    _LOG_RATELIMIT_STATE.pop(k, None)
            _LOG_RATELIMIT_CLEAN_AT = now
    return True


def _is_error_status(status: int | None) -> bool:
    return status is not None and status >= 400


def _should_log(request: web.Request, *, status: int | None, duration_ms: float) -> bool:
    path = request.path or ""
    if not path.startswith(API_PREFIX):
        return False
    if _env_flag("PODSTREAM_OBS_LOG_ALL", default=False):
        return True
    if path == "/api/health":
        return _is_error_status(status)
    if _is_error_status(status):
        return True
    if not _env_flag("PODSTREAM_OBS_LOG_SLOW", default=False):
        return False
    return duration_ms >= env_float("PODSTREAM_OBS_SLOW_MS", _DEFAULT_SLOW_MS)


@web.middleware
async def request_context_middleware(request: web.Request, handler):
    """Add request-id correlation and lightweight request logging context."""
    if _env_flag("PODSTREAM_OBS_DISABLE", default=False):
        return await handler(request)

    rid = _get_request_id(request)
    request["podstream_request_id"] = rid
    token = request_id_var.set(rid)
    start = time.perf_counter()
    status: int | None = None
    error: str | None = None
    error_type: str | None = None
    try:
        response = await handler(request)
        status = int(getattr(response, "status", 200) or 200)
        if not response.prepared:
            response.headers["X-Request-ID"] = rid
        return response
    except web.HTTPException as exc:
        status = int(exc.status)
        error_type, error = exc.__class__.__name__, str(exc)
        exc.headers["X-Request-ID"] = rid
        raise
    except Exception as exc:
        status = 500
        error_type, error = exc.__class__.__name__, str(exc)
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * MS_PER_S
        request["podstream_duration_ms"] = duration_ms
        _emit_request_log(request, status=status, duration_ms=duration_ms, error=error, error_type=error_type)
        request_id_var.reset(token)


def _emit_request_log(
    request: web.Request,
    *,
    status: int | None,
    duration_ms: float,
    error: str | None,
    error_type: str | None,
) -> None:
    if not _should_log(request, status=status, duration_ms=duration_ms):
        return
    fields = build_request_log_fields(request, response_status=status)
    if error:
        fields["error"] = error
        fields["error_type"] = error_type
    key = f"{request.method}:{request.path}:{status}"
    if not _should_emit_log(key, window_ms=env_float("PODSTREAM_OBS_RATELIMIT_MS", _DEFAULT_LOG_RATELIMIT_MS)):
        return
    message = "%s %s -> %s (%.1fms)"
    args = (request.method, request.path, status, duration_ms)
    if status is not None and status >= 500:
        logger.error(message, *args, extra=fields)
    elif status is not None and status >= 400:
        logger.warning(message, *args, extra=fields)
    else:
        logger.info(message, *args, extra=fields)


def ensure_observability(app: web.Application) -> None:
    """
    Install middleware once.
    """
    if app.get(_APPKEY_OBS_INSTALLED):
        return
    app[_APPKEY_OBS_INSTALLED] = True
    app.middlewares.append(request_context_middleware)


def build_request_log_fields(request: web.Request, response_status: int | None = None) -> dict[str, Any]:
    """Build a JSON-serializable dict of request/response fields for logs."""
    return {
        "request_id": request.get("podstream_request_id"),
        "method": request.method,
        "path": request.path,
        "query": dict(request.query),
        "status": response_status,
        "duration_ms": request.get("podstream_duration_ms"),
        "remote": getattr(request, "remote", None),
    }

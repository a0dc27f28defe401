"""
Video endpoints: upload, catalog listings, streaming playback and view counting.
"""
from pathlib import Path
from typing import Any, AsyncIterator

from aiohttp import web

from podstream_backend.shared import VIDEO_CONTENT_TYPES, ErrorCode, Result, get_logger, sanitize_error_message

from ..core import _json_response, _require_services

logger = get_logger(__name__)

UPLOAD_FIELD = "videoFile"
UPLOAD_READ_CHUNK_BYTES = 256 * 1024
_ALLOWED_UPLOAD_EXTS = frozenset({".mp4", ".webm", ".mps"})
_TEXT_FIELD_MAX_BYTES = 4096


async def _iter_field_chunks(field: Any) -> AsyncIterator[bytes]:
    while True:
        chunk = await field.read_chunk(size=UPLOAD_READ_CHUNK_BYTES)
        if not chunk:
            break
        yield chunk


def _upload_content_type(field: Any, filename: str) -> Result[str]:
    ext = Path(filename).suffix.lower()
    content_type = str(field.headers.get("Content-Type") or "").split(";", 1)[0].strip().lower()
    if ext not in _ALLOWED_UPLOAD_EXTS:
        return Result.Err(ErrorCode.INVALID_INPUT, "Only .mp4, .webm and .mps videos are accepted")
    if not content_type or content_type == "application/octet-stream":
        content_type = f"video/{ext.lstrip('.')}"
    if content_type not in VIDEO_CONTENT_TYPES:
        return Result.Err(ErrorCode.INVALID_INPUT, f"Unsupported content type: {content_type}")
    return Result.Ok(content_type)


async def _read_text_field(field: Any) -> Result[str]:
    """Read a small text part; parts over the limit are rejected without buffering them."""
    raw = bytearray()
    while True:
        chunk = await field.read_chunk(size=_TEXT_FIELD_MAX_BYTES)
        if not chunk:
            break
        raw.extend(chunk)
        if len(raw) > _TEXT_FIELD_MAX_BYTES:
            return Result.Err(
                ErrorCode.INVALID_INPUT, f"Field '{field.name}' exceeds {_TEXT_FIELD_MAX_BYTES} bytes"
            )
    return Result.Ok(bytes(raw).decode("utf-8", errors="replace").strip())


def register_media_routes(routes: web.RouteTableDef) -> None:
    """Register upload, listing and playback routes."""

    @routes.post("/api/upload")
    async def upload_video(request: web.Request):
        """
        Multipart upload.

        Fields: podcastName, category (text, sent before the file) and videoFile.
        Query params podcastName/category are accepted as a fallback.
        """
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)

        fields = {
            "podcastName": (request.query.get("podcastName") or "").strip(),
            "category": (request.query.get("category") or "").strip(),
        }
        try:
            reader = await request.multipart()
        except (AssertionError, KeyError, ValueError) as exc:
            return _json_response(Result.Err(ErrorCode.UPLOAD_FAILED, sanitize_error_message(exc, "Upload failed")))

        while True:
            field = await reader.next()
            if field is None:
                return _json_response(Result.Err(ErrorCode.INVALID_INPUT, f"Missing '{UPLOAD_FIELD}' file field"))
            name = str(getattr(field, "name", "") or "")
            if name in fields:
                text = await _read_text_field(field)
                if not text.ok:
                    return _json_response(text)
                fields[name] = text.data or ""
                continue
            if name == UPLOAD_FIELD:
                break
            await field.release()

        filename = str(getattr(field, "filename", "") or "")
        if not filename:
            return _json_response(Result.Err(ErrorCode.INVALID_INPUT, "No filename provided"))
        if not fields["podcastName"] or not fields["category"]:
            return _json_response(
                Result.Err(ErrorCode.INVALID_INPUT, "podcastName and category must be sent before the video file")
            )
        ctype = _upload_content_type(field, filename)
        if not ctype.ok:
            return _json_response(ctype)

        result = await svc["engine"].upload_video(
            fields["podcastName"],
            fields["category"],
            ctype.data,
            _iter_field_chunks(field),
            filename=filename,
        )
        if not result.ok:
            return _json_response(result)
        return _json_response(Result.Ok({"id": result.data, "message": "Video uploaded successfully"}, **result.meta))

    @routes.get("/api/videos")
    async def list_videos(request: web.Request):
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)
        category = (request.query.get("category") or "").strip() or None
        return _json_response(await svc["catalog"].list_videos(category))

    @routes.get("/api/videos/{category}")
    async def list_videos_by_category(request: web.Request):
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)
        return _json_response(await svc["catalog"].list_videos(request.match_info["category"]))

    @routes.get("/api/categories")
    async def list_categories(request: web.Request):
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)
        return _json_response(await svc["catalog"].list_categories())

    @routes.get("/api/video/{video_id}/info")
    async def video_info(request: web.Request):
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)
        return _json_response(await svc["catalog"].get_video_info(request.match_info["video_id"]))

    @routes.get("/api/video/{video_id}")
    async def stream_video(request: web.Request):
        """
        Stream a video's payload, then count the view.

        Unknown ids return 404 JSON and leave every counter untouched.
        """
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)

        video_id = request.match_info["video_id"]
        blobs = svc["blobs"]
        path_res = await blobs.blob_path(video_id)
        if not path_res.ok:
            return _json_response(path_res)
        meta = path_res.meta.get("metadata") or {}

        response = web.StreamResponse(status=200)
        response.content_type = str(meta.get("contentType") or "application/octet-stream")
        response.content_length = int(meta.get("size") or 0)
        response.headers["Cache-Control"] = "no-store"
        if request.get("podstream_request_id"):
            response.headers["X-Request-ID"] = request["podstream_request_id"]
        await response.prepare(request)
        async for chunk in blobs.iter_payload(video_id):
            await response.write(chunk)
        await response.write_eof()

        view = await svc["engine"].record_view(video_id)
        if not view.ok:
            logger.warning("View not recorded for %s: %s", video_id, view.error)
        return response

    @routes.post("/api/video/{video_id}/view")
    async def record_view(request: web.Request):
        """Count a view without streaming (clients that play from a cache)."""
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)
        result = await svc["engine"].record_view(request.match_info["video_id"])
        if not result.ok:
            return _json_response(result)
        return _json_response(Result.Ok({"views": result.data, "totalViews": result.meta.get("total_views")}))

    @routes.post("/api/home-view")
    async def home_view(request: web.Request):
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)
        result = await svc["engine"].record_homepage_view()
        if not result.ok:
            return _json_response(result)
        return _json_response(Result.Ok({"totalViews": result.data}))

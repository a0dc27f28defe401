"""
Blob store - video payloads on disk, metadata rows in SQLite.

Payloads are immutable once written: `put` writes to a temp file in the shard
directory and atomically renames it into place before the metadata row is
inserted, so a reader never observes a row whose blob is half-written.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional, Union
from uuid import uuid4

from ...adapters.db.sqlite import Sqlite
from ...config import BLOB_CHUNK_BYTES, BLOB_DIR_PATH, UPLOAD_MAX_BYTES
from ...shared import ErrorCode, Result, format_timestamp, get_logger, log_structured, sanitize_error_message
from ...utils import clean_text

logger = get_logger(__name__)

Payload = Union[bytes, bytearray, memoryview, AsyncIterable[bytes]]

MAX_LABEL_LEN = 200
MAX_FILENAME_LEN = 255
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_VIDEO_ID_RE = re.compile(r"^[0-9a-f]{32}$")


class PayloadTooLarge(Exception):
    """Raised while streaming when the payload exceeds the configured limit."""


def is_valid_video_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_VIDEO_ID_RE.match(value))


def _blob_key(video_id: str) -> str:
    return f"{video_id[:2]}/{video_id}.bin"


def _row_to_metadata(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row.get("id"),
        "name": row.get("podcast_name") or "",
        "category": row.get("category") or "",
        "filename": row.get("filename") or "",
        "contentType": row.get("content_type") or DEFAULT_CONTENT_TYPE,
        "size": int(row.get("size") or 0),
        "views": int(row.get("views") or 0),
        "createdAt": row.get("created_at"),
    }


class BlobStore:
    """Content-addressed-by-id video storage."""

    def __init__(
        self,
        db: Sqlite,
        blob_dir: Optional[str | Path] = None,
        max_bytes: Optional[int] = None,
        chunk_size: Optional[int] = None,
    ):
        self.db = db
        self._base = Path(blob_dir) if blob_dir is not None else Path(BLOB_DIR_PATH)
        self._max_bytes = int(max_bytes if max_bytes is not None else UPLOAD_MAX_BYTES)
        self._chunk_size = max(1, int(chunk_size if chunk_size is not None else BLOB_CHUNK_BYTES))

    @property
    def base_dir(self) -> Path:
        return self._base

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def _path_for_key(self, blob_key: str) -> Path:
        return self._base / blob_key

    # --- writes ------------------------------------------------------------

    async def _write_chunks(self, payload: Payload, handle) -> int:
        total = 0
        if isinstance(payload, (bytes, bytearray, memoryview)):
            data = bytes(payload)
            if len(data) > self._max_bytes:
                raise PayloadTooLarge(f"Payload exceeds {self._max_bytes} bytes")
            await asyncio.to_thread(handle.write, data)
            return len(data)

        async for chunk in payload:
            if not chunk:
                continue
            total += len(chunk)
            if total > self._max_bytes:
                raise PayloadTooLarge(f"Payload exceeds {self._max_bytes} bytes")
            await asyncio.to_thread(handle.write, chunk)
        return total

    async def _write_blob_atomic(self, blob_key: str, payload: Payload) -> Result[int]:
        final = self._path_for_key(blob_key)
        try:
            final.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            return Result.Err(
                ErrorCode.STORAGE_FAILURE,
                sanitize_error_message(exc, "Cannot create blob directory"),
            )

        fd = None
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(dir=str(final.parent), prefix=".blob_", suffix=".tmp")
            with os.fdopen(fd, "wb") as handle:
                fd = None
                size = await self._write_chunks(payload, handle)
                await asyncio.to_thread(_flush_and_sync, handle)
            await asyncio.to_thread(os.replace, tmp_path, final)
            tmp_path = None
            return Result.Ok(size)
        except PayloadTooLarge as exc:
            return Result.Err(ErrorCode.INVALID_INPUT, str(exc))
        except OSError as exc:
            logger.error("Blob write failed for %s: %s", blob_key, exc)
            return Result.Err(ErrorCode.STORAGE_FAILURE, sanitize_error_message(exc, "Blob write failed"))
        finally:
            _cleanup_temp_file(fd, tmp_path)

    def _remove_blob(self, blob_key: str) -> None:
        try:
            self._path_for_key(blob_key).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to remove orphaned blob %s: %s", blob_key, exc)

    async def put(self, metadata: Dict[str, Any], payload: Payload) -> Result[str]:
        """
        Store a new video and return its identifier.

        Args:
            metadata: dict with `name`, `category`, `content_type` and optional `filename`
            payload: raw bytes or an async iterable of byte chunks

        Returns:
            Result with the new video id
        """
        name = clean_text(metadata.get("name"), MAX_LABEL_LEN)
        category = clean_text(metadata.get("category"), MAX_LABEL_LEN)
        if not name:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing podcast name")
        if not category:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing category")
        content_type = clean_text(metadata.get("content_type"), MAX_LABEL_LEN) or DEFAULT_CONTENT_TYPE
        filename = Path(clean_text(metadata.get("filename"), MAX_FILENAME_LEN)).name

        video_id = uuid4().hex
        blob_key = _blob_key(video_id)

        write_res = await self._write_blob_atomic(blob_key, payload)
        if not write_res.ok:
            return Result.Err(write_res.code, write_res.error or "Blob write failed")
        size = int(write_res.data or 0)

        insert_res = await self.db.aexecute(
            """
            INSERT INTO videos (id, podcast_name, category, filename, content_type, blob_key, size, views, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?)
            """,
            (video_id, name, category, filename, content_type, blob_key, size, format_timestamp()),
        )
        if not insert_res.ok:
            self._remove_blob(blob_key)
            code = insert_res.code if insert_res.code != ErrorCode.CONFLICT.value else ErrorCode.STORAGE_FAILURE
            return Result.Err(code, insert_res.error or "Failed to record video")

        log_structured(logger, logging.INFO, "Stored video", video_id=video_id, size=size, category=category)
        return Result.Ok(video_id, size=size)

    # --- reads -------------------------------------------------------------

    async def _get_row(self, video_id: str) -> Result[Dict[str, Any]]:
        if not is_valid_video_id(video_id):
            return Result.Err(ErrorCode.NOT_FOUND, f"Video not found: {video_id}")
        res = await self.db.aquery_one("SELECT * FROM videos WHERE id = ?", (video_id,))
        if not res.ok:
            return Result.Err(res.code, res.error or "Video lookup failed")
        if res.data is None:
            return Result.Err(ErrorCode.NOT_FOUND, f"Video not found: {video_id}")
        return Result.Ok(res.data)

    async def metadata(self, video_id: str) -> Result[Dict[str, Any]]:
        """Video metadata (including the view counter) without the payload."""
        row_res = await self._get_row(video_id)
        if not row_res.ok:
            return Result.Err(row_res.code, row_res.error or "Video lookup failed")
        return Result.Ok(_row_to_metadata(row_res.data or {}))

    async def blob_path(self, video_id: str) -> Result[Path]:
        """Resolve the on-disk payload file for a stored video."""
        row_res = await self._get_row(video_id)
        if not row_res.ok:
            return Result.Err(row_res.code, row_res.error or "Video lookup failed")
        path = self._path_for_key(str((row_res.data or {}).get("blob_key") or ""))
        if not path.is_file():
            logger.error("Blob missing for video %s", video_id)
            return Result.Err(ErrorCode.STORAGE_FAILURE, "Video payload is unavailable")
        return Result.Ok(path, metadata=_row_to_metadata(row_res.data or {}))

    async def get(self, video_id: str) -> Result[Dict[str, Any]]:
        """Load a video's metadata and full payload."""
        path_res = await self.blob_path(video_id)
        if not path_res.ok:
            return Result.Err(path_res.code, path_res.error or "Video lookup failed")
        try:
            payload = await asyncio.to_thread(path_res.data.read_bytes)
        except OSError as exc:
            logger.error("Blob read failed for %s: %s", video_id, exc)
            return Result.Err(ErrorCode.STORAGE_FAILURE, sanitize_error_message(exc, "Blob read failed"))
        return Result.Ok({"metadata": path_res.meta.get("metadata") or {}, "payload": payload})

    async def iter_payload(self, video_id: str, chunk_size: Optional[int] = None) -> AsyncIterator[bytes]:
        """
        Stream a payload in chunks.

        Raises LookupError when the video is unknown and OSError when the blob
        cannot be read.
        """
        path_res = await self.blob_path(video_id)
        if not path_res.ok:
            raise LookupError(path_res.error or f"Video not found: {video_id}")
        size = max(1, int(chunk_size or self._chunk_size))
        with open(path_res.data, "rb") as handle:
            while True:
                chunk = await asyncio.to_thread(handle.read, size)
                if not chunk:
                    break
                yield chunk

    async def list(self, category: Optional[str] = None) -> Result[List[Dict[str, Any]]]:
        """List `{id, name, category}` summaries in creation order; payloads are never touched."""
        if category is None:
            res = await self.db.aquery(
                "SELECT id, podcast_name, category FROM videos ORDER BY created_at ASC, rowid ASC"
            )
        else:
            res = await self.db.aquery(
                "SELECT id, podcast_name, category FROM videos WHERE category = ? ORDER BY created_at ASC, rowid ASC",
                (str(category),),
            )
        if not res.ok:
            return Result.Err(res.code, res.error or "Failed to list videos")
        return Result.Ok(
            [{"id": r["id"], "name": r["podcast_name"], "category": r["category"]} for r in res.data or []]
        )


def _flush_and_sync(handle) -> None:
    handle.flush()
    os.fsync(handle.fileno())


def _cleanup_temp_file(fd: Optional[int], tmp_path: Optional[str]) -> None:
    if fd is not None:
        try:
            os.close(fd)
        except OSError:
            pass
    if tmp_path:
        try:
            Path(tmp_path).unlink(missing_ok=True)
        except OSError as exc:
            logger.debug("Temp blob cleanup failed: %s", exc)

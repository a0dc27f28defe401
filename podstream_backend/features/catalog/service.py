"""
Catalog query - read-only listings over stored videos.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ...adapters.db.sqlite import Sqlite
from ...shared import Result
from ..blobs.store import BlobStore


class CatalogService:
    def __init__(self, db: Sqlite, blobs: BlobStore):
        self.db = db
        self.blobs = blobs

    async def list_videos(self, category: Optional[str] = None) -> Result[List[Dict[str, Any]]]:
        """`{id, name, category}` summaries, optionally filtered by exact category."""
        return await self.blobs.list(category)

    async def get_video_info(self, video_id: str) -> Result[Dict[str, Any]]:
        """Metadata and view count for one video (no payload)."""
        return await self.blobs.metadata(video_id)

    async def list_categories(self) -> Result[List[Dict[str, Any]]]:
        res = await self.db.aquery(
            "SELECT category, COUNT(*) AS count FROM videos GROUP BY category ORDER BY category ASC"
        )
        if not res.ok:
            return Result.Err(res.code, res.error or "Failed to list categories")
        return Result.Ok([{"category": r["category"], "count": int(r["count"])} for r in res.data or []])

"""
Counter ledger - per-video view counters and the global stats singleton.

Every increment runs as `x = x + 1` inside a BEGIN IMMEDIATE transaction and
reads the new value back before commit. Counters are never read into Python,
modified, and written back.
"""

from __future__ import annotations

from typing import Any, Dict, List

from ...adapters.db.sqlite import Sqlite
from ...shared import ErrorCode, Result, get_logger

logger = get_logger(__name__)

_STATS_COLUMNS = ("total_signups", "total_views")


class CounterLedger:
    """Atomic counters over the `videos.views` column and the `stats` row."""

    def __init__(self, db: Sqlite):
        self.db = db

    async def ensure_stats(self) -> Result[bool]:
        """Create the stats singleton (id=1) with zero counters if absent."""
        res = await self.db.aexecute(
            "INSERT OR IGNORE INTO stats (id, total_signups, total_views) VALUES (1, 0, 0)"
        )
        if not res.ok:
            return Result.Err(res.code, res.error or "Failed to create stats row")
        return Result.Ok(True)

    async def _bump_stats_column(self, column: str) -> Result[int]:
        if column not in _STATS_COLUMNS:
            return Result.Err(ErrorCode.INVALID_INPUT, f"Unknown stats counter: {column}")

        async with self.db.atransaction() as tx:
            if not tx.ok:
                return Result.Err(tx.code, tx.error or "Failed to begin transaction")
            upd = await self.db.aexecute(f"UPDATE stats SET {column} = {column} + 1 WHERE id = 1")
            if upd.ok and not upd.data:
                # Lazily create the singleton, then count.
                created = await self.ensure_stats()
                if created.ok:
                    upd = await self.db.aexecute(f"UPDATE stats SET {column} = {column} + 1 WHERE id = 1")
            row = await self.db.aquery_one(f"SELECT {column} AS value FROM stats WHERE id = 1")
        if not tx.ok:
            return Result.Err(tx.code, tx.error or f"Failed to increment {column}")
        if not row.ok or row.data is None:
            return Result.Err(ErrorCode.STORAGE_FAILURE, f"Failed to read back {column}")
        return Result.Ok(int(row.data["value"]))

    async def increment_global_views(self) -> Result[int]:
        return await self._bump_stats_column("total_views")

    async def increment_signups(self) -> Result[int]:
        return await self._bump_stats_column("total_signups")

    async def increment_video_views(self, video_id: str) -> Result[int]:
        """
        Increment one video's view counter.

        Returns:
            Result with the new count, or NOT_FOUND when the video does not exist
        """
        vid = str(video_id or "").strip()
        if not vid:
            return Result.Err(ErrorCode.NOT_FOUND, "Video not found")

        async with self.db.atransaction() as tx:
            if not tx.ok:
                return Result.Err(tx.code, tx.error or "Failed to begin transaction")
            upd = await self.db.aexecute("UPDATE videos SET views = views + 1 WHERE id = ?", (vid,))
            if upd.ok and not upd.data:
                return Result.Err(ErrorCode.NOT_FOUND, f"Video not found: {vid}")
            row = await self.db.aquery_one("SELECT views FROM videos WHERE id = ?", (vid,))
        if not tx.ok:
            return Result.Err(tx.code, tx.error or "Failed to increment video views")
        if not row.ok or row.data is None:
            return Result.Err(ErrorCode.STORAGE_FAILURE, "Failed to read back video views")
        return Result.Ok(int(row.data["views"]))

    async def get_stats(self) -> Result[Dict[str, Any]]:
        """
        Snapshot of the global counters and the signup histogram.

        Returns:
            Result with `{totalSignups, totalViews, signupHistory}`
        """
        row = await self.db.aquery_one("SELECT total_signups, total_views FROM stats WHERE id = 1")
        if not row.ok:
            return Result.Err(row.code, row.error or "Failed to read stats")
        history = await self.db.aquery("SELECT day, count FROM signup_history ORDER BY day ASC")
        if not history.ok:
            return Result.Err(history.code, history.error or "Failed to read signup history")

        data = row.data or {}
        entries: List[Dict[str, Any]] = [{"date": r["day"], "count": int(r["count"])} for r in history.data or []]
        return Result.Ok(
            {
                "totalSignups": int(data.get("total_signups") or 0),
                "totalViews": int(data.get("total_views") or 0),
                "signupHistory": entries,
            }
        )

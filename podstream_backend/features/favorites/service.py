"""
Favorites set manager.

Membership lives in `user_favorites` (composite primary key, so duplicates
cannot exist). Video ids are weak references: toggling an id whose video does
not exist is allowed, and dangling ids are reported at read time.
"""

from __future__ import annotations

from typing import Any, Dict, List

from ...adapters.db.sqlite import Sqlite
from ...shared import ErrorCode, Result, format_timestamp, get_logger
from ..users.service import normalize_user_id

logger = get_logger(__name__)

MAX_VIDEO_ID_LEN = 128


class FavoritesService:
    def __init__(self, db: Sqlite):
        self.db = db

    async def _members(self, user_id: str) -> Result[List[str]]:
        res = await self.db.aquery(
            "SELECT video_id FROM user_favorites WHERE user_id = ? ORDER BY rowid ASC", (user_id,)
        )
        if not res.ok:
            return Result.Err(res.code, res.error or "Failed to read favorites")
        return Result.Ok([r["video_id"] for r in res.data or []])

    async def _user_exists(self, user_id: str) -> Result[bool]:
        res = await self.db.aquery_one("SELECT 1 AS present FROM users WHERE id = ?", (user_id,))
        if not res.ok:
            return Result.Err(res.code, res.error or "User lookup failed")
        return Result.Ok(res.data is not None)

    async def toggle(self, user_id: str, video_id: str) -> Result[List[str]]:
        """
        Flip membership of `video_id` in the user's favorites.

        Returns:
            Result with the resulting favorites list; `meta["favorited"]` tells
            whether the id is now a member. NOT_FOUND only when the user is missing.
        """
        uid = normalize_user_id(user_id)
        vid = str(video_id or "").strip()
        if not uid:
            return Result.Err(ErrorCode.NOT_FOUND, "User not found")
        if not vid or len(vid) > MAX_VIDEO_ID_LEN:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing or invalid video id")

        async with self.db.lock_for_key(f"user:{uid}"):
            async with self.db.atransaction() as tx:
                if not tx.ok:
                    return Result.Err(tx.code, tx.error or "Failed to begin transaction")
                user_res = await self._user_exists(uid)
                if not user_res.ok:
                    return Result.Err(user_res.code, user_res.error or "User lookup failed")
                if not user_res.data:
                    return Result.Err(ErrorCode.NOT_FOUND, f"User not found: {uid}")

                deleted = await self.db.aexecute(
                    "DELETE FROM user_favorites WHERE user_id = ? AND video_id = ?", (uid, vid)
                )
                favorited = bool(deleted.ok and not deleted.data)
                if favorited:
                    await self.db.aexecute(
                        "INSERT INTO user_favorites (user_id, video_id, added_at) VALUES (?, ?, ?)",
                        (uid, vid, format_timestamp()),
                    )
                members = await self._members(uid)
            if not tx.ok:
                return Result.Err(tx.code, tx.error or "Failed to toggle favorite")

        if not members.ok:
            return Result.Err(members.code, members.error or "Failed to read favorites")
        logger.debug("Favorite %s for %s: %s", "added" if favorited else "removed", uid, vid)
        return Result.Ok(members.data or [], favorited=favorited)

    async def get(self, user_id: str) -> Result[List[str]]:
        """Current favorites, oldest first."""
        uid = normalize_user_id(user_id)
        if not uid:
            return Result.Err(ErrorCode.NOT_FOUND, "User not found")
        user_res = await self._user_exists(uid)
        if not user_res.ok:
            return Result.Err(user_res.code, user_res.error or "User lookup failed")
        if not user_res.data:
            return Result.Err(ErrorCode.NOT_FOUND, f"User not found: {uid}")
        return await self._members(uid)

    async def resolve(self, user_id: str) -> Result[Dict[str, Any]]:
        """
        Resolve favorites to video summaries.

        Returns:
            Result with `{videos: [{id, name, category}], missing: [video_id]}`;
            ids whose video no longer exists land in `missing`.
        """
        ids_res = await self.get(user_id)
        if not ids_res.ok:
            return Result.Err(ids_res.code, ids_res.error or "Failed to read favorites")
        uid = normalize_user_id(user_id)
        rows = await self.db.aquery(
            """
            SELECT f.video_id AS video_id, v.podcast_name AS name, v.category AS category
            FROM user_favorites f
            LEFT JOIN videos v ON v.id = f.video_id
            WHERE f.user_id = ?
            ORDER BY f.rowid ASC
            """,
            (uid,),
        )
        if not rows.ok:
            return Result.Err(rows.code, rows.error or "Failed to resolve favorites")

        videos: List[Dict[str, Any]] = []
        missing: List[str] = []
        for r in rows.data or []:
            if r.get("name") is None:
                missing.append(r["video_id"])
            else:
                videos.append({"id": r["video_id"], "name": r["name"], "category": r["category"]})
        return Result.Ok({"videos": videos, "missing": missing})

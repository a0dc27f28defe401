"""
MediaEngine - the engagement statistics and asset retrieval engine.

Single entry point callers use once identity is established and upload
payloads are validated. Each operation dispatches to the blob store, counter
ledger, signup histogram or favorites manager and returns a `Result`.
Compound mutations (a video view plus the global total, a signup plus its
histogram bucket) commit together or not at all.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Callable, Dict, List, Optional

from .adapters.db.sqlite import Sqlite
from .features.blobs import BlobStore
from .features.blobs.store import Payload
from .features.catalog import CatalogService
from .features.favorites import FavoritesService
from .features.histogram import SignupHistogram
from .features.ledger import CounterLedger
from .features.users import UsersService
from .shared import Result, UserRole, get_logger

logger = get_logger(__name__)


class MediaEngine:
    def __init__(
        self,
        db: Sqlite,
        blobs: BlobStore,
        ledger: Optional[CounterLedger] = None,
        histogram: Optional[SignupHistogram] = None,
        favorites: Optional[FavoritesService] = None,
        catalog: Optional[CatalogService] = None,
        users: Optional[UsersService] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        self.db = db
        self.blobs = blobs
        self.ledger = ledger or CounterLedger(db)
        self.histogram = histogram or SignupHistogram(db, clock=clock)
        self.favorites = favorites or FavoritesService(db)
        self.catalog = catalog or CatalogService(db, blobs)
        self.users = users or UsersService(db)

    # --- assets --------------------------------------------------------------

    async def upload_video(
        self,
        name: str,
        category: str,
        content_type: str,
        payload: Payload,
        filename: Optional[str] = None,
    ) -> Result[str]:
        """Store a new video; returns its identifier. Stats are not touched."""
        return await self.blobs.put(
            {"name": name, "category": category, "content_type": content_type, "filename": filename or ""},
            payload,
        )

    async def fetch_video(self, video_id: str) -> Result[Dict[str, Any]]:
        """
        Load a video's payload and content type.

        Pure read: neither the video's counter nor the global stats change.
        """
        res = await self.blobs.get(video_id)
        if not res.ok:
            return Result.Err(res.code, res.error or "Video lookup failed")
        data = res.data or {}
        meta = data.get("metadata") or {}
        return Result.Ok(
            {
                "content_type": meta.get("contentType"),
                "payload": data.get("payload", b""),
                "filename": meta.get("filename") or "",
                "name": meta.get("name") or "",
            }
        )

    async def list_videos(self, category: Optional[str] = None) -> Result[List[Dict[str, Any]]]:
        return await self.catalog.list_videos(category)

    # --- counters ------------------------------------------------------------

    async def record_view(self, video_id: str) -> Result[int]:
        """
        Count one view of a video.

        Increments the video's counter and the global total in one transaction.

        Returns:
            Result with the video's new view count (NOT_FOUND leaves both counters unchanged)
        """
        async with self.db.atransaction() as tx:
            if not tx.ok:
                return Result.Err(tx.code, tx.error or "Failed to begin transaction")
            video_res = await self.ledger.increment_video_views(video_id)
            if not video_res.ok:
                return video_res
            global_res = await self.ledger.increment_global_views()
        if not tx.ok:
            return Result.Err(tx.code, tx.error or "Failed to record view")
        if not global_res.ok:
            return Result.Err(global_res.code, global_res.error or "Failed to record view")
        return Result.Ok(int(video_res.data or 0), total_views=global_res.data)

    async def record_homepage_view(self) -> Result[int]:
        """Count a homepage view (global total only). Returns the new total."""
        return await self.ledger.increment_global_views()

    async def record_signup(self, today: Optional[date] = None) -> Result[None]:
        """Increment total signups and today's histogram bucket together."""
        async with self.db.atransaction() as tx:
            if not tx.ok:
                return Result.Err(tx.code, tx.error or "Failed to begin transaction")
            await self._record_signup_in_tx(today)
        if not tx.ok:
            return Result.Err(tx.code, tx.error or "Failed to record signup")
        return Result.Ok(None)

    async def _record_signup_in_tx(self, today: Optional[date]) -> None:
        signups = await self.ledger.increment_signups()
        if not signups.ok:
            self.db.fail_transaction(signups.code, signups.error or "Failed to increment signups")
            return
        bucket = await self.histogram.record_signup(today)
        if not bucket.ok:
            self.db.fail_transaction(bucket.code, bucket.error or "Failed to record signup bucket")

    async def register_user(
        self,
        user_id: str,
        credential: str = "",
        role: str = UserRole.LISTENER.value,
        today: Optional[date] = None,
    ) -> Result[Dict[str, Any]]:
        """
        Create a user and record the signup atomically.

        A duplicate identifier fails with CONFLICT and no counter moves.
        """
        async with self.db.atransaction() as tx:
            if not tx.ok:
                return Result.Err(tx.code, tx.error or "Failed to begin transaction")
            created = await self.users.create(user_id, credential, role)
            if not created.ok:
                self.db.fail_transaction(created.code, created.error or "Failed to create user")
                return created
            await self._record_signup_in_tx(today)
        if not tx.ok:
            return Result.Err(tx.code, tx.error or "Failed to register user")
        return created

    # --- favorites / stats ---------------------------------------------------

    async def toggle_favorite(self, user_id: str, video_id: str) -> Result[List[str]]:
        return await self.favorites.toggle(user_id, video_id)

    async def get_stats(self) -> Result[Dict[str, Any]]:
        """`{totalSignups, totalViews, signupHistory}` snapshot."""
        return await self.ledger.get_stats()

    async def get_account(self, user_id: str) -> Result[Dict[str, Any]]:
        return await self.users.get(user_id)


"""
Signup histogram - one `{date, count}` bucket per calendar day.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Callable, Dict, List, Optional

from ...adapters.db.sqlite import Sqlite
from ...shared import ErrorCode, Result, get_logger, utc_today

logger = get_logger(__name__)


class SignupHistogram:
    """Daily signup buckets keyed by ISO date (YYYY-MM-DD)."""

    def __init__(self, db: Sqlite, clock: Optional[Callable[[], date]] = None):
        self.db = db
        self._clock = clock or utc_today

    def today(self) -> date:
        return self._clock()

    async def record_signup(self, today: Optional[date] = None) -> Result[int]:
        """Add one signup to `today`'s bucket (defaults to the clock's date) and return the new count."""
        day_value = today if today is not None else self._clock()
        if not isinstance(day_value, date):
            return Result.Err(ErrorCode.INVALID_INPUT, "Signup date must be a date")
        day = day_value.isoformat()[:10]

        async with self.db.atransaction() as tx:
            if not tx.ok:
                return Result.Err(tx.code, tx.error or "Failed to begin transaction")
            await self.db.aexecute(
                """
                INSERT INTO signup_history (day, count) VALUES (?, 1)
                ON CONFLICT(day) DO UPDATE SET count = count + 1
                """,
                (day,),
            )
            row = await self.db.aquery_one("SELECT count FROM signup_history WHERE day = ?", (day,))
        if not tx.ok:
            return Result.Err(tx.code, tx.error or "Failed to record signup")
        if not row.ok or row.data is None:
            return Result.Err(ErrorCode.STORAGE_FAILURE, "Failed to read back signup bucket")
        return Result.Ok(int(row.data["count"]), date=day)

    async def history(self) -> Result[List[Dict[str, Any]]]:
        """All buckets in ascending date order."""
        res = await self.db.aquery("SELECT day, count FROM signup_history ORDER BY day ASC")
        if not res.ok:
            return Result.Err(res.code, res.error or "Failed to read signup history")
        return Result.Ok([{"date": r["day"], "count": int(r["count"])} for r in res.data or []])

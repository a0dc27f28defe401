"""
Health service - database and blob storage status.
"""
import os
from pathlib import Path

from ...shared import Result, get_logger
from ...adapters.db.sqlite import Sqlite

logger = get_logger(__name__)


class HealthService:
    """
    Health check service.

    Monitors database availability and blob directory writability.
    """

    def __init__(self, db: Sqlite, blob_dir: Path):
        """
        Initialize health service.

        Args:
            db: SQLite database instance
            blob_dir: Directory holding video payloads
        """
        self.db = db
        self.blob_dir = Path(blob_dir)

    async def status(self) -> Result[dict]:
        """
        Get system health status.

        Returns:
            Result with status dict containing:
                - database: Database status
                - storage: Blob directory status
                - overall: Overall health (healthy, degraded, unhealthy)
        """
        db_status = await self._check_database()
        storage = self._check_storage()
        overall = self._determine_health(db_status, storage)
        return Result.Ok(
            {
                "database": db_status,
                "storage": storage,
                "runtime": self.db.get_runtime_status(),
                "overall": overall,
            }
        )

    async def _check_database(self) -> dict:
        """Check database status."""
        if not await self.db.ahas_table("metadata"):
            return {
                "available": False,
                "schema_version": 0,
                "error": "Schema metadata table missing",
            }

        result = await self.db.aquery("SELECT COUNT(*) AS count FROM videos")
        if result.ok:
            return {
                "available": True,
                "schema_version": await self.db.aget_schema_version(),
                "videos": int((result.data or [{}])[0].get("count") or 0),
                "error": None,
            }
        logger.error("Database check failed: %s", result.error)
        return {
            "available": False,
            "schema_version": 0,
            "error": result.error,
        }

    def _check_storage(self) -> dict:
        try:
            exists = self.blob_dir.is_dir()
        except OSError as exc:
            return {"available": False, "writable": False, "error": str(exc)}
        writable = bool(exists and os.access(str(self.blob_dir), os.W_OK))
        return {"available": exists, "writable": writable, "error": None}

    def _determine_health(self, db_status: dict, storage: dict) -> str:
        """
        Determine overall health status.

        Returns:
            Health status: healthy, degraded, unhealthy
        """
        # Database must be available
        if not db_status.get("available"):
            return "unhealthy"
        if storage.get("available") and storage.get("writable"):
            return "healthy"
        return "degraded"  # catalog and stats still readable

"""
User registry - identity records the favorites set hangs off.

Credentials are opaque handles produced upstream (hashing is not done here)
and are never returned by read operations.
"""

from __future__ import annotations

from typing import Any, Dict, List

from ...adapters.db.sqlite import Sqlite
from ...shared import ErrorCode, Result, UserRole, format_timestamp, get_logger

logger = get_logger(__name__)

MAX_USER_ID_LEN = 254
MAX_CREDENTIAL_LEN = 1024
_ROLES = frozenset(r.value for r in UserRole)


def normalize_user_id(value: Any) -> str:
    """Trim and lower-case an email-like identifier; empty string when unusable."""
    uid = str(value or "").strip().lower()
    if not uid or len(uid) > MAX_USER_ID_LEN or "\x00" in uid:
        return ""
    return uid


class UsersService:
    def __init__(self, db: Sqlite):
        self.db = db

    async def exists(self, user_id: str) -> Result[bool]:
        uid = normalize_user_id(user_id)
        if not uid:
            return Result.Ok(False)
        res = await self.db.aquery_one("SELECT 1 AS present FROM users WHERE id = ?", (uid,))
        if not res.ok:
            return Result.Err(res.code, res.error or "User lookup failed")
        return Result.Ok(res.data is not None)

    async def create(self, user_id: str, credential: str = "", role: str = UserRole.LISTENER.value) -> Result[Dict[str, Any]]:
        """
        Register a user.

        Returns:
            Result with the public user record; CONFLICT when the id is taken
        """
        uid = normalize_user_id(user_id)
        if not uid:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing or invalid user id")
        role_value = str(role.value if isinstance(role, UserRole) else (role or UserRole.LISTENER.value)).strip().lower()
        if role_value not in _ROLES:
            return Result.Err(ErrorCode.INVALID_INPUT, f"Unknown role: {role_value}")
        cred = str(credential or "")
        if len(cred) > MAX_CREDENTIAL_LEN:
            return Result.Err(ErrorCode.INVALID_INPUT, "Credential handle too long")

        created_at = format_timestamp()
        res = await self.db.aexecute(
            "INSERT INTO users (id, credential, role, created_at) VALUES (?, ?, ?, ?)",
            (uid, cred, role_value, created_at),
        )
        if not res.ok:
            if res.code == ErrorCode.CONFLICT.value:
                return Result.Err(ErrorCode.CONFLICT, f"User already exists: {uid}")
            return Result.Err(res.code, res.error or "Failed to create user")

        logger.info("Registered user %s (role=%s)", uid, role_value)
        return Result.Ok({"id": uid, "email": uid, "role": role_value, "createdAt": created_at})

    async def get(self, user_id: str) -> Result[Dict[str, Any]]:
        """Account info: identifier, role and favorites (credential omitted)."""
        uid = normalize_user_id(user_id)
        if not uid:
            return Result.Err(ErrorCode.NOT_FOUND, "User not found")
        row = await self.db.aquery_one("SELECT id, role, created_at FROM users WHERE id = ?", (uid,))
        if not row.ok:
            return Result.Err(row.code, row.error or "User lookup failed")
        if row.data is None:
            return Result.Err(ErrorCode.NOT_FOUND, f"User not found: {uid}")

        favs = await self.db.aquery(
            "SELECT video_id FROM user_favorites WHERE user_id = ? ORDER BY rowid ASC", (uid,)
        )
        if not favs.ok:
            return Result.Err(favs.code, favs.error or "Failed to read favorites")
        favorites: List[str] = [r["video_id"] for r in favs.data or []]
        return Result.Ok(
            {
                "id": row.data["id"],
                "email": row.data["id"],
                "role": row.data["role"],
                "createdAt": row.data["created_at"],
                "favorites": favorites,
            }
        )

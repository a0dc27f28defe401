"""
User registry.
"""

from .service import UsersService, normalize_user_id

__all__ = ["UsersService", "normalize_user_id"]

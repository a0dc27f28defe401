"""
Blob storage for video payloads.
"""

from .store import BlobStore, is_valid_video_id

__all__ = ["BlobStore", "is_valid_video_id"]

"""
PodStream backend - engagement statistics and video asset engine.
"""
from .engine import MediaEngine

__all__ = ["MediaEngine"]

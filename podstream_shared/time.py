"""
Time utilities for timestamps, calendar days and performance measurement.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone


def now() -> float:
    """Get current timestamp in seconds (float)."""
    return time.time()

def utc_today() -> date:
    """Current calendar date in UTC (the day signups are bucketed under)."""
    return datetime.now(timezone.utc).date()

def format_timestamp(ts: float | None = None) -> str:
    """
    Format timestamp as ISO 8601 string (UTC).

    Args:
        ts: Timestamp in seconds (default: now())

    Returns:
        ISO 8601 formatted string (e.g., "2025-12-29T19:30:45Z")
    """
    if ts is None:
        ts = now()
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(ts))

@contextmanager
def timer(label: str, logger: logging.Logger | None = None) -> Iterator[None]:
    """
    Context manager for timing operations.

    Usage:
        with timer("blob write", logger):
            write_blob(path)
    """
    start = now()
    try:
        yield
    finally:
        elapsed = now() - start
        msg = f"{label} took {elapsed:.3f}s"
        if logger:
            logger.debug(msg)
        else:
            print(msg)

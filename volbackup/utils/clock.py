"""
Time helpers.

The catalog stores naive UTC timestamps; every component reads "now" from here
so tests can freeze it in one place.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

# src/gatehouse/db/time.py
"""Time utilities for persisted epoch timestamps."""

from datetime import UTC, datetime


def to_iso(timestamp: float | None) -> str | None:
    """Render epoch seconds as an ISO-8601 UTC string, passing ``None`` through."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, UTC).isoformat().replace("+00:00", "Z")

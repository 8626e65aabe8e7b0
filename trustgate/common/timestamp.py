"""
Timestamp Utilities

Devices report unix seconds, but some firmware builds send milliseconds.
Everything stored or analyzed uses unix seconds; record times are ISO-8601 UTC.
"""

from datetime import datetime, timezone

# Anything above this is a millisecond timestamp (year ~33658 in seconds)
MILLISECONDS_CUTOFF = 1e12


def utc_now() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC string."""
    return utc_now().isoformat()


def normalize_unix_seconds(value: float | int | None) -> int | None:
    """
    Normalize a device timestamp to whole unix seconds.

    Examples:
        1700000000      -> 1700000000
        1700000000123   -> 1700000000   (milliseconds)
        1700000000.9    -> 1700000000
    """
    if value is None:
        return None
    value = float(value)
    if value > MILLISECONDS_CUTOFF:
        value = value / 1000.0
    return int(value)


def iso_to_unix_seconds(ts_iso: str | None) -> int | None:
    """
    Convert an ISO timestamp string to unix seconds.

    Returns None when the string is empty or unparsable.
    """
    if not ts_iso:
        return None
    try:
        dt = datetime.fromisoformat(ts_iso.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())

"""Datetime utility functions for message timestamps and snapshot files."""

from datetime import UTC, datetime


def normalize_to_utc(date_input: str | datetime | int | float | None) -> datetime | None:
    """Standardize any date input to a UTC-aware datetime object.

    Handles ISO 8601 strings (with ``Z`` or an explicit offset), Unix timestamps
    in seconds (int/float) and datetime objects. Naive values are assumed to be
    UTC already.

    Args:
        date_input: Date as ISO 8601 string, unix timestamp, or datetime object.

    Returns:
        A UTC-aware datetime object, or None if input is invalid.
    """
    if date_input is None:
        return None

    try:
        if isinstance(date_input, str):
            if not date_input:
                return None
            dt = datetime.fromisoformat(date_input.replace("Z", "+00:00"))
        elif isinstance(date_input, bool):
            return None
        elif isinstance(date_input, int | float):
            dt = datetime.fromtimestamp(date_input, tz=UTC)
        else:
            dt = date_input

        # Ensure timezone-aware (assume UTC if naive)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)

        return dt.astimezone(UTC)
    except (ValueError, TypeError, OSError, AttributeError):
        return None


def utc_now() -> datetime:
    """Current time as a UTC-aware datetime."""
    return datetime.now(UTC)


def to_iso_z(dt: datetime) -> str:
    """Format a datetime as ISO 8601 in UTC with a ``Z`` suffix and millisecond precision."""
    normalized = normalize_to_utc(dt)
    if normalized is None:
        raise ValueError(f"Cannot format datetime: {dt!r}")
    return normalized.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string with a ``Z`` suffix."""
    return to_iso_z(utc_now())

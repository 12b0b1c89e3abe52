"""Shared utility functions for services and blueprints.

parse_date:   returns None on bad input (scheduling fields are optional)
utc_now_iso:  single source of timestamps written into stored records
new_id:       opaque identifiers for projects, versions, files and requests
"""
import uuid
from datetime import date, datetime, timezone


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY (European format)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def iso_date(value):
    """Normalise a date-ish input to ``YYYY-MM-DD`` or None."""
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else None


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex

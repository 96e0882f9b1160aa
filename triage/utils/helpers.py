"""Shared parsing helpers for blueprints and collaborators.

parse_datetime:  lenient timestamp parsing (ISO, RFC 2822, common thread formats)
parse_int:       query/body integer coercion that returns None on bad input
"""
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

logger = logging.getLogger(__name__)

_THREAD_FORMATS = (
    "%a, %b %d, %Y at %I:%M %p",
    "%b %d, %Y at %I:%M %p",
    "%a, %d %b %Y %H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%d.%m.%Y %H:%M",
)


def parse_datetime(value):
    """Parse a timestamp string to an aware UTC datetime.

    Returns None for empty/invalid input. Naive values are taken as UTC.
    Supports:
    - ISO 8601 (``2025-01-06T10:00:00Z``, ``2025-01-06 10:00:00+02:00``)
    - RFC 2822 mail dates (``Mon, 06 Jan 2025 10:00:00 +0000``)
    - the formats in ``_THREAD_FORMATS``
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        parsed = None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            pass
        if parsed is None:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError, IndexError):
                parsed = None
        if parsed is None:
            for fmt in _THREAD_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_int(value, default=None):
    """Coerce ``value`` to int; return ``default`` on empty/invalid input."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default

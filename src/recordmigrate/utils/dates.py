"""Date parsing for legacy export values."""

import logging
from collections.abc import Sequence
from datetime import datetime

logger = logging.getLogger(__name__)

# Rendering used for repository date attributes (month/day/year, 24h clock)
REPOSITORY_DATE_FORMAT = "%m/%d/%Y %H:%M:%S"


def parse_repository_date(
    value: str | datetime | None,
    formats: Sequence[str],
    field_name: str = "",
) -> datetime | None:
    """Parse a legacy date string by trying each format in order.

    Handles:
    - datetime objects (pass-through)
    - Strings matching any of ``formats`` (first match wins)
    - Empty/missing values (returns None)

    Args:
        value: Raw value from a CSV cell or repository attribute
        formats: strptime formats to try in order
        field_name: Name of the field being parsed (for logging)

    Returns:
        Parsed naive datetime, or None if nothing matched

    Examples:
        >>> parse_repository_date("25/12/2023, 10:30:00 AM", ["%d/%m/%Y, %I:%M:%S %p"])
        datetime.datetime(2023, 12, 25, 10, 30)

        >>> parse_repository_date("not a date", ["%Y-%m-%d"]) is None
        True
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value

    text = value.strip()
    if not text:
        return None

    for fmt in formats:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    logger.debug(f"Could not parse {field_name or 'date'} '{text}' with {len(formats)} formats")
    return None


def format_repository_date(value: datetime) -> str:
    """Render a datetime the way repository date attributes are written."""
    return value.strftime(REPOSITORY_DATE_FORMAT)

"""Tag value parsing utilities."""

import re
from typing import Any

_YEAR_PATTERN = re.compile(r"(\d{4})")
_LEADING_INT_PATTERN = re.compile(r"^\s*(\d+)")


def get_first_value(metadata: dict, *keys: str) -> Any:
    """Get first non-empty value from metadata by keys."""
    for key in keys:
        if key not in metadata:
            continue
        value = metadata[key]
        if isinstance(value, list):
            value = value[0] if value else None
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip().strip("\x00")
    return text or None


def parse_year(value: Any) -> int | None:
    """Parse a year out of tag dates like ``2019``, ``2019-05-01`` or ``2019:05:01``."""
    if value is None:
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    match = _YEAR_PATTERN.search(str(value))
    if not match:
        return None
    year = int(match.group(1))
    return year if year > 0 else None


def parse_track_number(value: Any) -> int | None:
    """Parse ``3``, ``"03"`` or ``"3/12"`` into 3."""
    if value is None:
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, tuple):  # MP4 trkn atoms are (track, total)
        return parse_track_number(value[0]) if value else None
    match = _LEADING_INT_PATTERN.match(str(value))
    if not match:
        return None
    number = int(match.group(1))
    return number if number > 0 else None


def to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def seconds_to_ms(value: Any) -> int | None:
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    return int(round(seconds * 1000))

"""Value lookup and coercion over loosely-structured documents.

Records in the document store are nested JSON of unpredictable shape: keys vary
in casing, values may be wrapped in ``{value: ...}`` objects, and timestamps may
be ``{seconds, nanoseconds}`` maps. These helpers normalize all of that.
"""

import re
from collections.abc import Mapping, Sequence
from datetime import UTC, date, datetime
from typing import Any

MISSING = object()

# Keys tried, in order, to reduce an object or list to a primitive
PREFERRED_KEYS: tuple[str, ...] = (
    "value",
    "name",
    "label",
    "text",
    "title",
    "id",
    "url",
    "href",
    "code",
    "number",
)

_MAX_UNWRAP_DEPTH = 6


def is_empty(value: Any) -> bool:
    if value is None or value is MISSING:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, Mapping | list | tuple):
        return len(value) == 0
    return False


def timestamp_to_datetime(value: Any) -> datetime | None:
    """Convert a Firestore-style timestamp (map or object) to an aware datetime."""
    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        if isinstance(seconds, int | float) and not isinstance(seconds, bool):
            nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
            return datetime.fromtimestamp(seconds + nanos / 1e9, tz=UTC)
        return None
    for attr in ("to_datetime", "to_date", "toDate"):
        converter = getattr(value, attr, None)
        if callable(converter):
            converted = converter()
            if isinstance(converted, datetime):
                return converted
    return None


def coerce_value(value: Any, _depth: int = 0) -> Any:
    """Reduce ``value`` to a trimmed primitive, or ``None`` when it is empty.

    Strings are trimmed, booleans become ``"true"``/``"false"``, timestamps
    become datetimes, and containers are searched via ``PREFERRED_KEYS``.
    """
    if value is None or value is MISSING or _depth > _MAX_UNWRAP_DEPTH:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, int | float | datetime | date):
        return value

    timestamp = timestamp_to_datetime(value)
    if timestamp is not None:
        return timestamp

    if isinstance(value, Mapping):
        for key in PREFERRED_KEYS:
            found = get_key(value, key)
            if found is MISSING:
                continue
            coerced = coerce_value(found, _depth + 1)
            if coerced is not None:
                return coerced
        return None

    if isinstance(value, Sequence):
        for item in value:
            coerced = coerce_value(item, _depth + 1)
            if coerced is not None:
                return coerced
        return None

    return value


def get_key(mapping: Mapping[str, Any], key: str) -> Any:
    """Exact key lookup, falling back to a case-insensitive match."""
    if key in mapping:
        return mapping[key]
    folded = key.casefold()
    for candidate, value in mapping.items():
        if isinstance(candidate, str) and candidate.casefold() == folded:
            return value
    return MISSING


def get_path(data: Any, path: str | Sequence[str]) -> Any:
    """Resolve a dotted path through nested mappings and lists.

    Numeric segments index into lists; any other segment applied to a list is
    tried against each element and the first hit wins. Returns ``MISSING``
    when no value is found.
    """
    parts = path.split(".") if isinstance(path, str) else list(path)
    current = data
    for index, part in enumerate(parts):
        if current is None or current is MISSING:
            return MISSING
        if isinstance(current, Mapping):
            current = get_key(current, part)
        elif isinstance(current, list | tuple):
            if part.isdigit():
                position = int(part)
                current = current[position] if position < len(current) else MISSING
            else:
                rest = parts[index:]
                for item in current:
                    found = get_path(item, rest)
                    if found is not MISSING:
                        return found
                return MISSING
        else:
            return MISSING
    return current


_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%d.%m.%Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%Y%m%d",
)


def parse_date(value: Any) -> datetime | None:
    """Parse anything date-like into a datetime, or ``None``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, int | float):
        # Epoch milliseconds vs seconds
        seconds = value / 1000 if abs(value) > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None

    timestamp = timestamp_to_datetime(value)
    if timestamp is not None:
        return timestamp
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    iso = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return datetime.fromisoformat(iso)
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


_TOKEN_PATTERN = re.compile(r"yyyy|yy|MMMM|MMM|MM|M|dd|d|HH|H|mm|ss")


def format_date(value: datetime | date, pattern: str) -> str:
    """Format with either a strftime pattern or ``yyyy-MM-dd`` style tokens."""
    if "%" in pattern:
        return value.strftime(pattern)
    hour = getattr(value, "hour", 0)
    minute = getattr(value, "minute", 0)
    second = getattr(value, "second", 0)
    tokens = {
        "yyyy": f"{value.year:04d}",
        "yy": f"{value.year % 100:02d}",
        "MMMM": value.strftime("%B"),
        "MMM": value.strftime("%b"),
        "MM": f"{value.month:02d}",
        "M": str(value.month),
        "dd": f"{value.day:02d}",
        "d": str(value.day),
        "HH": f"{hour:02d}",
        "H": str(hour),
        "mm": f"{minute:02d}",
        "ss": f"{second:02d}",
    }
    return _TOKEN_PATTERN.sub(lambda match: tokens[match.group(0)], pattern)


def to_display_string(value: Any) -> str | None:
    """Stringify a coerced value for payload output; dates become ISO dates."""
    coerced = coerce_value(value)
    if coerced is None:
        return None
    if isinstance(coerced, datetime):
        return coerced.isoformat()
    if isinstance(coerced, date):
        return coerced.isoformat()
    if isinstance(coerced, float) and coerced.is_integer():
        return str(int(coerced))
    return str(coerced)

"""
Primitive parsers shared by every platform mapper.

Default policy for absent remote fields (identical for every platform):

- optional text: ``None``; blank strings are treated as absent
- amounts, quantities and rates: ``Decimal("0")``
- dates and timestamps: ``None``
- boolean flags: ``False`` (callers pass ``True`` for ``active``)

Values that are present but malformed raise ``MappingError`` instead of
falling back to a default.
"""

import re
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from ledger_sync.shared.exceptions import MappingError

ZERO = Decimal("0")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_XERO_DATE = re.compile(r"^/Date\((-?\d+)([+-]\d{4})?\)/$")


def nested(raw: Any, *path: str) -> Any:
    """Walk nested JSON objects, returning None as soon as a key is missing."""
    current = raw
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def require_str(value: Any, field: str) -> str:
    text = optional_str(value, field)
    if text is None:
        raise MappingError(field, value)
    return text


def optional_str(value: Any, field: str) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool) or isinstance(value, (dict, list)):
        raise MappingError(field, value)
    text = str(value)
    return text if text.strip() else None


def parse_decimal(value: Any, field: str, default: Decimal = ZERO) -> Decimal:
    """Parse an amount without passing through binary floating point."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, bool):
        raise MappingError(field, value)
    try:
        # str() keeps JSON floats at their printed precision
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise MappingError(field, value)
    if not result.is_finite():
        raise MappingError(field, value)
    return result


def parse_bool(value: Any, field: str, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise MappingError(field, value)


def parse_datetime(value: Any, field: str) -> Optional[datetime]:
    """
    Parse a remote timestamp into an aware UTC datetime.

    Accepts Xero's ``/Date(1748476800000+0000)/`` form (milliseconds since the
    Unix epoch) and ISO-8601 strings with or without an offset. Naive ISO
    values are taken as UTC.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if not isinstance(value, str):
        raise MappingError(field, value)

    match = _XERO_DATE.match(value.strip())
    if match:
        return _EPOCH + timedelta(milliseconds=int(match.group(1)))

    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise MappingError(field, value)

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_date(value: Any, field: str) -> Optional[date]:
    """Parse a calendar date (``2024-01-31``, ISO timestamp or Xero date)."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if not isinstance(value, str):
        raise MappingError(field, value)

    text = value.strip()
    if _XERO_DATE.match(text):
        parsed = parse_datetime(text, field)
        return parsed.date() if parsed else None
    try:
        if "T" in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    except ValueError:
        raise MappingError(field, value)

"""Typed value conversions for server-declared scalar types.

Server schemas and options declare scalar types either by name (``"byte"``,
``"int64"``, ``"datetime"``...) or, for options, by a numeric type code.
The functions below coerce loosely typed input (strings coming from XML
attributes, native Python values coming from callers) into the canonical
Python value for each type. Conversions never raise on malformed numeric
input: unparsable numbers become ``0`` like the server does.

Example::

    from acc_client.caster import as_typed, as_byte

    as_byte("500")          # 127 (clamped)
    as_typed("-123", 3)     # -123, option type code 3 is "long"
    as_typed("Hello", 6)    # "Hello"
"""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Union

# Option data type codes (xtk:option/@dataType)
OPTION_TYPE_NOT_FOUND = 0
OPTION_TYPE_BYTE = 1
OPTION_TYPE_SHORT = 2
OPTION_TYPE_LONG = 3
OPTION_TYPE_FLOAT = 4
OPTION_TYPE_DOUBLE = 5
OPTION_TYPE_STRING = 6
OPTION_TYPE_DATETIME = 7
OPTION_TYPE_DATE = 10
OPTION_TYPE_MEMO = 12
OPTION_TYPE_MEMO_SHORT = 13

OPTION_TYPE_NAMES: Dict[int, str] = {
    OPTION_TYPE_BYTE: "byte",
    OPTION_TYPE_SHORT: "short",
    OPTION_TYPE_LONG: "long",
    OPTION_TYPE_FLOAT: "float",
    OPTION_TYPE_DOUBLE: "double",
    OPTION_TYPE_STRING: "string",
    OPTION_TYPE_DATETIME: "datetime",
    OPTION_TYPE_DATE: "date",
    OPTION_TYPE_MEMO: "memo",
    OPTION_TYPE_MEMO_SHORT: "memo",
}


def as_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def as_boolean(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip()
    if text.lower() == "true":
        return True
    return _parse_number(text) != 0


def _parse_number(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return float(bool(value))
    if isinstance(value, (int, float)):
        return float(value)
    try:
        number = float(str(value).strip())
    except ValueError:
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _as_integer(value: Any, low: Optional[int], high: Optional[int]) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        number = value
    else:
        text = "" if value is None else str(value).strip()
        try:
            number = int(text)
        except ValueError:
            number = int(_parse_number(value))
    if low is not None and number < low:
        return low
    if high is not None and number > high:
        return high
    return number


def as_byte(value: Any) -> int:
    return _as_integer(value, -128, 127)


def as_short(value: Any) -> int:
    return _as_integer(value, -32768, 32767)


def as_long(value: Any) -> int:
    return _as_integer(value, -(2**31), 2**31 - 1)


def as_int64(value: Any) -> int:
    return _as_integer(value, -(2**63), 2**63 - 1)


def as_number(value: Any) -> float:
    return _parse_number(value)


def as_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted) into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def as_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = as_datetime(str(value).strip()[:10])
    return parsed.date() if parsed else None


def format_datetime(value: datetime) -> str:
    """Format a datetime the way the server expects (UTC, millisecond precision)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    millis = value.microsecond // 1000
    return value.strftime("%Y-%m-%dT%H:%M:%S") + f".{millis:03d}Z"


def type_name(type_: Union[int, str, None]) -> str:
    """Normalize an option type code or a type name to a type name."""
    if type_ is None:
        return "string"
    if isinstance(type_, int):
        return OPTION_TYPE_NAMES.get(type_, "string")
    name = str(type_).strip()
    if name.isdigit():
        return OPTION_TYPE_NAMES.get(int(name), "string")
    return name


def as_typed(value: Any, type_: Union[int, str, None]) -> Any:
    """Convert ``value`` to the Python value for ``type_``."""
    name = type_name(type_).lower()
    if name in ("string", "memo", "char", "text", "html"):
        return as_string(value)
    if name == "boolean":
        return as_boolean(value)
    if name == "byte":
        return as_byte(value)
    if name == "short":
        return as_short(value)
    if name in ("long", "int"):
        return as_long(value)
    if name == "int64":
        return as_int64(value)
    if name in ("float", "double", "number"):
        return as_number(value)
    if name in ("datetime", "timestamp"):
        return as_datetime(value)
    if name == "date":
        return as_date(value)
    return as_string(value)

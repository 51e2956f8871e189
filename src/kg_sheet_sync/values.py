"""Cell parsing and value canonicalization.

Spreadsheet cells and the remote store use different surface forms for the
same value ("Jan 15, 2024" vs "2024-01-15T00:00:00.000Z", "yes" vs true,
"42" vs 42.0). Everything that compares or converts a value goes through this
module so both sides land in one canonical form before any equality check.

Canonical forms are for comparison only, never for display.
"""

from __future__ import annotations

import math
import re
import uuid
from datetime import date, datetime, time, timedelta, timezone

from kg_sheet_sync.config import FLOAT_EPSILON
from kg_sheet_sync.models import DataType, PropertyValue, TypedValue

ID_PATTERN = re.compile(r"^[0-9a-f]{32}$", re.IGNORECASE)

TRUE_STRINGS = frozenset({"true", "yes", "y", "1"})
FALSE_STRINGS = frozenset({"false", "no", "n", "0"})

# Formats tried after ISO 8601 parsing fails
DATE_FORMATS = [
    "%m/%d/%Y",
    "%m/%d/%y",
    "%Y/%m/%d",
    "%d.%m.%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%d %b %Y",
    "%d %B %Y",
]

DATETIME_FORMATS = [
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %I:%M %p",
    "%Y/%m/%d %H:%M:%S",
    "%b %d, %Y %H:%M:%S",
    "%b %d, %Y %I:%M %p",
    "%B %d, %Y %H:%M:%S",
    "%B %d, %Y %I:%M %p",
]

TIME_PATTERN = re.compile(
    r"^(\d{1,2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?\s*(AM|PM)?\s*(Z|[+-]\d{2}:?\d{2})?$",
    re.IGNORECASE,
)

# Excel's day zero (it treats 1900 as a leap year)
EXCEL_EPOCH = datetime(1899, 12, 30)


# =============================================================================
# Names, lists and identifiers
# =============================================================================


def normalize_name(name: str) -> str:
    """Normalize an entity/type/property name into its dedup key.

    Lower-cases, trims, collapses internal whitespace and folds curly quotes
    to straight ones, so "  ACME  Corp" and "acme corp" share a key.
    """
    key = " ".join(name.lower().split())
    return key.replace("‘", "'").replace("’", "'").replace("“", '"').replace("”", '"')


def is_blank(value: object) -> bool:
    """True for None and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, float):
        return math.isnan(value)
    return False


def clean_string(value: object) -> str | None:
    """Trim a cell to a string, or None if blank."""
    if is_blank(value):
        return None
    return str(value).strip()


def parse_semicolon_list(value: str | None) -> list[str]:
    """Split a semicolon-separated cell, dropping empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(";") if item.strip()]


def parse_comma_list(value: str | None) -> list[str]:
    """Split a comma-separated cell, dropping empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_multi_value_list(value: str | None) -> list[str]:
    """Split a list cell; semicolons win over commas when both are present."""
    if not value:
        return []
    if ";" in value:
        return parse_semicolon_list(value)
    return parse_comma_list(value)


def is_valid_id(value: str | None) -> bool:
    """Check for a 32-character hexadecimal identifier."""
    if not value or not isinstance(value, str):
        return False
    return bool(ID_PATTERN.match(value.strip()))


def clean_id(value: str | None) -> str | None:
    """Lower-case an identifier and strip UUID dashes; None if still invalid."""
    if not value or not isinstance(value, str):
        return None
    candidate = value.strip().lower().replace("-", "")
    return candidate if ID_PATTERN.match(candidate) else None


def generate_id() -> str:
    """Mint a new identifier (UUID4 without dashes)."""
    return uuid.uuid4().hex


# =============================================================================
# Scalar parsers
# =============================================================================


def _excel_serial_to_datetime(serial: float) -> datetime:
    # Serials before 1900-03-01 sit on the far side of Excel's phantom leap day
    if serial < 60:
        return EXCEL_EPOCH + timedelta(days=serial + 1)
    return EXCEL_EPOCH + timedelta(days=serial)


def _parse_iso(text: str) -> datetime | None:
    candidate = text
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        return None


def _to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _coerce_datetime(value: object, formats: list[str]) -> datetime | None:
    if isinstance(value, datetime):
        return _to_utc_naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _excel_serial_to_datetime(float(value))
    text = clean_string(value)
    if text is None:
        return None
    parsed = _parse_iso(text)
    if parsed is not None:
        return _to_utc_naive(parsed)
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_date(value: object) -> str | None:
    """Parse a date cell into YYYY-MM-DD.

    Accepts ISO dates and datetimes, common US/long-form spellings, Excel
    serial numbers and date/datetime objects.
    """
    parsed = _coerce_datetime(value, DATE_FORMATS + DATETIME_FORMATS)
    return parsed.strftime("%Y-%m-%d") if parsed else None


def parse_datetime(value: object) -> str | None:
    """Parse a datetime cell into YYYY-MM-DDTHH:MM:SSZ (UTC)."""
    parsed = _coerce_datetime(value, DATETIME_FORMATS + DATE_FORMATS)
    return parsed.strftime("%Y-%m-%dT%H:%M:%SZ") if parsed else None


def parse_time(value: object) -> str | None:
    """Parse a time cell into HH:MM:SSZ.

    Handles "14:30", "14:30:00", "2:30 PM", trailing UTC offsets, Excel time
    fractions (0.5 = noon) and time/datetime objects.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, datetime):
        value = _to_utc_naive(value).time()
    if isinstance(value, time):
        return f"{value.hour:02d}:{value.minute:02d}:{value.second:02d}Z"
    if isinstance(value, (int, float)):
        total = round(float(value) * 86400) % 86400
        return f"{total // 3600:02d}:{(total % 3600) // 60:02d}:{total % 60:02d}Z"

    text = clean_string(value)
    if text is None:
        return None
    match = TIME_PATTERN.match(text)
    if not match:
        parsed = _coerce_datetime(text, DATETIME_FORMATS)
        return parse_time(parsed.time()) if parsed else None

    hours, minutes = int(match.group(1)), int(match.group(2))
    seconds = int(match.group(3) or 0)
    meridiem = (match.group(4) or "").upper()
    if meridiem == "PM" and hours < 12:
        hours += 12
    if meridiem == "AM" and hours == 12:
        hours = 0
    offset = match.group(5)
    total = hours * 3600 + minutes * 60 + seconds
    if offset and offset.upper() != "Z":
        sign = -1 if offset[0] == "-" else 1
        digits = offset[1:].replace(":", "")
        total -= sign * (int(digits[:2]) * 3600 + int(digits[2:]) * 60)
        total %= 86400
    return f"{total // 3600:02d}:{(total % 3600) // 60:02d}:{total % 60:02d}Z"


def parse_boolean(value: object) -> bool | None:
    """Parse yes/no style cells. Unrecognised text returns None."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in TRUE_STRINGS:
        return True
    if text in FALSE_STRINGS:
        return False
    return None


def parse_integer(value: object) -> int | None:
    """Parse an integer cell; integral floats ("42.0") are accepted."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return math.floor(value) if math.isfinite(value) else None
    text = clean_string(value)
    if text is None:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    return int(number) if number.is_integer() else None


def parse_float(value: object) -> float | None:
    """Parse a float cell; NaN and infinities are rejected."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = clean_string(value)
        if text is None:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    return number if math.isfinite(number) else None


def parse_point(value: object) -> tuple[float, float] | None:
    """Parse "lat,lon" into a coordinate pair."""
    text = clean_string(value)
    if text is None:
        return None
    parts = [p.strip() for p in text.split(",")]
    if len(parts) != 2:
        return None
    lat, lon = parse_float(parts[0]), parse_float(parts[1])
    if lat is None or lon is None:
        return None
    return lat, lon


def _format_number(number: float) -> str:
    return str(int(number)) if number.is_integer() else repr(number)


# =============================================================================
# Canonicalization and comparison
# =============================================================================


def canonical_value(value: str, data_type: DataType) -> str:
    """Reduce a value to the canonical string used for equality checks.

    Values that fail to parse for their declared kind fall back to the trimmed
    text, so two equally unparseable values still compare equal.
    """
    trimmed = value.strip()
    canonical: str | None
    if data_type == DataType.DATE:
        canonical = parse_date(trimmed)
    elif data_type == DataType.DATETIME:
        canonical = parse_datetime(trimmed)
    elif data_type == DataType.TIME:
        canonical = parse_time(trimmed)
    elif data_type == DataType.BOOLEAN:
        flag = parse_boolean(trimmed)
        canonical = None if flag is None else str(flag).lower()
    elif data_type == DataType.INTEGER:
        number = parse_integer(trimmed)
        canonical = None if number is None else str(number)
    elif data_type == DataType.FLOAT:
        real = parse_float(trimmed)
        canonical = None if real is None else _format_number(real)
    elif data_type == DataType.POINT:
        point = parse_point(trimmed)
        canonical = None if point is None else f"{_format_number(point[0])},{_format_number(point[1])}"
    else:
        canonical = trimmed
    return canonical if canonical is not None else trimmed


def values_equal(left: str, right: str, data_type: DataType) -> bool:
    """Compare two canonical values; floats use an absolute epsilon of 1e-9."""
    if data_type == DataType.FLOAT:
        a, b = parse_float(left), parse_float(right)
        if a is not None and b is not None:
            return abs(a - b) < FLOAT_EPSILON
    return left == right


def current_value_as_string(values: tuple[PropertyValue, ...], property_id: str, data_type: DataType) -> str | None:
    """Pick the live value for ``property_id`` and render it as text.

    The first value recorded for the property wins. Returns None when the
    property holds no value of the requested kind.
    Numbers come back only as floats and dates or times only as datetimes
    (or text), so those kinds are read from those fields.
    """
    match = next((v for v in values if v.property_id == property_id), None)
    if match is None:
        return None
    if data_type == DataType.BOOLEAN:
        return None if match.boolean is None else str(match.boolean).lower()
    if data_type in (DataType.INTEGER, DataType.FLOAT):
        return None if match.number is None else _format_number(match.number)
    if data_type in (DataType.DATE, DataType.TIME):
        return match.datetime or match.text
    if data_type == DataType.DATETIME:
        return match.datetime
    if data_type == DataType.POINT:
        return match.point
    if data_type == DataType.SCHEDULE:
        return match.schedule
    return match.text


def convert_to_typed_value(value: str, data_type: DataType) -> TypedValue | None:
    """Convert a cell into the store's typed value, or None if it does not parse."""
    if data_type == DataType.INTEGER:
        number = parse_integer(value)
        return None if number is None else TypedValue("integer", number)
    if data_type == DataType.FLOAT:
        real = parse_float(value)
        return None if real is None else TypedValue("float", real)
    if data_type == DataType.DATE:
        parsed = parse_date(value)
        return None if parsed is None else TypedValue("date", parsed)
    if data_type == DataType.TIME:
        parsed = parse_time(value)
        return None if parsed is None else TypedValue("time", parsed)
    if data_type == DataType.DATETIME:
        parsed = parse_datetime(value)
        return None if parsed is None else TypedValue("datetime", parsed)
    if data_type == DataType.BOOLEAN:
        flag = parse_boolean(value)
        return None if flag is None else TypedValue("boolean", flag)
    if data_type == DataType.POINT:
        point = parse_point(value)
        return None if point is None else TypedValue("point", lat=point[0], lon=point[1])
    if data_type == DataType.SCHEDULE:
        return TypedValue("schedule", value)
    return TypedValue("text", value)

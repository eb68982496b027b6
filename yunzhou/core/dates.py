"""Date helpers shared by the field mapper, the bulk writer and the orchestrator.

Spreadsheet dates arrive as serial day counts (25569 == 1970-01-01), as
datetime cells, or as free-form strings. Everything is normalized to
``YYYY-MM-DD`` for business dates and to a UTC ISO instant for timestamps.
"Today" is evaluated in the business timezone, never the host's.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

SERIAL_EPOCH_OFFSET = 25569
MS_PER_DAY = 86_400_000
# Serials outside this open range are not treated as dates by normalize_date.
SERIAL_MIN = 25569
SERIAL_MAX = 150000
MIN_YEAR = 1980

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_YMD_RE = re.compile(r"^(\d{4})[/-](\d{1,2})[/-](\d{1,2})")
_COMPACT_RE = re.compile(r"^\d{8}$")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def serial_to_datetime(serial: float) -> datetime:
    """Convert a spreadsheet day-count serial into a UTC datetime."""
    return _EPOCH + timedelta(milliseconds=(serial - SERIAL_EPOCH_OFFSET) * MS_PER_DAY)


def serial_to_date(serial: float) -> str:
    return serial_to_datetime(serial).strftime("%Y-%m-%d")


def format_instant(dt: datetime) -> str:
    """Format an aware datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def serial_to_instant(serial: float) -> str:
    return format_instant(serial_to_datetime(serial))


def normalize_date(value: Any) -> Optional[str]:
    """Normalize any supported date encoding to ``YYYY-MM-DD``.

    Returns None for blanks and for anything that cannot be read as a date
    after 1980.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()
    if _is_number(value) and SERIAL_MIN < value < SERIAL_MAX:
        return serial_to_date(value)

    text = str(value).strip()
    if not text:
        return None
    if _is_number(value) and float(value).is_integer():
        text = str(int(value))

    match = _YMD_RE.match(text)
    if match:
        year = int(match.group(1))
        if year > MIN_YEAR:
            return f"{year:04d}-{int(match.group(2)):02d}-{int(match.group(3)):02d}"

    if _COMPACT_RE.match(text) and int(text[:4]) > MIN_YEAR:
        return f"{text[:4]}-{text[4:6]}-{text[6:8]}"

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.year <= MIN_YEAR:
        return None
    return parsed.strftime("%Y-%m-%d")


def date_cell_value(value: Any) -> Optional[str]:
    """Business-date cell handling used by the field mapper.

    Numeric cells are serials; datetime cells keep their calendar date;
    strings pass through trimmed. Blank values become None.
    """
    if value is None:
        return None
    if _is_number(value):
        return serial_to_date(value)
    if isinstance(value, (datetime, date)):
        return normalize_date(value)
    text = str(value).strip()
    return text or None


def parse_timestamp(value: Any, tz_name: str = "Asia/Shanghai") -> Optional[str]:
    """Coerce a TIMESTAMP cell into a UTC ISO instant, or None.

    Naive values are interpreted in the business timezone.
    """
    if value is None:
        return None
    tz = ZoneInfo(tz_name)
    if _is_number(value):
        return serial_to_instant(value)
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=tz)
        return format_instant(dt)
    if isinstance(value, date):
        return format_instant(datetime(value.year, value.month, value.day, tzinfo=tz))

    text = str(value).strip()
    if not text:
        return None
    candidate = text.replace("/", "-").replace("Z", "+00:00")
    try:
        dt = datetime.fromisoformat(candidate)
    except ValueError:
        day = normalize_date(text)
        if day is None:
            return None
        dt = datetime.fromisoformat(day)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return format_instant(dt)


def today_in(tz_name: str = "Asia/Shanghai") -> str:
    """Current date as ``YYYY-MM-DD`` in the given timezone."""
    return datetime.now(ZoneInfo(tz_name)).strftime("%Y-%m-%d")


def lookback_window(anchor: str, days: int) -> tuple[str, str]:
    """Return (start, end) where start is ``days`` calendar days before anchor."""
    end = date.fromisoformat(anchor)
    start = end - timedelta(days=days)
    return start.isoformat(), end.isoformat()


def generate_date_range(end: str, days: int) -> list[str]:
    """Inclusive list of ``days`` dates ending on ``end``, oldest first."""
    if not end or days < 1:
        return []
    last = date.fromisoformat(end)
    return [(last - timedelta(days=i)).isoformat() for i in range(days - 1, -1, -1)]

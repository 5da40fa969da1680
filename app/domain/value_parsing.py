"""
app/domain/value_parsing.py

Parsing helpers for timestamps and coordinates found in imported cells.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timezone
from typing import Any

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATETIME_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?$"
)
_DECIMAL_PATTERN = re.compile(r"^-?(?:\d+(?:\.\d+)?|\.\d+)(?:[eE][+-]?\d+)?$")
_DIRECTIONAL_PATTERN = re.compile(r"^(-?\d{1,3}(?:\.\d{0,10})?)\s{0,2}([NSEW])$", re.IGNORECASE)
_DMS_PATTERN = re.compile(
    r"^(-?\d{1,3})[°\s]\s*(\d{1,2})['′\s]\s*(\d{1,2}(?:\.\d{0,6})?)[\"″\s]?\s*([NSEW])?$",
    re.IGNORECASE,
)

# Day-first before month-first: European sources dominate the fallback cases.
_TIMESTAMP_FORMATS: tuple[str, ...] = (
    "%Y/%m/%d",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%d.%m.%Y",
    "%d.%m.%Y %H:%M",
    "%d/%m/%Y",
    "%d/%m/%Y %H:%M",
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M",
    "%d-%m-%Y",
    "%Y%m%d",
)

_UNIX_SECONDS_RANGE = (1_000_000_000, 9_999_999_999)
_UNIX_MILLIS_RANGE = (1_000_000_000_000, 9_999_999_999_999)


def parse_iso_datetime(value: str) -> datetime | None:
    """
    Parse an ISO date (`YYYY-MM-DD`) or datetime string. Returns None otherwise.
    """

    text = value.strip()
    if _DATE_PATTERN.match(text):
        try:
            parsed = date.fromisoformat(text)
        except ValueError:
            return None
        return datetime(parsed.year, parsed.month, parsed.day)
    if _DATETIME_PATTERN.match(text):
        normalized = text.replace(" ", "T", 1)
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        if re.search(r"[+-]\d{4}$", normalized):
            normalized = f"{normalized[:-2]}:{normalized[-2:]}"
        try:
            return datetime.fromisoformat(normalized)
        except ValueError:
            return None
    return None


def _from_unix(number: float) -> datetime | None:
    if _UNIX_SECONDS_RANGE[0] < number < _UNIX_SECONDS_RANGE[1]:
        return datetime.fromtimestamp(number, tz=timezone.utc)
    if _UNIX_MILLIS_RANGE[0] < number < _UNIX_MILLIS_RANGE[1]:
        return datetime.fromtimestamp(number / 1000, tz=timezone.utc)
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """
    Best-effort timestamp parsing: ISO strings, common day/month layouts and
    unix seconds or milliseconds. Naive results are treated as UTC.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None
        return _from_unix(float(value))
    else:
        text = str(value).strip()
        if not text:
            return None
        parsed = parse_iso_datetime(text)
        if parsed is None and _DECIMAL_PATTERN.match(text):
            return _from_unix(float(text))
        if parsed is None:
            for fmt in _TIMESTAMP_FORMATS:
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


def parse_coordinate(value: Any) -> float | None:
    """
    Parse one coordinate component.

    Accepts numbers, decimal strings (comma decimal separator allowed),
    directional suffixes (`52.5N`) and degrees-minutes-seconds.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return None if math.isnan(number) or math.isinf(number) else number

    text = str(value).strip()
    if not text:
        return None
    if text.count(",") == 1 and "." not in text:
        text = text.replace(",", ".")
    if _DECIMAL_PATTERN.match(text):
        return float(text)

    match = _DIRECTIONAL_PATTERN.match(text)
    if match:
        number = float(match.group(1))
        return -abs(number) if match.group(2).upper() in {"S", "W"} else number

    match = _DMS_PATTERN.match(text)
    if match:
        degrees = float(match.group(1))
        fractional = float(match.group(2)) / 60 + float(match.group(3)) / 3600
        result = degrees - fractional if degrees < 0 else degrees + fractional
        direction = (match.group(4) or "").upper()
        return -abs(result) if direction in {"S", "W"} else result
    return None

"""Utility helpers for parsing human-friendly dates into canonical ISO strings."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Iterable, Optional, Tuple

_MONTHS = {
    "jan": 1,
    "january": 1,
    "januar": 1,
    "jän": 1,
    "jänner": 1,
    "feb": 2,
    "february": 2,
    "februar": 2,
    "mar": 3,
    "march": 3,
    "mär": 3,
    "märz": 3,
    "maerz": 3,
    "apr": 4,
    "april": 4,
    "may": 5,
    "mai": 5,
    "jun": 6,
    "june": 6,
    "juni": 6,
    "jul": 7,
    "july": 7,
    "juli": 7,
    "aug": 8,
    "august": 8,
    "sep": 9,
    "sept": 9,
    "september": 9,
    "oct": 10,
    "october": 10,
    "okt": 10,
    "oktober": 10,
    "nov": 11,
    "november": 11,
    "dec": 12,
    "december": 12,
    "dez": 12,
    "dezember": 12,
}

_DATE_ISO = re.compile(r"^(?P<year>\d{4})-(?P<month>\d{1,2})-(?P<day>\d{1,2})$", re.ASCII)
_DATE_ISO_DATETIME = re.compile(r"^(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})T[\d:.]+(?:Z|[+-]\d{2}:?\d{2})?$", re.ASCII)
# 15.08.1992 / 15-08-1992 / 15 08 1992 are always day-first
_DATE_DOTTED = re.compile(r"^(?P<day>\d{1,2})\s*[.\- ]\s*(?P<month>\d{1,2})\s*[.\- ]\s*(?P<year>\d{2}|\d{4})\.?$", re.ASCII)
# 05/08/1992 reads month-first; 15/08/1992 falls back to day-first
_DATE_SLASHED = re.compile(r"^(?P<first>\d{1,2})\s*/\s*(?P<second>\d{1,2})\s*/\s*(?P<year>\d{2}|\d{4})$", re.ASCII)
_DATE_TEXTUAL_DMY = re.compile(
    r"^(?P<day>\d{1,2})(?:st|nd|rd|th)?\.?\s*(?P<month>[A-Za-zäÄ]{3,9})\.?\s*,?\s*(?P<year>\d{2}|\d{4})$",
    re.ASCII,
)
_DATE_TEXTUAL_MDY = re.compile(
    r"^(?P<month>[A-Za-zäÄ]{3,9})\.?\s+(?P<day>\d{1,2})(?:st|nd|rd|th)?\s*,?\s*(?P<year>\d{2}|\d{4})$",
    re.ASCII,
)


def _expand_year(raw: str, today: Optional[date] = None) -> int:
    """Expand two-digit years to the century closest to ``today``.

    The window runs from 50 years before to 49 years after the current year.
    """

    year = int(raw)
    if len(raw) == 4:
        return year
    today = today or date.today()
    range_end = today.year + 50
    range_end_century = range_end - range_end % 100
    if year >= range_end % 100:
        return range_end_century - 100 + year
    return range_end_century + year


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _month_from_token(token: str) -> Optional[int]:
    return _MONTHS.get(token.lower().rstrip("."))


def _first_valid(candidates: Iterable[Tuple[int, int, int]]) -> Optional[date]:
    for year, month, day in candidates:
        parsed = _safe_date(year, month, day)
        if parsed is not None:
            return parsed
    return None


def parse_date(text: Optional[str], *, today: Optional[date] = None) -> Optional[date]:
    """Parse a single date written the way German or English users write it.

    Slash dates are read month-first (``05/08/1992`` is May 8); day-first is
    only used when the month-first reading is impossible (``15/08/1992``).
    """

    if text is None:
        return None
    value = " ".join(str(text).strip().split())
    if not value:
        return None

    match = _DATE_ISO.match(value) or _DATE_ISO_DATETIME.match(value)
    if match:
        return _safe_date(int(match.group("year")), int(match.group("month")), int(match.group("day")))

    match = _DATE_DOTTED.match(value)
    if match:
        year = _expand_year(match.group("year"), today)
        return _safe_date(year, int(match.group("month")), int(match.group("day")))

    match = _DATE_SLASHED.match(value)
    if match:
        year = _expand_year(match.group("year"), today)
        first = int(match.group("first"))
        second = int(match.group("second"))
        return _first_valid([(year, first, second), (year, second, first)])

    match = _DATE_TEXTUAL_DMY.match(value)
    if match:
        month = _month_from_token(match.group("month"))
        if month is None:
            return None
        year = _expand_year(match.group("year"), today)
        return _safe_date(year, month, int(match.group("day")))

    match = _DATE_TEXTUAL_MDY.match(value)
    if match:
        month = _month_from_token(match.group("month"))
        if month is None:
            return None
        year = _expand_year(match.group("year"), today)
        return _safe_date(year, month, int(match.group("day")))

    return None


def to_iso_date(value: date | datetime) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.strftime("%Y-%m-%d")


def full_years_between(earlier: date, later: date) -> int:
    """Age in completed years on ``later`` for someone born on ``earlier``."""

    years = later.year - earlier.year
    if (later.month, later.day) < (earlier.month, earlier.day):
        years -= 1
    return years


def format_long_date(value: Optional[str], locale: str) -> str:
    """Render an ISO date the way the locale writes it in prose."""

    parsed = parse_date(value) if value else None
    if parsed is None:
        return value or ""
    if locale.startswith("en"):
        return parsed.strftime("%d/%m/%Y")
    return parsed.strftime("%d.%m.%Y")

"""
Single place where NAV dates are parsed.

Accepted inputs, tried in this order:
    * ``date`` / ``datetime`` objects (a datetime is reduced to its date)
    * ``YYYY-MM-DD``, optionally followed by a ``T...`` time part
    * ``DD-MM-YYYY`` (MFapi.in history rows), one- or two-digit day and month
    * ``DD-Mon-YYYY`` (AMFI NAVAll.txt), English month abbreviation, any case

Anything else raises InvalidNavDateError. Callers that must not fail use
try_parse_nav_date, which returns None instead.
"""
import re
from datetime import date, datetime
from typing import Optional, Union

from mf_data.core.exceptions import InvalidNavDateError

DateLike = Union[str, date, datetime]

_ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:T.*)?$")
_DMY_NUMERIC_RE = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$")
_DMY_MONTH_NAME_RE = re.compile(r"^(\d{1,2})-([A-Za-z]{3})-(\d{4})$")

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}


def _build(year: int, month: int, day: int, raw: str) -> date:
    try:
        return date(year, month, day)
    except ValueError as e:
        raise InvalidNavDateError(f"Not a calendar date: {raw!r}") from e


def parse_nav_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidNavDateError(f"Unsupported date value: {value!r}")

    raw = value.strip()

    match = _ISO_RE.match(raw)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return _build(year, month, day, raw)

    match = _DMY_NUMERIC_RE.match(raw)
    if match:
        day, month, year = (int(part) for part in match.groups())
        return _build(year, month, day, raw)

    match = _DMY_MONTH_NAME_RE.match(raw)
    if match:
        day, month_name, year = match.groups()
        month = _MONTHS.get(month_name.lower())
        if month is None:
            raise InvalidNavDateError(f"Unknown month abbreviation in {raw!r}")
        return _build(int(year), month, int(day), raw)

    raise InvalidNavDateError(f"Unrecognised NAV date format: {raw!r}")


def try_parse_nav_date(value: Optional[DateLike]) -> Optional[date]:
    if value is None:
        return None
    try:
        return parse_nav_date(value)
    except InvalidNavDateError:
        return None


def to_iso_date(value: DateLike) -> str:
    """Canonical storage form: ``YYYY-MM-DD``."""
    return parse_nav_date(value).isoformat()

"""
Date Token Module

Normalizes the roster's loose date cells ("Jan 05", "Wed 03") into
YYYY.MM.DD strings for the spreadsheet report view, and resolves them to
calendar dates for UTC time accounting.

Tokens carry no year, and weekday tokens carry no month either, so the
processing date is the only anchor available. A roster crossing a month or
year boundary is therefore resolved against the wrong month/year.
"""

import logging
from datetime import date, datetime
from typing import Any, Optional

from roster_schema import UnparseableFieldError, is_blank

logger = logging.getLogger(__name__)


MONTH_TOKENS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

WEEKDAY_TOKENS = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]

REPORT_DATE_FORMAT = "%Y.%m.%d"

# Already-complete dates the roster occasionally carries
FULL_DATE_FORMATS = ["%Y-%m-%d", "%d/%m/%Y", "%d%b%y", "%d%b%Y"]


def convert_date_token(value: Any, now: Optional[date] = None) -> Any:
    """
    Convert "<month|weekday> <day>" into "YYYY.MM.DD".

    Month tokens take the year of ``now``; weekday tokens take its year and
    month. Anything else (including non-strings) is returned unchanged.

    Args:
        value: Raw Date cell
        now: Processing date (defaults to today)

    Returns:
        Normalized date string, or the input as given
    """
    if not isinstance(value, str) or not value:
        return value

    parts = value.strip().split()
    if len(parts) != 2:
        return value

    token = parts[0].lower()
    day_str = parts[1].lstrip("0") or "0"
    if not day_str.isdigit():
        return value

    day = int(day_str)
    now = now or date.today()

    if token in MONTH_TOKENS:
        return f"{now.year}.{MONTH_TOKENS[token]:02d}.{day:02d}"

    if token in WEEKDAY_TOKENS:
        return f"{now.year}.{now.month:02d}.{day:02d}"

    return value


def resolve_roster_date(value: Any, anchor: date) -> date:
    """
    Resolve a roster Date cell to a calendar date.

    Blank cells fall back to ``anchor`` (the scrape date).

    Raises:
        UnparseableFieldError: the cell is neither a token nor a full date
    """
    if is_blank(value):
        logger.debug(f"Blank Date cell, using scrape date {anchor}")
        return anchor

    text = str(value).strip()
    normalized = convert_date_token(text, now=anchor)

    for fmt in [REPORT_DATE_FORMAT] + FULL_DATE_FORMATS:
        try:
            return datetime.strptime(normalized, fmt).date()
        except ValueError:
            continue

    raise UnparseableFieldError("Date", value)


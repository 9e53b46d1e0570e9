"""
Flight Time Utilities

Time accounting for roster legs:
- Block hours (BLH) text -> decimal hours -> HH:MM elapsed time (ET)
- STD/STA UTC text + roster date -> UTC instants, honouring "+1" day markers
- Night time (NT) as the overlap of the leg with the configured night window

Ground activities (From == To) get 00:00 for both. A record whose cells
cannot be parsed keeps 00:00 and is flagged for manual review instead of
stopping the batch.
"""

import os
import re
import math
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Iterable, Tuple

from dotenv import load_dotenv

from roster_schema import (
    CanonicalRecord,
    EnrichedRecord,
    UnparseableFieldError,
    ZERO_TIME,
    is_blank,
)
from date_tokens import resolve_roster_date

load_dotenv()

logger = logging.getLogger(__name__)


# =========================================================
# Configuration
# =========================================================

# TODO: confirm night window boundaries with crew ops; 00:00-06:00 UTC is provisional
NIGHT_WINDOW_START_UTC = os.getenv("NIGHT_WINDOW_START_UTC", "00:00")
NIGHT_WINDOW_END_UTC = os.getenv("NIGHT_WINDOW_END_UTC", "06:00")
NIGHT_WINDOW_IS_DEFAULT = (
    os.getenv("NIGHT_WINDOW_START_UTC") is None and os.getenv("NIGHT_WINDOW_END_UTC") is None
)

# Absorbs float error when converting decimal hours back to whole minutes
MINUTE_EPSILON = 1e-6

BLH_PATTERN = re.compile(r"^(\d+)(?:[:.](\d{2}))?$")
UTC_TIME_PATTERN = re.compile(r"^(\d{1,2})[:.]?(\d{2})\s*(?:\(?\s*\+\s*(\d)\s*\)?)?$")


def parse_clock(value: str) -> time:
    """Parse an "HH:MM" configuration value."""
    match = re.match(r"^\s*(\d{1,2}):(\d{2})\s*$", value or "")
    if not match or int(match.group(1)) > 23 or int(match.group(2)) > 59:
        raise ValueError(f"Invalid clock time: {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


class NightWindow:
    """
    Daily UTC night window.

    An end before the start wraps past midnight (e.g. 18:00-06:00).
    Equal start and end describe an empty window.
    """

    def __init__(self, start: time, end: time):
        self.start = start
        self.end = end

    @classmethod
    def from_strings(cls, start: str, end: str) -> "NightWindow":
        return cls(parse_clock(start), parse_clock(end))

    @property
    def wraps_midnight(self) -> bool:
        return self.end < self.start

    def interval_on(self, day: date) -> Tuple[datetime, datetime]:
        """Window starting on ``day`` as UTC instants."""
        start = datetime.combine(day, self.start, tzinfo=timezone.utc)
        end = datetime.combine(day, self.end, tzinfo=timezone.utc)
        if self.wraps_midnight:
            end += timedelta(days=1)
        return start, end

    def __repr__(self) -> str:
        return f"NightWindow({self.start:%H:%M}-{self.end:%H:%M} UTC)"


NIGHT_WINDOW = NightWindow.from_strings(NIGHT_WINDOW_START_UTC, NIGHT_WINDOW_END_UTC)


# =========================================================
# Duration Parsing & Formatting
# =========================================================

def blh_str_to_hours(blh: str) -> float:
    """
    Convert block hours text to decimal hours.

    Both ":" and "." separate hours from minutes, so "2:05" and "2.05" are
    2 h 05 min (2.0833 h), never 2.05 h. Blank means no block time.

    Args:
        blh: Block hours cell (e.g. "2:35", "2.35", "12")

    Returns:
        Decimal hours

    Raises:
        UnparseableFieldError: text is not a duration
    """
    if is_blank(blh):
        return 0.0

    match = BLH_PATTERN.match(str(blh).strip())
    if not match:
        raise UnparseableFieldError("BlockHours", blh)

    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    if minutes > 59:
        raise UnparseableFieldError("BlockHours", blh, f"Block hours minutes out of range: {blh!r}")

    return hours + minutes / 60.0


def minutes_to_time_str(minutes: int) -> str:
    """Whole minutes -> zero-padded HH:MM."""
    hours, mins = divmod(max(int(minutes), 0), 60)
    return f"{hours:02d}:{mins:02d}"


def hours_to_time_str(hours: float) -> str:
    """Decimal hours -> HH:MM, truncated to the whole minute."""
    if not hours or hours < 0:
        return ZERO_TIME
    return minutes_to_time_str(math.floor(hours * 60 + MINUTE_EPSILON))


def calculate_et(blh: str) -> str:
    """Elapsed time of a flight leg from its block hours."""
    return hours_to_time_str(blh_str_to_hours(blh))


# =========================================================
# UTC Instants
# =========================================================

def parse_utc_time(value: str, field: str = "UTC time") -> Tuple[int, int, int]:
    """
    Split a roster UTC time into (hour, minute, day_offset).

    Accepts "23:50", "2350", "23.50" with an optional day marker such as
    "00:20+1", "00:20 +1" or "00:20(+1)".

    Raises:
        UnparseableFieldError: not a time of day
    """
    if is_blank(value):
        raise UnparseableFieldError(field, value, f"{field} is empty")

    match = UTC_TIME_PATTERN.match(str(value).strip())
    if not match:
        raise UnparseableFieldError(field, value)

    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise UnparseableFieldError(field, value, f"{field} out of range: {value!r}")

    day_offset = int(match.group(3) or 0)
    return hour, minute, day_offset


def parse_utc_datetime(value: str, flight_date: date, field: str = "UTC time") -> datetime:
    """
    Combine a roster UTC time with the flight date.

    A day marker advances the date before the time of day is applied.
    """
    hour, minute, day_offset = parse_utc_time(value, field)
    day = flight_date + timedelta(days=day_offset)
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


# =========================================================
# Night Time
# =========================================================

def night_minutes(start: datetime, end: datetime, window: NightWindow = None) -> int:
    """
    Minutes of [start, end) inside the night window, summed over every
    daily window the interval touches and floored to the minute.
    """
    window = window or NIGHT_WINDOW
    if end <= start:
        return 0

    total_seconds = 0.0
    # Windows that wrap midnight may start the day before the leg
    day = start.date() - timedelta(days=1)
    while day <= end.date():
        window_start, window_end = window.interval_on(day)
        overlap_start = max(start, window_start)
        overlap_end = min(end, window_end)
        if overlap_end > overlap_start:
            total_seconds += (overlap_end - overlap_start).total_seconds()
        day += timedelta(days=1)

    return int(total_seconds // 60)


def calculate_nt(std: datetime, sta: datetime, window: NightWindow = None) -> str:
    """Night time of a leg between two UTC instants, as HH:MM."""
    return minutes_to_time_str(night_minutes(std, sta, window))


# =========================================================
# Enrichment
# =========================================================

def enrich_record(
    record: CanonicalRecord,
    scrape_date: date,
    owner_id: str,
    admin_id: str,
    source_user_name: str = "",
    window: NightWindow = None
) -> EnrichedRecord:
    """
    Derive ET/NT for one record and stamp ownership.

    Args:
        record: Canonical roster record
        scrape_date: Anchor for the record's Date cell
        owner_id: Owner of the run
        admin_id: Admin identity stamped on the record
        source_user_name: Portal user the roster was scraped as
        window: Night window (defaults to NIGHT_WINDOW)

    Returns:
        EnrichedRecord, flagged for review if a cell could not be parsed
    """
    enriched = EnrichedRecord(
        record,
        owner_id=owner_id,
        admin_id=admin_id,
        source_user_name=source_user_name,
    )

    if record.is_ground_activity:
        return enriched

    try:
        elapsed = calculate_et(record.block_hours)
        flight_date = resolve_roster_date(record.date, scrape_date)
        std = parse_utc_datetime(record.std_utc, flight_date, "STDUTC")
        sta = parse_utc_datetime(record.sta_utc, flight_date, "STAUTC")
        if sta < std:
            raise UnparseableFieldError(
                "STAUTC", record.sta_utc,
                f"STA {record.sta_utc!r} precedes STD {record.std_utc!r}"
            )
        night = calculate_nt(std, sta, window)
    except UnparseableFieldError as e:
        enriched.needs_review = True
        enriched.review_reason = str(e)
        logger.warning(
            f"Flagged for review: {record.flight_number or record.activity} "
            f"on {record.date}: {e}"
        )
        return enriched

    enriched.elapsed_time = elapsed
    enriched.night_time = night
    return enriched


def enrich_records(
    records: Iterable[CanonicalRecord],
    scrape_date: date,
    owner_id: str,
    admin_id: str,
    source_user_name: str = "",
    window: NightWindow = None
) -> List[EnrichedRecord]:
    """Enrich a batch in order."""
    if window is None and NIGHT_WINDOW_IS_DEFAULT:
        logger.warning(
            f"Night time uses the provisional default window {NIGHT_WINDOW}; "
            f"set NIGHT_WINDOW_START_UTC/NIGHT_WINDOW_END_UTC to confirm it"
        )

    return [
        enrich_record(r, scrape_date, owner_id, admin_id, source_user_name, window)
        for r in records
    ]

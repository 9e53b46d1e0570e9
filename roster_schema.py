"""
Roster Schema Module

Canonical roster record, header-to-field mapping and in-batch deduplication
for crew roster tables scraped from the crew portal.

The portal table carries more columns than the roster keeps; each canonical
field is located by its site label, except for the aircraft registration and
crew columns whose header text is unreliable and which are always read from
fixed positions.
"""

import logging
from dataclasses import dataclass
from typing import List, Dict, Any, Optional, Sequence, Iterable, NamedTuple

logger = logging.getLogger(__name__)


# =========================================================
# Field Table
# =========================================================

# (attribute, canonical name, site header label) in canonical order
ROSTER_FIELDS = [
    ("date", "Date", "Date"),
    ("dc", "DC", "DC"),
    ("check_in", "CheckIn", "C/I(L)"),
    ("check_out", "CheckOut", "C/O(L)"),
    ("activity", "Activity", "Activity"),
    ("flight_number", "FlightNumber", "F"),
    ("departure", "From", "From"),
    ("std_local", "STDLocal", "STD(L)"),
    ("std_utc", "STDUTC", "STD(Z)"),
    ("arrival", "To", "To"),
    ("sta_local", "STALocal", "STA(L)"),
    ("sta_utc", "STAUTC", "STA(Z)"),
    ("block_hours", "BlockHours", "BLH"),
    ("aircraft_reg", "AircraftReg", "AcReg"),
    ("crew", "Crew", "Crew"),
]

CANONICAL_FIELDS = [name for _, name, _ in ROSTER_FIELDS]

# Columns read by position regardless of header text
POSITIONAL_OVERRIDES = {
    "AircraftReg": 18,
    "Crew": 22,
}

MIN_HEADER_COLUMNS = max(POSITIONAL_OVERRIDES.values()) + 1

DEDUP_DELIMITER = "||"

COMPOSITE_KEY_FIELDS = ["Date", "DC", "FlightNumber", "From", "To", "AircraftReg", "Crew"]


class MalformedSourceError(ValueError):
    """Raised when the scraped table has no usable header row."""


class UnparseableFieldError(ValueError):
    """Raised when a duration, time or date cell cannot be interpreted."""

    def __init__(self, field: str, value: Any, message: str = None):
        self.field = field
        self.value = value
        super().__init__(message or f"Cannot parse {field} value {value!r}")


def is_blank(value: Any) -> bool:
    """True for None, empty strings and whitespace-only strings."""
    if value is None:
        return True
    return str(value).strip() == ""


# =========================================================
# Record Types
# =========================================================

class CompositeKey(NamedTuple):
    """Natural key of a roster entry, independent of owner."""
    date: str
    dc: str
    flight_number: str
    departure: str
    arrival: str
    aircraft_reg: str
    crew: str

    def as_filters(self) -> Dict[str, str]:
        """Canonical field name -> value, in key order."""
        return dict(zip(COMPOSITE_KEY_FIELDS, self))

    def __str__(self) -> str:
        return "|".join(self)


@dataclass(frozen=True)
class CanonicalRecord:
    date: str = ""
    dc: str = ""
    check_in: str = ""
    check_out: str = ""
    activity: str = ""
    flight_number: str = ""
    departure: str = ""
    std_local: str = ""
    std_utc: str = ""
    arrival: str = ""
    sta_local: str = ""
    sta_utc: str = ""
    block_hours: str = ""
    aircraft_reg: str = ""
    crew: str = ""

    @classmethod
    def from_values(cls, values: Sequence[Any]) -> "CanonicalRecord":
        """Build a record from values in canonical field order."""
        kwargs = {}
        for i, (attr, _, _) in enumerate(ROSTER_FIELDS):
            value = values[i] if i < len(values) else None
            kwargs[attr] = "" if value is None else str(value)
        return cls(**kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanonicalRecord":
        """Build a record from a canonical-name mapping; absent fields are empty."""
        return cls.from_values([data.get(name) for name in CANONICAL_FIELDS])

    def values(self) -> List[str]:
        return [getattr(self, attr) for attr, _, _ in ROSTER_FIELDS]

    def to_dict(self) -> Dict[str, str]:
        return dict(zip(CANONICAL_FIELDS, self.values()))

    def composite_key(self) -> CompositeKey:
        return CompositeKey(
            date=self.date,
            dc=self.dc,
            flight_number=self.flight_number,
            departure=self.departure,
            arrival=self.arrival,
            aircraft_reg=self.aircraft_reg,
            crew=self.crew,
        )

    def dedup_key(self) -> str:
        return DEDUP_DELIMITER.join(self.values())

    @property
    def is_ground_activity(self) -> bool:
        """Departure and arrival station identical (including both empty)."""
        return self.departure.strip() == self.arrival.strip()


ZERO_TIME = "00:00"

DERIVED_FIELDS = ["ElapsedTime", "NightTime"]
OWNERSHIP_FIELDS = ["ownerId", "adminId", "sourceUserName"]
DOCUMENT_FIELDS = CANONICAL_FIELDS + DERIVED_FIELDS + OWNERSHIP_FIELDS


class EnrichedRecord:
    """
    Canonical record plus derived flight times and ownership metadata.

    ``needs_review`` is set when a duration or time cell could not be parsed;
    ET/NT then stay at 00:00.
    """

    def __init__(
        self,
        record: CanonicalRecord,
        owner_id: str,
        admin_id: str,
        source_user_name: str = "",
        elapsed_time: str = ZERO_TIME,
        night_time: str = ZERO_TIME,
        needs_review: bool = False,
        review_reason: str = None
    ):
        self.record = record
        self.owner_id = owner_id
        self.admin_id = admin_id
        self.source_user_name = source_user_name or ""
        self.elapsed_time = elapsed_time
        self.night_time = night_time
        self.needs_review = needs_review
        self.review_reason = review_reason

    @property
    def activity(self) -> str:
        return self.record.activity

    @property
    def date(self) -> str:
        return self.record.date

    def composite_key(self) -> CompositeKey:
        return self.record.composite_key()

    def to_document(self) -> Dict[str, str]:
        """Store document: canonical fields, ET/NT, ownership."""
        document = self.record.to_dict()
        document.update({
            "ElapsedTime": self.elapsed_time,
            "NightTime": self.night_time,
            "ownerId": self.owner_id,
            "adminId": self.admin_id,
            "sourceUserName": self.source_user_name,
        })
        return document

    def __repr__(self) -> str:
        return (
            f"EnrichedRecord({self.composite_key()}, owner={self.owner_id}, "
            f"ET={self.elapsed_time}, NT={self.night_time})"
        )


# =========================================================
# Schema Mapper
# =========================================================

def build_header_map(header_row: Optional[Sequence[Any]]) -> Dict[str, int]:
    """
    Map canonical field names to source column indexes.

    Each field's site label is matched against the header cells by substring
    containment (case-sensitive, first match wins). AircraftReg and Crew always
    use their fixed positions.

    Args:
        header_row: Raw header cells as scraped

    Returns:
        Dict of canonical name -> column index (unmatched fields are absent)

    Raises:
        MalformedSourceError: header missing, blank or too short
    """
    if not header_row or all(is_blank(cell) for cell in header_row):
        raise MalformedSourceError("Roster header row is missing")

    if len(header_row) < MIN_HEADER_COLUMNS:
        raise MalformedSourceError(
            f"Roster header has {len(header_row)} columns, expected at least {MIN_HEADER_COLUMNS}"
        )

    site_headers = ["" if cell is None else str(cell) for cell in header_row]
    header_map = {}

    for _, name, label in ROSTER_FIELDS:
        if name in POSITIONAL_OVERRIDES:
            header_map[name] = POSITIONAL_OVERRIDES[name]
            continue
        for idx, column in enumerate(site_headers):
            if label in column:
                header_map[name] = idx
                break

    unmatched = [name for name in CANONICAL_FIELDS if name not in header_map]
    if unmatched:
        logger.warning(f"Roster header has no column for: {', '.join(unmatched)}")

    return header_map


def map_row(row: Sequence[Any], header_map: Dict[str, int]) -> CanonicalRecord:
    """Read one raw row through the header map."""
    values = []
    for name in CANONICAL_FIELDS:
        idx = header_map.get(name)
        cell = row[idx] if idx is not None and idx < len(row) else None
        values.append("" if cell is None else cell)
    return CanonicalRecord.from_values(values)


def map_rows(
    header_row: Optional[Sequence[Any]],
    data_rows: Iterable[Sequence[Any]]
) -> List[CanonicalRecord]:
    """
    Map a scraped table onto canonical records.

    Args:
        header_row: Site-provided column labels
        data_rows: Raw data rows

    Returns:
        One CanonicalRecord per data row, in scrape order
    """
    header_map = build_header_map(header_row)
    records = [map_row(row or [], header_map) for row in data_rows]

    if not records:
        logger.warning("Roster table has a header but no data rows")
    else:
        logger.info(f"Mapped {len(records)} roster rows")

    return records


# =========================================================
# Deduplicator
# =========================================================

def deduplicate_records(records: Iterable[CanonicalRecord]) -> List[CanonicalRecord]:
    """
    Drop exact duplicate records, keeping the first occurrence in order.

    Two records are duplicates when all their field values, joined with
    DEDUP_DELIMITER, are identical.
    """
    seen = set()
    unique = []
    total = 0

    for record in records:
        total += 1
        key = record.dedup_key()
        if key in seen:
            continue
        seen.add(key)
        unique.append(record)

    if total != len(unique):
        logger.info(f"Deduped {total} roster rows to {len(unique)} unique records")

    return unique

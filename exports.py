"""
Export Module

Flat-file outputs of a roster run:
- roster.json / roster.csv: deduplicated canonical table with header row
- roster_report.csv: report view (Date normalized to YYYY.MM.DD)
- rb_logbook_*.csv: flights, people and aircraft for the RB logbook import
"""

import os
import io
import csv
import json
import logging
from datetime import date
from typing import List, Dict, Any, Iterable, Union

from dotenv import load_dotenv

from roster_schema import CanonicalRecord, EnrichedRecord, CANONICAL_FIELDS, is_blank
from date_tokens import convert_date_token

load_dotenv()

logger = logging.getLogger(__name__)

RB_OPERATOR_NAME = os.getenv("RB_OPERATOR_NAME", "Korean Air")

# Report view keeps the first 15 canonical fields
REPORT_FIELD_COUNT = 15

RosterRow = Union[CanonicalRecord, EnrichedRecord]


def _canonical(row: RosterRow) -> CanonicalRecord:
    return row.record if isinstance(row, EnrichedRecord) else row


# =====================================================
# CSV Export
# =====================================================

def export_to_csv(data: List[Dict[str, Any]], filename: str = None) -> bytes:
    """
    Export data to CSV format.

    Args:
        data: List of dictionaries to export
        filename: Optional filename (not used, just for reference)

    Returns:
        CSV content as bytes
    """
    if not data:
        return b""

    output = io.StringIO()

    headers = list(data[0].keys())

    writer = csv.DictWriter(output, fieldnames=headers)
    writer.writeheader()
    writer.writerows(data)

    return output.getvalue().encode('utf-8-sig')


def export_rows_to_csv(rows: List[List[str]]) -> bytes:
    """Export a table with every cell quoted and embedded quotes doubled."""
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for row in rows:
        writer.writerow(["" if cell is None else cell for cell in row])
    return output.getvalue().encode('utf-8')


# =====================================================
# Roster Table
# =====================================================

def build_roster_values(records: Iterable[RosterRow]) -> List[List[str]]:
    """Header row followed by one row per record, canonical field order."""
    values = [list(CANONICAL_FIELDS)]
    values.extend(_canonical(r).values() for r in records)
    return values


def export_roster_json(records: Iterable[RosterRow]) -> bytes:
    """roster.json payload: {"values": [header, *rows]}."""
    payload = {"values": build_roster_values(records)}
    return json.dumps(payload, indent=2, ensure_ascii=False).encode('utf-8')


def export_roster_csv(records: Iterable[RosterRow]) -> bytes:
    return export_rows_to_csv(build_roster_values(records))


# =====================================================
# Report View
# =====================================================

def build_report_view(records: Iterable[RosterRow], now: date = None) -> List[List[str]]:
    """
    Spreadsheet view of the roster.

    Header row plus the first REPORT_FIELD_COUNT canonical fields of each
    record, with the Date cell passed through the date token normalizer.

    Args:
        records: Canonical or enriched records
        now: Processing date anchoring year/month (defaults to today)
    """
    header = CANONICAL_FIELDS[:REPORT_FIELD_COUNT]
    view = [list(header)]
    for r in records:
        row = _canonical(r).values()[:REPORT_FIELD_COUNT]
        row[0] = convert_date_token(row[0], now=now)
        view.append(row)
    return view


def export_report_view(records: Iterable[RosterRow], now: date = None) -> bytes:
    return export_rows_to_csv(build_report_view(records, now=now))


# =====================================================
# RB Logbook
# =====================================================

def build_rb_flights(records: Iterable[RosterRow]) -> List[Dict[str, Any]]:
    """
    Logbook flight rows for records with both stations set.

    NightTime carries the computed NT for enriched records.
    """
    flights = []

    for r in records:
        rec = _canonical(r)
        if is_blank(rec.departure) or is_blank(rec.arrival):
            continue
        flights.append({
            "FlightDate": rec.date,
            "STD_UTC": rec.std_utc,
            "STA_UTC": rec.sta_utc,
            "From": rec.departure,
            "To": rec.arrival,
            "AircraftRegistration": rec.aircraft_reg,
            "FlightNumber": rec.flight_number,
            "BlockTime": rec.block_hours,
            "NightTime": r.night_time if isinstance(r, EnrichedRecord) else "",
            "Remarks": f"{rec.activity} | DC:{rec.dc}",
        })

    return flights


def build_rb_people(records: Iterable[RosterRow]) -> List[Dict[str, Any]]:
    """
    Unique crew members from the comma-separated Crew cells.

    The first word is the last name; the rest is the first name (or the
    single word again when there is nothing else).
    """
    names = []
    seen = set()

    for r in records:
        crew = _canonical(r).crew
        if is_blank(crew):
            continue
        for name in crew.split(","):
            clean = name.strip()
            if clean and clean not in seen:
                seen.add(clean)
                names.append(clean)

    people = []
    for name in names:
        parts = name.split(" ")
        people.append({
            "FirstName": " ".join(parts[1:]) or parts[0],
            "LastName": parts[0],
            "Role": "Crew",
        })
    return people


def build_rb_aircraft(records: Iterable[RosterRow], operator: str = None) -> List[Dict[str, Any]]:
    """Unique aircraft registrations in first-seen order."""
    registrations = []
    for r in records:
        reg = _canonical(r).aircraft_reg
        if not is_blank(reg) and reg not in registrations:
            registrations.append(reg)

    return [
        {"Registration": reg, "Type": "", "Operator": operator or RB_OPERATOR_NAME}
        for reg in registrations
    ]


def export_rb_logbook(records: Iterable[RosterRow]) -> Dict[str, bytes]:
    """RB logbook import files, filename -> CSV content."""
    records = list(records)
    return {
        "rb_logbook_flights.csv": export_to_csv(build_rb_flights(records)),
        "rb_logbook_people.csv": export_to_csv(build_rb_people(records)),
        "rb_logbook_aircrafts.csv": export_to_csv(build_rb_aircraft(records)),
    }


# =====================================================
# File Output
# =====================================================

def write_roster_outputs(
    output_dir: str,
    records: List[RosterRow],
    now: date = None,
    include_rb: bool = True
) -> List[str]:
    """
    Write all roster outputs into ``output_dir``.

    Returns:
        Paths written
    """
    os.makedirs(output_dir, exist_ok=True)

    files = {
        "roster.json": export_roster_json(records),
        "roster.csv": export_roster_csv(records),
        "roster_report.csv": export_report_view(records, now=now),
    }
    if include_rb:
        rb_dir = "rb_export"
        for filename, content in export_rb_logbook(records).items():
            files[os.path.join(rb_dir, filename)] = content
        os.makedirs(os.path.join(output_dir, rb_dir), exist_ok=True)

    written = []
    for relative, content in files.items():
        path = os.path.join(output_dir, relative)
        with open(path, "wb") as f:
            f.write(content)
        written.append(path)
        logger.info(f"Wrote {path} ({len(content)} bytes)")

    return written

"""
Shared fixtures: a portal-shaped roster header and row builders.
"""

import pytest

from roster_schema import CanonicalRecord, EnrichedRecord


# Portal column layout: canonical labels first, filler columns, then the
# registration at 18 and the crew list at 22 under unreliable headers
PORTAL_HEADER = [
    "Date", "DC", "C/I(L)", "C/O(L)", "Activity", "F", "From", "STD(L)", "STD(Z)",
    "To", "STA(L)", "STA(Z)", "BLH", "Duty", "Hotel", "Rank", "Pairing", "Base",
    "Equipment", "Type", "Seat", "Remarks", "Members",
]


def build_portal_row(
    date="Jan 05",
    dc="",
    check_in="21:30",
    check_out="02:10",
    activity="KE705",
    flight="705",
    departure="ICN",
    std_local="08:50",
    std_utc="23:50",
    arrival="NRT",
    sta_local="09:20",
    sta_utc="00:20+1",
    blh="0:30",
    aircraft_reg="HL7782",
    crew="KIM MINSU, LEE JI HO"
):
    row = [""] * len(PORTAL_HEADER)
    row[0:13] = [
        date, dc, check_in, check_out, activity, flight, departure,
        std_local, std_utc, arrival, sta_local, sta_utc, blh,
    ]
    row[15] = "FO"
    row[18] = aircraft_reg
    row[19] = "B738"
    row[22] = crew
    return row


def build_record(**overrides) -> CanonicalRecord:
    values = {
        "Date": "Jan 05",
        "DC": "",
        "CheckIn": "21:30",
        "CheckOut": "02:10",
        "Activity": "KE705",
        "FlightNumber": "705",
        "From": "ICN",
        "STDLocal": "08:50",
        "STDUTC": "23:50",
        "To": "NRT",
        "STALocal": "09:20",
        "STAUTC": "00:20+1",
        "BlockHours": "0:30",
        "AircraftReg": "HL7782",
        "Crew": "KIM MINSU, LEE JI HO",
    }
    values.update(overrides)
    return CanonicalRecord.from_dict(values)


def build_enriched(owner_id="user-1", **overrides) -> EnrichedRecord:
    return EnrichedRecord(
        build_record(**overrides),
        owner_id=owner_id,
        admin_id="admin-1",
        source_user_name="pdc.kim",
        elapsed_time="00:30",
        night_time="00:20",
    )


@pytest.fixture
def portal_header():
    return list(PORTAL_HEADER)


@pytest.fixture
def make_row():
    return build_portal_row


@pytest.fixture
def make_record():
    return build_record


@pytest.fixture
def make_enriched():
    return build_enriched

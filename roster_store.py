"""
Roster Store Module

Persistence capability used by the reconciliation engine.

- SupabaseRosterStore: roster documents in a Supabase table
- MemoryRosterStore: in-process store with the same semantics (tests, dry runs)

Every call is made through call_with_timeout so a hung or failing store
surfaces as StoreUnavailableError for the record being processed. A call
that times out is still waited for before control returns, so at most one
store call is ever in flight; the Supabase client carries its own request
timeout so that wait is bounded.
"""

import os
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError, wait
from datetime import datetime
from typing import List, Dict, Any, Optional, Callable

from dotenv import load_dotenv

from roster_schema import CompositeKey, DOCUMENT_FIELDS

load_dotenv()

logger = logging.getLogger(__name__)

# Configuration
ROSTER_TABLE = os.getenv("ROSTER_TABLE", "roster")
STORE_CALL_TIMEOUT = float(os.getenv("STORE_CALL_TIMEOUT", 30))

# Document field -> table column
DB_COLUMNS = {
    "Date": "roster_date",
    "DC": "dc",
    "CheckIn": "check_in",
    "CheckOut": "check_out",
    "Activity": "activity",
    "FlightNumber": "flight_number",
    "From": "departure",
    "STDLocal": "std_local",
    "STDUTC": "std_utc",
    "To": "arrival",
    "STALocal": "sta_local",
    "STAUTC": "sta_utc",
    "BlockHours": "block_hours",
    "AircraftReg": "aircraft_reg",
    "Crew": "crew",
    "ElapsedTime": "elapsed_time",
    "NightTime": "night_time",
    "ownerId": "owner_id",
    "adminId": "admin_id",
    "sourceUserName": "source_user_name",
}


class StoreUnavailableError(RuntimeError):
    """A store read or write failed or timed out."""


def call_with_timeout(
    func: Callable,
    *args,
    timeout: float = None,
    **kwargs
) -> Any:
    """
    Run one store call on a worker thread and wait at most ``timeout`` seconds
    for its result.

    A call that overruns is reported as failed, but it is drained before
    this returns: a late write must land before the next lookup runs, never
    alongside it.

    Raises:
        StoreUnavailableError: the call raised or did not finish in time
    """
    timeout = STORE_CALL_TIMEOUT if timeout is None else timeout
    name = getattr(func, "__name__", "store call")

    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as e:
        wait([future])
        outcome = "failed" if future.exception() is not None else "completed"
        logger.warning(f"{name} timed out after {timeout}s and later {outcome}")
        raise StoreUnavailableError(f"{name} timed out after {timeout}s") from e
    except StoreUnavailableError:
        raise
    except Exception as e:
        raise StoreUnavailableError(f"{name} failed: {e}") from e
    finally:
        executor.shutdown(wait=True)


def create_supabase_client():
    """
    Supabase client from SUPABASE_URL / SUPABASE_KEY, or None if unset.

    PostgREST requests time out after STORE_CALL_TIMEOUT seconds.
    """
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_KEY")
    if not url or not key:
        logger.warning("Supabase credentials not found")
        return None

    from supabase import create_client, ClientOptions
    options = ClientOptions(postgrest_client_timeout=STORE_CALL_TIMEOUT)
    return create_client(url, key, options=options)


# =========================================================
# Data Transformation
# =========================================================

def transform_document_to_db(document: Dict[str, Any]) -> Dict[str, Any]:
    """
    Transform a roster document to table columns.

    Only the fields present in ``document`` are emitted, so an update
    leaves the other columns untouched.
    """
    record = {
        DB_COLUMNS[field]: value
        for field, value in document.items()
        if field in DB_COLUMNS
    }
    record["updated_at"] = datetime.now().isoformat()
    return record


def transform_db_to_document(row: Dict[str, Any]) -> Dict[str, Any]:
    """Transform a table row back to a roster document."""
    return {
        field: row.get(column, "") or ""
        for field, column in DB_COLUMNS.items()
    }


class PersistedRecord:
    """A stored roster document and its store-assigned id."""

    def __init__(self, record_id: str, document: Dict[str, Any]):
        self.id = record_id
        self.document = document

    @property
    def owner_id(self) -> Optional[str]:
        return self.document.get("ownerId")

    def __repr__(self) -> str:
        return f"PersistedRecord(id={self.id!r}, owner={self.owner_id!r})"


# =========================================================
# Store Interface
# =========================================================

class RosterStore(ABC):
    """Capability the reconciliation engine writes through."""

    @abstractmethod
    def lookup(self, key: CompositeKey) -> List[PersistedRecord]:
        """All records matching the composite key, any owner."""

    @abstractmethod
    def lookup_day(self, roster_date: str, owner_id: str) -> List[PersistedRecord]:
        """All records of one owner on one roster date."""

    @abstractmethod
    def insert(self, document: Dict[str, Any]) -> str:
        """Create a record and return its id."""

    @abstractmethod
    def update(self, record_id: str, document: Dict[str, Any]) -> None:
        """Merge ``document`` into an existing record."""

    @abstractmethod
    def delete(self, record_id: str) -> None:
        """Remove a record."""


# =====================================================
# Supabase Store
# =====================================================

class SupabaseRosterStore(RosterStore):
    """
    Roster documents in a Supabase table.

    The client is created lazily from SUPABASE_URL / SUPABASE_KEY unless
    one is injected.
    """

    def __init__(self, supabase_client=None, table: str = None):
        self._supabase = supabase_client
        self.table_name = table or ROSTER_TABLE

    @property
    def supabase(self):
        """Lazy load Supabase client."""
        if self._supabase is None:
            self._supabase = create_supabase_client()
        return self._supabase

    def _table(self):
        if self.supabase is None:
            raise StoreUnavailableError("Supabase client not configured")
        return self.supabase.table(self.table_name)

    @staticmethod
    def _to_records(result) -> List[PersistedRecord]:
        return [
            PersistedRecord(row.get("id"), transform_db_to_document(row))
            for row in (result.data or [])
        ]

    def lookup(self, key: CompositeKey) -> List[PersistedRecord]:
        query = self._table().select("*")
        for field, value in key.as_filters().items():
            query = query.eq(DB_COLUMNS[field], value)
        return self._to_records(query.execute())

    def lookup_day(self, roster_date: str, owner_id: str) -> List[PersistedRecord]:
        result = self._table() \
            .select("*") \
            .eq(DB_COLUMNS["Date"], roster_date) \
            .eq(DB_COLUMNS["ownerId"], owner_id) \
            .execute()
        return self._to_records(result)

    def insert(self, document: Dict[str, Any]) -> str:
        result = self._table().insert(transform_document_to_db(document)).execute()
        if not result.data:
            raise StoreUnavailableError(f"Insert into {self.table_name} returned no row")
        return result.data[0].get("id")

    def update(self, record_id: str, document: Dict[str, Any]) -> None:
        self._table() \
            .update(transform_document_to_db(document)) \
            .eq("id", record_id) \
            .execute()

    def delete(self, record_id: str) -> None:
        self._table().delete().eq("id", record_id).execute()


# =====================================================
# In-Memory Store
# =====================================================

class MemoryRosterStore(RosterStore):
    """
    In-process roster store.
    Used for dry runs and tests; nothing survives the process.
    """

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._next_id = 1

    def _matching(self, filters: Dict[str, str]) -> List[PersistedRecord]:
        return [
            PersistedRecord(record_id, dict(document))
            for record_id, document in self._documents.items()
            if all(document.get(field) == value for field, value in filters.items())
        ]

    def lookup(self, key: CompositeKey) -> List[PersistedRecord]:
        return self._matching(key.as_filters())

    def lookup_day(self, roster_date: str, owner_id: str) -> List[PersistedRecord]:
        return self._matching({"Date": roster_date, "ownerId": owner_id})

    def insert(self, document: Dict[str, Any]) -> str:
        record_id = f"mem_{self._next_id}"
        self._next_id += 1
        self._documents[record_id] = {
            field: value for field, value in document.items() if field in DOCUMENT_FIELDS
        }
        return record_id

    def update(self, record_id: str, document: Dict[str, Any]) -> None:
        if record_id not in self._documents:
            raise KeyError(f"No roster record {record_id}")
        self._documents[record_id].update(
            {field: value for field, value in document.items() if field in DOCUMENT_FIELDS}
        )

    def delete(self, record_id: str) -> None:
        self._documents.pop(record_id, None)

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        document = self._documents.get(record_id)
        return dict(document) if document is not None else None

    def all(self) -> List[PersistedRecord]:
        return self._matching({})

    def __len__(self) -> int:
        return len(self._documents)

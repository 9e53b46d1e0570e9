"""
Roster ETL Manager
Runs one scraped roster table through the pipeline:

    raw rows -> schema mapping -> deduplication -> ET/NT enrichment
             -> reconciliation against the roster store

and produces the report view for spreadsheet consumers. Each run is tracked
as a sync job in Supabase when a client is available.

Overlapping runs for the same owner are not coordinated here; the scheduler
that invokes the sync must not start a run while another is in progress.
"""

import os
import logging
from datetime import date, datetime
from typing import List, Dict, Any, Optional, Sequence

from dotenv import load_dotenv

from roster_schema import CanonicalRecord, EnrichedRecord, MalformedSourceError, map_rows, deduplicate_records
from flight_time_utils import NightWindow, enrich_records
from roster_store import RosterStore, SupabaseRosterStore, MemoryRosterStore
from roster_reconciler import RosterReconciler, ReconcileResult
from exports import build_report_view

dotenv_path = os.getenv("DOTENV_CONFIG_PATH", ".env")
load_dotenv(dotenv_path)

logger = logging.getLogger(__name__)

ROSTER_JOBS_TABLE = os.getenv("ROSTER_JOBS_TABLE", "roster_sync_jobs")


class RosterSyncResult:
    """Everything one run produced."""

    def __init__(self, job_id: str, scrape_date: date):
        self.job_id = job_id
        self.scrape_date = scrape_date
        self.records: List[CanonicalRecord] = []
        self.enriched: List[EnrichedRecord] = []
        self.report_view: List[List[str]] = []
        self.reconcile: Optional[ReconcileResult] = None

    @property
    def summary(self) -> Dict[str, int]:
        return self.reconcile.summary.to_dict() if self.reconcile else {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "scrape_date": self.scrape_date.isoformat(),
            "records": len(self.records),
            "summary": self.summary,
            "failures": [f.to_dict() for f in self.reconcile.failures] if self.reconcile else [],
            "flagged": [
                {"key": r.composite_key().as_filters(), "reason": r.review_reason}
                for r in self.enriched if r.needs_review
            ],
        }


class RosterETLManager:
    """
    ETL Manager for crew roster synchronization.

    Responsibilities:
    - Map and deduplicate the scraped roster table
    - Derive elapsed and night time per leg
    - Reconcile records with the roster store for one owner
    - Track sync job status
    """

    def __init__(
        self,
        store: RosterStore = None,
        supabase_client=None,
        owner_id: str = None,
        admin_id: str = None,
        source_user_name: str = None,
        night_window: NightWindow = None,
        store_timeout: float = None
    ):
        """
        Initialize ETL Manager.

        Args:
            store: Roster store (SupabaseRosterStore over ``supabase_client`` if not provided)
            supabase_client: Supabase client for the store and job tracking
                (defaults to the Supabase store's own client)
            owner_id: Owner stamped on every record (ROSTER_OWNER_ID)
            admin_id: Admin stamped on every record (ROSTER_ADMIN_ID)
            source_user_name: Portal user name (ROSTER_SOURCE_USER)
            night_window: Night window override
            store_timeout: Per-call store timeout in seconds

        Raises:
            ValueError: owner or admin identity missing
        """
        self.owner_id = owner_id or os.getenv("ROSTER_OWNER_ID")
        self.admin_id = admin_id or os.getenv("ROSTER_ADMIN_ID")
        self.source_user_name = source_user_name or os.getenv("ROSTER_SOURCE_USER", "")

        if not self.owner_id or not self.admin_id:
            raise ValueError("Roster owner id or admin id is not configured")

        self.store = store if store is not None else SupabaseRosterStore(supabase_client)

        # Job tracking shares the store's client
        if supabase_client is None and isinstance(self.store, SupabaseRosterStore):
            supabase_client = self.store.supabase
        self.supabase = supabase_client
        self.night_window = night_window
        self.reconciler = RosterReconciler(self.store, timeout=store_timeout)
        self.current_job_id = None

        logger.info(f"Roster ETL Manager initialized (owner: {self.owner_id}, store: {type(self.store).__name__})")

    # =========================================================
    # Job Tracking
    # =========================================================

    def _start_job(self, job_type: str) -> str:
        """Start a new sync job and return job ID."""
        job_id = f"{job_type}_{datetime.now().strftime('%Y%m%d%H%M%S')}"
        self.current_job_id = job_id

        if self.supabase:
            try:
                self.supabase.table(ROSTER_JOBS_TABLE).insert({
                    "job_id": job_id,
                    "job_type": job_type,
                    "owner_id": self.owner_id,
                    "status": "RUNNING",
                    "started_at": datetime.now().isoformat()
                }).execute()
            except Exception as e:
                logger.warning(f"Failed to log job start: {e}")

        logger.info(f"Started sync job: {job_id}")
        return job_id

    def _complete_job(self, job_id: str, records_processed: int = 0, error: str = None):
        """Mark a sync job as completed."""
        status = "FAILED" if error else "COMPLETED"

        if self.supabase:
            try:
                self.supabase.table(ROSTER_JOBS_TABLE).update({
                    "status": status,
                    "completed_at": datetime.now().isoformat(),
                    "records_processed": records_processed,
                    "error_message": error
                }).eq("job_id", job_id).execute()
            except Exception as e:
                logger.warning(f"Failed to log job completion: {e}")

        logger.info(f"Completed sync job: {job_id} - Status: {status}, Records: {records_processed}")

    # =========================================================
    # Roster Sync
    # =========================================================

    def prepare(
        self,
        header_row: Sequence[Any],
        data_rows: Sequence[Sequence[Any]],
        scrape_date: date
    ) -> List[EnrichedRecord]:
        """Map, deduplicate and enrich without touching the store."""
        records = deduplicate_records(map_rows(header_row, data_rows))
        return enrich_records(
            records,
            scrape_date,
            owner_id=self.owner_id,
            admin_id=self.admin_id,
            source_user_name=self.source_user_name,
            window=self.night_window,
        )

    def sync_roster(
        self,
        header_row: Sequence[Any],
        data_rows: Sequence[Sequence[Any]],
        scrape_date: date = None
    ) -> RosterSyncResult:
        """
        Sync one scraped roster table.

        Args:
            header_row: Site column labels
            data_rows: Raw data rows
            scrape_date: Date of the scrape (defaults to today)

        Returns:
            RosterSyncResult with records, report view and run summary

        Raises:
            MalformedSourceError: header row missing or short; nothing is written
        """
        scrape_date = scrape_date or date.today()
        job_id = self._start_job("ROSTER")
        result = RosterSyncResult(job_id, scrape_date)

        try:
            enriched = self.prepare(header_row, data_rows, scrape_date)
            result.enriched = enriched
            result.records = [e.record for e in enriched]
            result.report_view = build_report_view(result.records, now=scrape_date)

            result.reconcile = self.reconciler.reconcile(enriched)

        except MalformedSourceError as e:
            logger.error(f"Roster source is malformed, aborting: {e}")
            self._complete_job(job_id, 0, str(e))
            raise
        except Exception as e:
            logger.error(f"Roster sync failed: {e}")
            self._complete_job(job_id, len(result.records), str(e))
            raise

        summary = result.reconcile.summary
        error = f"{summary.failed} records failed" if summary.failed else None
        self._complete_job(job_id, len(result.records), error)

        logger.info(f"Roster sync {job_id}: {summary}")
        return result


# =========================================================
# Convenience Functions
# =========================================================

def run_roster_sync(
    header_row: Sequence[Any],
    data_rows: Sequence[Sequence[Any]],
    scrape_date: date = None,
    dry_run: bool = False
) -> RosterSyncResult:
    """Run a roster sync (standalone) with identity from the environment."""
    store = MemoryRosterStore() if dry_run else None
    manager = RosterETLManager(store=store)
    return manager.sync_roster(header_row, data_rows, scrape_date)

"""
Roster Sync Service

Runs the roster pipeline over a raw table dump written by the portal
scraper (JSON: array of rows, first row is the header) and writes the flat
files. Uses APScheduler for periodic runs; a run never starts while the
previous one is still in progress.
"""

import os
import json
import logging
from datetime import date, datetime
from typing import List, Any, Tuple, Optional

from dotenv import load_dotenv
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from roster_schema import MalformedSourceError
from roster_store import MemoryRosterStore
from roster_etl_manager import RosterETLManager, RosterSyncResult
from exports import write_roster_outputs

load_dotenv()

logger = logging.getLogger(__name__)

# Configuration
ROSTER_SYNC_INTERVAL = int(os.getenv("ROSTER_SYNC_INTERVAL_MINUTES", 30))
ROSTER_DUMP_PATH = os.getenv("ROSTER_DUMP_PATH", os.path.join("public", "roster_raw.json"))
ROSTER_OUTPUT_DIR = os.getenv("ROSTER_OUTPUT_DIR", "public")


def load_roster_dump(path: str) -> Tuple[List[Any], List[List[Any]]]:
    """
    Read a scraped table dump.

    Accepts a bare array of rows or an object with a "values" or "rows"
    array. The first row is the header.

    Returns:
        (header_row, data_rows)

    Raises:
        MalformedSourceError: no rows in the dump
    """
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)

    if isinstance(payload, dict):
        payload = payload.get("values") or payload.get("rows") or []

    if not isinstance(payload, list) or not payload:
        raise MalformedSourceError(f"Roster dump {path} has no rows")

    return payload[0], payload[1:]


class RosterSyncService:
    """
    Service for syncing the scraped roster into the roster store.
    """

    def __init__(
        self,
        input_path: str = None,
        output_dir: str = None,
        dry_run: bool = False,
        scrape_date: date = None
    ):
        self.input_path = input_path or ROSTER_DUMP_PATH
        self.output_dir = output_dir or ROSTER_OUTPUT_DIR
        self.dry_run = dry_run
        self.scrape_date = scrape_date
        self.scheduler = BackgroundScheduler()
        self._manager = None
        self._is_running = False

    @property
    def manager(self) -> RosterETLManager:
        """Lazy load ETL manager."""
        if self._manager is None:
            store = MemoryRosterStore() if self.dry_run else None
            self._manager = RosterETLManager(store=store)
        return self._manager

    def run_once(self) -> RosterSyncResult:
        """Sync the current dump and write the flat files."""
        header_row, data_rows = load_roster_dump(self.input_path)
        logger.info(f"Loaded {len(data_rows)} rows from {self.input_path}")

        scrape_date = self.scrape_date or date.today()
        result = self.manager.sync_roster(header_row, data_rows, scrape_date)

        write_roster_outputs(self.output_dir, result.enriched, now=scrape_date)
        return result

    def _scheduled_sync(self):
        """Scheduler entry point; a failed run is logged and retried next interval."""
        try:
            self.run_once()
        except Exception as e:
            logger.error(f"Scheduled roster sync failed: {e}")

    # =========================================================
    # Scheduler
    # =========================================================

    def setup_jobs(self):
        """Configure scheduled jobs."""
        self.scheduler.add_job(
            func=self._scheduled_sync,
            trigger=IntervalTrigger(minutes=ROSTER_SYNC_INTERVAL),
            id='roster_sync',
            name='Sync scraped crew roster',
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now()
        )
        logger.info("Scheduled jobs configured")

    def start(self):
        """Start the scheduler."""
        if self._is_running:
            logger.warning("Scheduler already running")
            return

        self.setup_jobs()
        self.scheduler.start()
        self._is_running = True
        logger.info("Roster sync scheduler started")

    def stop(self):
        """Stop the scheduler."""
        if not self._is_running:
            return

        self.scheduler.shutdown()
        self._is_running = False
        logger.info("Roster sync scheduler stopped")


def print_summary(result: RosterSyncResult, out=None):
    """Console summary of a run."""
    summary = result.summary
    lines = [
        "=" * 60,
        f"  Roster Sync {result.job_id} ({result.scrape_date})",
        "=" * 60,
        f"  Records:  {len(result.records)}",
    ]
    for name in ("inserted", "updated", "deleted", "skipped", "flagged", "failed"):
        lines.append(f"  {name.capitalize():<9} {summary.get(name, 0)}")

    for record in result.enriched:
        if record.needs_review:
            lines.append(f"  [REVIEW] {record.composite_key()}: {record.review_reason}")
    for failure in (result.reconcile.failures if result.reconcile else []):
        lines.append(f"  [FAILED] {failure.key} (owner {failure.owner_id}): {failure.message}")

    print("\n".join(lines), file=out)


# =========================================================
# CLI Interface
# =========================================================

def main(argv: Optional[List[str]] = None) -> int:
    import argparse

    parser = argparse.ArgumentParser(description="Crew Roster Sync")
    parser.add_argument("--input", help="Scraped roster dump (JSON)", default=None)
    parser.add_argument("--output-dir", help="Directory for roster files", default=None)
    parser.add_argument("--date", help="Scrape date (YYYY-MM-DD)", default=None)
    parser.add_argument("--dry-run", action="store_true", help="Reconcile against an in-memory store")
    parser.add_argument("--daemon", action="store_true", help="Run on a schedule")

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    scrape_date = None
    if args.date:
        scrape_date = datetime.strptime(args.date, "%Y-%m-%d").date()

    service = RosterSyncService(
        input_path=args.input,
        output_dir=args.output_dir,
        dry_run=args.dry_run,
        scrape_date=scrape_date
    )

    if args.daemon:
        print("Starting roster sync daemon...")
        print(f"Sync interval: {ROSTER_SYNC_INTERVAL} minutes")
        service.start()

        try:
            import time
            while True:
                time.sleep(60)
        except KeyboardInterrupt:
            print("\nStopping...")
            service.stop()
        return 0

    try:
        result = service.run_once()
    except MalformedSourceError as e:
        logger.error(f"Roster sync aborted: {e}")
        return 2

    print_summary(result)
    return 1 if result.summary.get("failed") else 0


if __name__ == "__main__":
    raise SystemExit(main())

"""
Unit Tests - Roster Sync Service

Tests for dump loading, single runs, scheduling and the CLI.
"""

import io
import json
import pytest
from datetime import date

from roster_sync_service import RosterSyncService, load_roster_dump, print_summary, main
from roster_etl_manager import RosterETLManager
from roster_schema import MalformedSourceError
from roster_store import MemoryRosterStore


@pytest.fixture
def dump_file(tmp_path, portal_header, make_row):
    path = tmp_path / "roster_raw.json"
    path.write_text(json.dumps([portal_header, make_row(), make_row(date="Jan 06")]), encoding="utf-8")
    return path


@pytest.fixture
def identity(monkeypatch):
    monkeypatch.setenv("ROSTER_OWNER_ID", "user-1")
    monkeypatch.setenv("ROSTER_ADMIN_ID", "admin-1")


class TestLoadRosterDump:
    """Tests for load_roster_dump function."""

    def test_array(self, dump_file, portal_header):
        """Test a bare array of rows."""
        header, rows = load_roster_dump(str(dump_file))

        assert header == portal_header
        assert len(rows) == 2

    def test_values_object(self, tmp_path, portal_header, make_row):
        """Test an object with a values array."""
        path = tmp_path / "roster.json"
        path.write_text(json.dumps({"values": [portal_header, make_row()]}), encoding="utf-8")

        header, rows = load_roster_dump(str(path))

        assert header == portal_header
        assert len(rows) == 1

    def test_empty(self, tmp_path):
        """Test an empty dump is malformed."""
        path = tmp_path / "empty.json"
        path.write_text("[]", encoding="utf-8")

        with pytest.raises(MalformedSourceError):
            load_roster_dump(str(path))


class TestRosterSyncService:
    """Tests for RosterSyncService."""

    def test_run_once(self, dump_file, tmp_path):
        """Test a run syncs the dump and writes the flat files."""
        output_dir = tmp_path / "public"
        service = RosterSyncService(
            input_path=str(dump_file),
            output_dir=str(output_dir),
            scrape_date=date(2024, 1, 20),
        )
        store = MemoryRosterStore()
        service._manager = RosterETLManager(store=store, owner_id="user-1", admin_id="admin-1")

        result = service.run_once()

        assert result.summary["inserted"] == 2
        assert len(store) == 2
        payload = json.loads((output_dir / "roster.json").read_text(encoding="utf-8"))
        assert len(payload["values"]) == 3
        assert (output_dir / "roster_report.csv").exists()
        assert (output_dir / "rb_export" / "rb_logbook_people.csv").exists()

    def test_dry_run_uses_memory_store(self, identity):
        """Test dry runs never build a Supabase store."""
        service = RosterSyncService(dry_run=True)

        assert isinstance(service.manager.store, MemoryRosterStore)

    def test_scheduled_sync_logs_errors(self, tmp_path, identity):
        """Test a failing scheduled run does not raise."""
        service = RosterSyncService(input_path=str(tmp_path / "missing.json"), dry_run=True)

        service._scheduled_sync()

    def test_single_instance_job(self):
        """Test the scheduled job never overlaps itself."""
        service = RosterSyncService(dry_run=True)
        service.setup_jobs()

        job = service.scheduler.get_job("roster_sync")

        assert job is not None
        assert job.max_instances == 1
        assert job.coalesce is True


class TestMain:
    """Tests for the CLI entry point."""

    def test_dry_run(self, dump_file, tmp_path, identity, capsys):
        """Test a dry run exits 0 and prints the summary."""
        code = main([
            "--input", str(dump_file),
            "--output-dir", str(tmp_path / "out"),
            "--date", "2024-01-20",
            "--dry-run",
        ])

        assert code == 0
        assert "Inserted  2" in capsys.readouterr().out
        assert (tmp_path / "out" / "roster.csv").exists()

    def test_malformed_input(self, tmp_path, identity):
        """Test a short header exits 2."""
        path = tmp_path / "bad.json"
        path.write_text(json.dumps([["Date", "DC"], ["Jan 05", ""]]), encoding="utf-8")

        code = main(["--input", str(path), "--output-dir", str(tmp_path / "out"), "--dry-run"])

        assert code == 2


class TestPrintSummary:
    """Tests for print_summary function."""

    def test_lists_flagged_records(self, portal_header, make_row):
        """Test flagged records are listed for review."""
        manager = RosterETLManager(store=MemoryRosterStore(), owner_id="user-1", admin_id="admin-1")
        result = manager.sync_roster(portal_header, [make_row(blh="soon")], date(2024, 1, 20))
        out = io.StringIO()

        print_summary(result, out=out)

        text = out.getvalue()
        assert "[REVIEW]" in text
        assert "Flagged   1" in text

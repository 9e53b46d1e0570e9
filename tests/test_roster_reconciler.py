"""
Unit Tests - Roster Reconciler

Tests for insert/update/delete/skip decisions, owner isolation and
per-record store failures.
"""

import time
from unittest.mock import Mock

from roster_reconciler import RosterReconciler, Directive, DirectiveType
from roster_store import MemoryRosterStore, PersistedRecord


class SlowInsertStore(MemoryRosterStore):
    """Memory store whose first insert overruns the call timeout."""

    def __init__(self, delay):
        super().__init__()
        self.delay = delay
        self.inserts = 0

    def insert(self, document):
        self.inserts += 1
        if self.inserts == 1:
            time.sleep(self.delay)
        return super().insert(document)


class TestPlan:
    """Tests for RosterReconciler.plan."""

    def test_insert_when_no_match(self, make_enriched):
        """Test a new key plans an insert."""
        reconciler = RosterReconciler(MemoryRosterStore())

        directives = reconciler.plan(make_enriched())

        assert len(directives) == 1
        assert directives[0].action == DirectiveType.INSERT

    def test_update_own_match(self, make_enriched):
        """Test a matching record of the same owner plans an update."""
        store = MemoryRosterStore()
        record_id = store.insert(make_enriched().to_document())

        directives = RosterReconciler(store).plan(make_enriched())

        assert [d.action for d in directives] == [DirectiveType.UPDATE]
        assert directives[0].existing_id == record_id

    def test_other_owner_match_inserts(self, make_enriched):
        """Test a match owned by someone else is ignored."""
        store = MemoryRosterStore()
        store.insert(make_enriched(owner_id="user-2").to_document())

        directives = RosterReconciler(store).plan(make_enriched(owner_id="user-1"))

        assert [d.action for d in directives] == [DirectiveType.INSERT]

    def test_blank_activity_nothing_stored(self, make_enriched):
        """Test blank activity with no stored records is a skip."""
        reconciler = RosterReconciler(MemoryRosterStore())

        assert reconciler.plan(make_enriched(Activity="  ")) == []

    def test_directive_repr(self, make_enriched):
        """Test readable directive names."""
        assert repr(Directive.delete("mem_1")) == "Delete(mem_1)"
        assert repr(Directive.update("mem_2", make_enriched())).startswith("Update(mem_2, ")
        assert repr(Directive.insert(make_enriched())).startswith("Insert(")


class TestReconcile:
    """Tests for RosterReconciler.reconcile."""

    def test_idempotent(self, make_enriched):
        """Test running the same batch twice keeps one record per key and owner."""
        store = MemoryRosterStore()
        reconciler = RosterReconciler(store)
        batch = [make_enriched(), make_enriched(Date="Jan 06")]

        first = reconciler.reconcile(batch)
        snapshot = {p.id: p.document for p in store.all()}
        second = reconciler.reconcile(batch)

        assert len(store) == 2
        assert first.summary.inserted == 2
        assert second.summary.inserted == 0
        assert second.summary.updated == 2
        assert {p.id: p.document for p in store.all()} == snapshot

    def test_owner_isolation(self, make_enriched):
        """Test identical keys with different owners persist separately."""
        store = MemoryRosterStore()

        result = RosterReconciler(store).reconcile([
            make_enriched(owner_id="user-1"),
            make_enriched(owner_id="user-2"),
        ])

        assert result.summary.inserted == 2
        assert sorted(p.owner_id for p in store.all()) == ["user-1", "user-2"]

    def test_other_owner_never_modified(self, make_enriched):
        """Test another owner's record survives updates and day deletes."""
        store = MemoryRosterStore()
        other_id = store.insert(make_enriched(owner_id="user-2").to_document())
        before = store.get(other_id)

        RosterReconciler(store).reconcile([
            make_enriched(owner_id="user-1", CheckIn="22:00"),
            make_enriched(owner_id="user-1", Activity=""),
        ])

        assert store.get(other_id) == before

    def test_blank_activity_deletes_day(self, make_enriched):
        """Test a blank activity removes the owner's records for that date."""
        store = MemoryRosterStore()
        store.insert(make_enriched(Activity="KE705").to_document())
        store.insert(make_enriched(Activity="KE706", From="NRT", To="ICN").to_document())
        kept_id = store.insert(make_enriched(Date="Jan 06").to_document())

        result = RosterReconciler(store).reconcile([make_enriched(Activity="")])

        assert result.summary.deleted == 2
        assert [p.id for p in store.all()] == [kept_id]

    def test_skip_makes_no_writes(self, make_enriched):
        """Test a skip performs no mutation."""
        store = Mock()
        store.lookup_day.return_value = []

        result = RosterReconciler(store).reconcile([make_enriched(Activity="")])

        assert result.summary.skipped == 1
        store.insert.assert_not_called()
        store.update.assert_not_called()
        store.delete.assert_not_called()

    def test_updates_every_own_match(self, make_enriched):
        """Test several stored records for the same key and owner are all updated."""
        store = Mock()
        store.lookup.return_value = [
            PersistedRecord("a", {"ownerId": "user-1"}),
            PersistedRecord("b", {"ownerId": "user-1"}),
            PersistedRecord("c", {"ownerId": "user-2"}),
        ]

        result = RosterReconciler(store).reconcile([make_enriched(owner_id="user-1")])

        assert result.summary.updated == 2
        assert [call[0][0] for call in store.update.call_args_list] == ["a", "b"]
        store.insert.assert_not_called()

    def test_later_rows_see_earlier_writes(self, make_enriched):
        """Test a duplicate key later in the batch updates the row just inserted."""
        store = MemoryRosterStore()

        result = RosterReconciler(store).reconcile([
            make_enriched(CheckIn="21:30"),
            make_enriched(CheckIn="21:45"),
        ])

        assert result.summary.inserted == 1
        assert result.summary.updated == 1
        assert len(store) == 1
        assert store.all()[0].document["CheckIn"] == "21:45"

    def test_store_failure_continues(self, make_enriched):
        """Test a store error fails one record and the batch continues."""
        store = Mock()
        store.lookup.side_effect = [ConnectionError("connection reset"), []]
        store.insert.return_value = "row-2"

        result = RosterReconciler(store, timeout=1).reconcile([
            make_enriched(Date="Jan 05"),
            make_enriched(Date="Jan 06"),
        ])

        assert result.summary.failed == 1
        assert result.summary.inserted == 1
        failure = result.failures[0]
        assert failure.key.date == "Jan 05"
        assert failure.owner_id == "user-1"
        assert "connection reset" in failure.message
        assert result.directives[0].existing_id == "row-2"

    def test_slow_insert_not_duplicated(self, make_enriched):
        """Test a timed-out insert lands before the next record is looked up."""
        store = SlowInsertStore(delay=0.3)

        result = RosterReconciler(store, timeout=0.1).reconcile([
            make_enriched(CheckIn="21:30"),
            make_enriched(CheckIn="21:45"),
        ])

        assert result.summary.failed == 1
        assert "timed out" in result.failures[0].message
        assert result.summary.updated == 1
        assert result.summary.inserted == 0
        assert len(store) == 1
        assert store.all()[0].document["CheckIn"] == "21:45"

    def test_flagged_records_still_reconciled(self, make_enriched):
        """Test records needing review are counted and still written."""
        store = MemoryRosterStore()
        record = make_enriched()
        record.needs_review = True
        record.review_reason = "Unparseable BlockHours"

        result = RosterReconciler(store).reconcile([record])

        assert result.summary.flagged == 1
        assert result.summary.inserted == 1
        assert result.flagged == [record]

    def test_summary_dict(self, make_enriched):
        """Test summary exposes every counter."""
        result = RosterReconciler(MemoryRosterStore()).reconcile([make_enriched()])

        assert result.summary.to_dict() == {
            "inserted": 1, "updated": 0, "deleted": 0,
            "skipped": 0, "flagged": 0, "failed": 0,
        }

"""
Roster Reconciler Module

Decides and applies, record by record, how each enriched roster record
changes the store:

- Activity blank  -> delete the owner's records for that date (or skip)
- Key match, same owner      -> update every such record in place
- No match / other owners only -> insert a new record

Records are processed sequentially in scrape order and each decision is
applied before the next record is looked up, so later rows observe earlier
writes. Another owner's record is never updated or deleted.
"""

import logging
from enum import Enum
from typing import List, Dict, Any, Optional, Iterable

from roster_schema import EnrichedRecord, CompositeKey, is_blank
from roster_store import RosterStore, PersistedRecord, StoreUnavailableError, call_with_timeout

logger = logging.getLogger(__name__)


# =====================================================
# Directives & Results
# =====================================================

class DirectiveType(Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class Directive:
    """One store mutation: Insert(record), Update(id, record) or Delete(id)."""

    def __init__(
        self,
        action: DirectiveType,
        record: EnrichedRecord = None,
        existing_id: str = None
    ):
        self.action = action
        self.record = record
        self.existing_id = existing_id

    @classmethod
    def insert(cls, record: EnrichedRecord) -> "Directive":
        return cls(DirectiveType.INSERT, record=record)

    @classmethod
    def update(cls, existing_id: str, record: EnrichedRecord) -> "Directive":
        return cls(DirectiveType.UPDATE, record=record, existing_id=existing_id)

    @classmethod
    def delete(cls, existing_id: str) -> "Directive":
        return cls(DirectiveType.DELETE, existing_id=existing_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "existing_id": self.existing_id,
            "record": self.record.to_document() if self.record else None,
        }

    def __repr__(self) -> str:
        if self.action == DirectiveType.DELETE:
            return f"Delete({self.existing_id})"
        if self.action == DirectiveType.UPDATE:
            return f"Update({self.existing_id}, {self.record!r})"
        return f"Insert({self.record!r})"


class ReconcileFailure:
    """A record whose store calls failed; enough context to retry by hand."""

    def __init__(self, key: CompositeKey, owner_id: str, message: str):
        self.key = key
        self.owner_id = owner_id
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key.as_filters(),
            "owner_id": self.owner_id,
            "message": self.message,
        }


class ReconcileSummary:
    """Run-level counts."""

    def __init__(self):
        self.inserted = 0
        self.updated = 0
        self.deleted = 0
        self.skipped = 0
        self.flagged = 0
        self.failed = 0

    def count(self, directive: Directive):
        if directive.action == DirectiveType.INSERT:
            self.inserted += 1
        elif directive.action == DirectiveType.UPDATE:
            self.updated += 1
        elif directive.action == DirectiveType.DELETE:
            self.deleted += 1

    def to_dict(self) -> Dict[str, int]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "flagged": self.flagged,
            "failed": self.failed,
        }

    def __str__(self) -> str:
        return ", ".join(f"{k}={v}" for k, v in self.to_dict().items())


class ReconcileResult:
    def __init__(self):
        self.directives: List[Directive] = []
        self.failures: List[ReconcileFailure] = []
        self.flagged: List[EnrichedRecord] = []
        self.summary = ReconcileSummary()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "directives": [d.to_dict() for d in self.directives],
            "failures": [f.to_dict() for f in self.failures],
        }


# =====================================================
# Reconciler
# =====================================================

class RosterReconciler:
    """
    Reconciles enriched records against a RosterStore.

    Args:
        store: Injected store capability
        timeout: Per-call timeout in seconds (defaults to STORE_CALL_TIMEOUT)
    """

    def __init__(self, store: RosterStore, timeout: float = None):
        self.store = store
        self.timeout = timeout

    def _call(self, func, *args):
        return call_with_timeout(func, *args, timeout=self.timeout)

    def plan(self, record: EnrichedRecord) -> List[Directive]:
        """
        Decide the directives for one record from the current store state.

        Returns:
            Directives to apply; empty for a blank activity with nothing stored
        """
        owner_id = record.owner_id

        if is_blank(record.activity):
            existing = self._call(self.store.lookup_day, record.date, owner_id)
            return [
                Directive.delete(p.id)
                for p in existing
                if p.owner_id == owner_id
            ]

        matches: List[PersistedRecord] = self._call(self.store.lookup, record.composite_key())
        own = [p for p in matches if p.owner_id == owner_id]

        if own:
            return [Directive.update(p.id, record) for p in own]
        return [Directive.insert(record)]

    def apply(self, directive: Directive) -> Optional[str]:
        """Execute one directive; returns the new id for inserts."""
        if directive.action == DirectiveType.INSERT:
            new_id = self._call(self.store.insert, directive.record.to_document())
            directive.existing_id = new_id
            return new_id
        if directive.action == DirectiveType.UPDATE:
            self._call(self.store.update, directive.existing_id, directive.record.to_document())
        elif directive.action == DirectiveType.DELETE:
            self._call(self.store.delete, directive.existing_id)
        return None

    def reconcile(self, records: Iterable[EnrichedRecord]) -> ReconcileResult:
        """
        Reconcile a batch sequentially.

        A store failure is recorded against its record and the batch moves
        on; any other exception aborts the remaining records, leaving the
        mutations already applied in place.
        """
        result = ReconcileResult()
        summary = result.summary

        for i, record in enumerate(records, start=1):
            if record.needs_review:
                summary.flagged += 1
                result.flagged.append(record)

            try:
                directives = self.plan(record)
                if not directives:
                    summary.skipped += 1
                    logger.info(f"Row {i}: no activity and nothing stored for {record.date}, skipped")
                    continue

                for directive in directives:
                    self.apply(directive)
                    result.directives.append(directive)
                    summary.count(directive)
                    logger.info(f"Row {i}: {directive!r}")

            except StoreUnavailableError as e:
                key = record.composite_key()
                summary.failed += 1
                result.failures.append(ReconcileFailure(key, record.owner_id, str(e)))
                logger.warning(f"Row {i}: store unavailable for key {key} (owner {record.owner_id}): {e}")

        logger.info(f"Reconciliation complete: {summary}")
        return result

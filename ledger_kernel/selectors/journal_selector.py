"""
Module: ledger_kernel.selectors.journal_selector
Responsibility: Read-only access to journal entries and their lines,
    returned as JournalEntryInfo snapshots.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Lines are ordered by line_no; multi-entry results by entry_number.
    - Voided entries and their mirrors are both returned.  Callers filter
      on status / is_reversal when they need to.

Failure modes:
    - Returns None or an empty list when nothing matches; never raises on
      absence of data.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.domain.dtos import JournalEntryInfo
from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus
from ledger_kernel.selectors.base import BaseSelector


class JournalSelector(BaseSelector):
    """Journal entry queries."""

    def get_entry(self, tenant_id: UUID, entry_id: UUID) -> JournalEntryInfo | None:
        entry = self.session.execute(
            select(JournalEntry).where(
                JournalEntry.tenant_id == tenant_id, JournalEntry.id == entry_id
            )
        ).scalar_one_or_none()
        return JournalEntryInfo.from_model(entry) if entry else None

    def get_entry_by_number(self, tenant_id: UUID, entry_number: int) -> JournalEntryInfo | None:
        entry = self.session.execute(
            select(JournalEntry).where(
                JournalEntry.tenant_id == tenant_id,
                JournalEntry.entry_number == entry_number,
            )
        ).scalar_one_or_none()
        return JournalEntryInfo.from_model(entry) if entry else None

    def list_entries(
        self,
        tenant_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
        status: JournalEntryStatus | None = None,
        limit: int | None = None,
    ) -> list[JournalEntryInfo]:
        """
        Entries of a tenant, optionally filtered by entry_date range and status.

        Args:
            tenant_id: Owning tenant.
            start_date: Inclusive lower bound on entry_date.
            end_date: Inclusive upper bound on entry_date.
            status: Only entries in this status.
            limit: Maximum number of entries.
        """
        stmt = select(JournalEntry).where(JournalEntry.tenant_id == tenant_id)
        if start_date is not None:
            stmt = stmt.where(JournalEntry.entry_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(JournalEntry.entry_date <= end_date)
        if status is not None:
            stmt = stmt.where(JournalEntry.status == JournalEntryStatus(status).value)
        stmt = stmt.order_by(JournalEntry.entry_number)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [JournalEntryInfo.from_model(e) for e in self.session.execute(stmt).scalars()]

    def entries_for_reference(
        self, tenant_id: UUID, reference_kind: str, reference_id: str
    ) -> list[JournalEntryInfo]:
        """All entries posted for one business record, mirrors included."""
        stmt = (
            select(JournalEntry)
            .where(
                JournalEntry.tenant_id == tenant_id,
                JournalEntry.reference_kind == reference_kind,
                JournalEntry.reference_id == str(reference_id),
            )
            .order_by(JournalEntry.entry_number)
        )
        return [JournalEntryInfo.from_model(e) for e in self.session.execute(stmt).scalars()]

    def count_entries(self, tenant_id: UUID) -> int:
        return self.session.execute(
            select(func.count(JournalEntry.id)).where(JournalEntry.tenant_id == tenant_id)
        ).scalar_one()

"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal entries and their lines -- the
    append-only double-entry record of the ledger.
Architecture position: Kernel > Models.  May import from db/base.py and
    sibling models.

Invariants enforced:
    - entry_number is unique per tenant and assigned from the tenant's
      sequence counter at posting time.
    - Every line has exactly one strictly positive side; the other is zero
      (ck_line_one_side).
    - Entries are never deleted and never edited.  The single permitted
      change is the one-time POSTED -> VOIDED transition with its void
      metadata (db/immutability.py).  Lines never change at all.

Audit relevance:
    A voided entry stays in the ledger next to its mirror reversal entry;
    reversed_entry_id / reversal_entry_id link the pair in both directions.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.db.types import MONEY_CONTEXT, MoneyType, money_total


class JournalEntryStatus(str, Enum):
    """Journal entry lifecycle status."""

    POSTED = "posted"
    VOIDED = "voided"


class JournalEntry(TrackedBase):
    """
    Journal entry header -- the atomic unit of double-entry accounting.

    Contract:
        Written once by the PostingEngine together with all of its lines.
        Debits equal credits exactly (checked before insert).

    Non-goals:
        - This model does NOT enforce balance; the PostingEngine does.  The
          is_balanced property is a read-side convenience.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("tenant_id", "entry_number", name="uq_journal_tenant_number"),
        Index("idx_journal_tenant_date", "tenant_id", "entry_date"),
        Index("idx_journal_tenant_period", "tenant_id", "period_id"),
        Index("idx_journal_tenant_reference", "tenant_id", "reference_kind", "reference_id"),
        Index("idx_journal_tenant_status", "tenant_id", "status"),
    )

    entry_number: Mapped[int] = mapped_column(Integer, nullable=False)

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_periods.id"),
        nullable=False,
    )

    # Descriptor of the business record that caused this entry
    reference_kind: Mapped[str] = mapped_column(String(100), nullable=False)

    reference_id: Mapped[str] = mapped_column(String(100), nullable=False)

    narration: Mapped[str | None] = mapped_column(String(500), nullable=True)

    status: Mapped[JournalEntryStatus] = mapped_column(
        String(10),
        default=JournalEntryStatus.POSTED,
        nullable=False,
    )

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    posted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    is_reversal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # On a reversal entry: the entry it mirrors
    reversed_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    # On a voided entry: the mirror that voided it
    reversal_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    voided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    void_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    lines: Mapped[list["JournalEntryLine"]] = relationship(
        back_populates="entry",
        order_by="JournalEntryLine.line_no",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<JournalEntry #{self.entry_number} {self.status}>"

    @property
    def is_voided(self) -> bool:
        return self.status == JournalEntryStatus.VOIDED

    @property
    def total_debits(self) -> Decimal:
        return money_total(line.debit for line in self.lines)

    @property
    def total_credits(self) -> Decimal:
        return money_total(line.credit for line in self.lines)

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


class JournalEntryLine(TrackedBase):
    """
    One debit or credit line of a journal entry.

    Guarantees:
        - Exactly one of debit/credit is positive, the other is zero.
        - line_no gives a stable order within the entry (1-based).
        - item_reference / due_date identify the open item a receivable or
          payable line belongs to (used by the aging reports).
    """

    __tablename__ = "journal_entry_lines"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "journal_entry_id", "line_no", name="uq_line_tenant_entry_line_no"
        ),
        CheckConstraint(
            "(CAST(debit AS NUMERIC) > 0 AND CAST(credit AS NUMERIC) = 0) OR "
            "(CAST(credit AS NUMERIC) > 0 AND CAST(debit AS NUMERIC) = 0)",
            name="ck_line_one_side",
        ),
        Index("idx_line_tenant_entry", "tenant_id", "journal_entry_id"),
        Index("idx_line_tenant_account", "tenant_id", "account_id"),
        Index("idx_line_tenant_item", "tenant_id", "item_reference"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    debit: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)

    credit: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)

    narration: Mapped[str | None] = mapped_column(String(500), nullable=True)

    item_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    entry: Mapped["JournalEntry"] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return f"<JournalEntryLine {self.line_no} Dr {self.debit} Cr {self.credit}>"

    @property
    def net_debit(self) -> Decimal:
        """Debit minus credit; positive for debit lines."""
        return MONEY_CONTEXT.subtract(self.debit, self.credit)

"""
DTOs -- Immutable data transfer objects of the ledger kernel.

Responsibility:
    Defines the structures that cross the kernel boundary: LineSpec (posting
    input), PostingResult / ReversalResult (command output), and the Info
    snapshots of accounts, periods, entries and balances returned by
    services and selectors.

Architecture position:
    Kernel > Domain -- no database access.  from_model() class methods are
    boundary converters invoked only from services and selectors.

Invariants enforced:
    - Services and selectors return these DTOs, never live ORM instances, so
      callers cannot mutate ledger rows by accident.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from ledger_kernel.db.types import money_total
from ledger_kernel.models.account import AccountCategory, NormalBalance
from ledger_kernel.models.fiscal_period import PeriodStatus
from ledger_kernel.models.journal import JournalEntryStatus

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.account_balance import AccountBalance as AccountBalanceModel
    from ledger_kernel.models.fiscal_period import FiscalPeriod as FiscalPeriodModel
    from ledger_kernel.models.journal import JournalEntry as JournalEntryModel

ZERO = Decimal("0")


@dataclass(frozen=True)
class LineSpec:
    """
    One requested journal line.

    Contract:
        Exactly one of debit/credit should be strictly positive.  The shape
        is NOT validated here: the PostingEngine validates every line of an
        entry together so that it can report which line is malformed.

    item_reference / due_date are optional open-item data for receivable and
    payable lines.
    """

    account_id: UUID
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    narration: str | None = None
    item_reference: str | None = None
    due_date: date | None = None

    @classmethod
    def debiting(cls, account_id: UUID, amount: Decimal, **kwargs) -> LineSpec:
        return cls(account_id=account_id, debit=amount, credit=ZERO, **kwargs)

    @classmethod
    def crediting(cls, account_id: UUID, amount: Decimal, **kwargs) -> LineSpec:
        return cls(account_id=account_id, debit=ZERO, credit=amount, **kwargs)

    def mirrored(self) -> LineSpec:
        """The same line with debit and credit swapped."""
        return LineSpec(
            account_id=self.account_id,
            debit=self.credit,
            credit=self.debit,
            narration=self.narration,
            item_reference=self.item_reference,
            due_date=self.due_date,
        )


@dataclass(frozen=True)
class BlockingReference:
    """A downstream record that prevents voiding an entry or closing a period."""

    kind: str
    reference_id: str
    description: str = ""


@dataclass(frozen=True)
class AccountInfo:
    """Snapshot of an account."""

    id: UUID
    tenant_id: UUID
    code: str
    name: str
    category: AccountCategory
    normal_balance: NormalBalance
    is_active: bool
    is_system: bool
    parent_id: UUID | None = None
    tags: tuple[str, ...] = ()

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    def has_tag(self, tag: str) -> bool:
        return str(getattr(tag, "value", tag)) in self.tags

    @classmethod
    def from_model(cls, model: AccountModel) -> AccountInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            code=model.code,
            name=model.name,
            category=AccountCategory(model.category),
            normal_balance=NormalBalance(model.normal_balance),
            is_active=model.is_active,
            is_system=model.is_system,
            parent_id=model.parent_id,
            tags=tuple(model.tags or ()),
        )


@dataclass(frozen=True)
class FiscalPeriodInfo:
    """
    Snapshot of a fiscal period.

    Non-goals:
        - Does NOT enforce period transitions (PeriodManager does that).
    """

    id: UUID
    tenant_id: UUID
    period_code: str
    name: str
    start_date: date
    end_date: date
    status: PeriodStatus
    closed_at: datetime | None = None
    closed_by_id: UUID | None = None
    locked_at: datetime | None = None
    locked_by_id: UUID | None = None

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    @property
    def is_closed(self) -> bool:
        return self.status == PeriodStatus.CLOSED

    @property
    def is_locked(self) -> bool:
        return self.status == PeriodStatus.LOCKED

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date

    @classmethod
    def from_model(cls, model: FiscalPeriodModel) -> FiscalPeriodInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            period_code=model.period_code,
            name=model.name,
            start_date=model.start_date,
            end_date=model.end_date,
            status=PeriodStatus(model.status),
            closed_at=model.closed_at,
            closed_by_id=model.closed_by_id,
            locked_at=model.locked_at,
            locked_by_id=model.locked_by_id,
        )


@dataclass(frozen=True)
class JournalLineInfo:
    line_no: int
    account_id: UUID
    debit: Decimal
    credit: Decimal
    narration: str | None = None
    item_reference: str | None = None
    due_date: date | None = None


@dataclass(frozen=True)
class JournalEntryInfo:
    """
    Read-side snapshot of a journal entry and its lines.

    Passed to void dependency checks so the business module owning
    (reference_kind, reference_id) can look up its own records.
    """

    id: UUID
    tenant_id: UUID
    entry_number: int
    entry_date: date
    period_id: UUID
    reference_kind: str
    reference_id: str
    narration: str | None
    status: JournalEntryStatus
    is_reversal: bool
    actor_id: UUID
    posted_at: datetime
    lines: tuple[JournalLineInfo, ...] = ()
    reversed_entry_id: UUID | None = None
    reversal_entry_id: UUID | None = None
    voided_at: datetime | None = None
    voided_by_id: UUID | None = None
    void_reason: str | None = None

    @property
    def is_voided(self) -> bool:
        return self.status == JournalEntryStatus.VOIDED

    @property
    def total_debits(self) -> Decimal:
        return money_total(line.debit for line in self.lines)

    @property
    def total_credits(self) -> Decimal:
        return money_total(line.credit for line in self.lines)

    @classmethod
    def from_model(cls, model: JournalEntryModel) -> JournalEntryInfo:
        lines = tuple(
            JournalLineInfo(
                line_no=line.line_no,
                account_id=line.account_id,
                debit=line.debit,
                credit=line.credit,
                narration=line.narration,
                item_reference=line.item_reference,
                due_date=line.due_date,
            )
            for line in sorted(model.lines, key=lambda x: x.line_no)
        )
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            entry_number=model.entry_number,
            entry_date=model.entry_date,
            period_id=model.period_id,
            reference_kind=model.reference_kind,
            reference_id=model.reference_id,
            narration=model.narration,
            status=JournalEntryStatus(model.status),
            is_reversal=model.is_reversal,
            actor_id=model.actor_id,
            posted_at=model.posted_at,
            lines=lines,
            reversed_entry_id=model.reversed_entry_id,
            reversal_entry_id=model.reversal_entry_id,
            voided_at=model.voided_at,
            voided_by_id=model.voided_by_id,
            void_reason=model.void_reason,
        )


@dataclass(frozen=True)
class PostingResult:
    """Outcome of a successful post."""

    entry_id: UUID
    entry_number: int
    entry_date: date
    period_id: UUID
    total_debits: Decimal
    total_credits: Decimal
    line_count: int
    is_reversal: bool = False


@dataclass(frozen=True)
class ReversalResult:
    """Outcome of a successful void."""

    original_entry_id: UUID
    reversal_entry_id: UUID
    reversal_entry_number: int
    reversal_date: date


@dataclass(frozen=True)
class AccountBalanceInfo:
    """Cached (or recomputed) balance of one account in one period."""

    account_id: UUID
    period_id: UUID
    opening_balance: Decimal
    debit_total: Decimal
    credit_total: Decimal
    closing_balance: Decimal

    @classmethod
    def from_model(cls, model: AccountBalanceModel) -> AccountBalanceInfo:
        return cls(
            account_id=model.account_id,
            period_id=model.period_id,
            opening_balance=model.opening_balance,
            debit_total=model.debit_total,
            credit_total=model.credit_total,
            closing_balance=model.closing_balance,
        )

    def same_values(self, other: AccountBalanceInfo) -> bool:
        return (
            self.opening_balance == other.opening_balance
            and self.debit_total == other.debit_total
            and self.credit_total == other.credit_total
            and self.closing_balance == other.closing_balance
        )


@dataclass(frozen=True)
class BalanceDrift:
    """
    Difference between the balance cache and the ledger lines.

    cached is None when a row is missing from the cache; expected is None
    when the cache holds a row the lines do not justify.
    """

    account_id: UUID
    period_id: UUID
    cached: AccountBalanceInfo | None
    expected: AccountBalanceInfo | None


@dataclass(frozen=True)
class RebuildResult:
    tenant_id: UUID
    period_id: UUID
    rows_rebuilt: int
    drift: tuple[BalanceDrift, ...] = field(default_factory=tuple)

    @property
    def had_drift(self) -> bool:
        return bool(self.drift)

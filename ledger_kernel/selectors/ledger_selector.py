"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Read-only ledger aggregates -- per-account debit/credit
    totals over a date range or up to a date, and the open-item lines of
    receivable / payable accounts.  The reports are built on these.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Every figure is derived from journal_entry_lines at query time; the
      balance cache is not consulted, so reports stay correct even when the
      cache has drifted.
    - Voided entries and their mirrors are both included, so a void nets
      to zero in every aggregate.
    - Inactive accounts are included: deactivation stops new postings, it
      does not hide history.

Failure modes:
    - Returns empty lists when the tenant has no lines in range.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.db.types import MONEY_CONTEXT, money_sum
from ledger_kernel.domain.balances import compute_natural_balance
from ledger_kernel.models.account import Account, AccountCategory, AccountTag, NormalBalance
from ledger_kernel.models.journal import JournalEntry, JournalEntryLine
from ledger_kernel.selectors.base import BaseSelector

ZERO = Decimal("0")


@dataclass(frozen=True)
class TrialBalanceRow:
    """Debit and credit totals of one account over a range."""

    account_id: UUID
    account_code: str
    account_name: str
    category: AccountCategory
    normal_balance: NormalBalance
    is_active: bool
    debit_total: Decimal
    credit_total: Decimal

    @property
    def net_debit(self) -> Decimal:
        return MONEY_CONTEXT.subtract(self.debit_total, self.credit_total)

    @property
    def natural_balance(self) -> Decimal:
        """Balance on the account's normal side."""
        return compute_natural_balance(self.debit_total, self.credit_total, self.normal_balance)


@dataclass(frozen=True)
class OpenItemLine:
    """A line on a receivable or payable account, with its item data."""

    account_id: UUID
    account_code: str
    normal_balance: NormalBalance
    entry_id: UUID
    entry_number: int
    entry_date: date
    reference_kind: str
    reference_id: str
    item_reference: str | None
    due_date: date | None
    debit: Decimal
    credit: Decimal

    @property
    def item_key(self) -> str:
        """Open-item grouping key; falls back to the entry's reference."""
        return self.item_reference or f"{self.reference_kind}:{self.reference_id}"


class LedgerSelector(BaseSelector):
    """
    Aggregates over the journal.

    Contract:
        account_totals() returns one TrialBalanceRow per account with at
        least one line in range, ordered by account code.
    """

    def account_totals(
        self,
        tenant_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[TrialBalanceRow]:
        """
        Per-account totals for lines whose entry_date is in [start_date, end_date].

        Either bound may be None for an open range.
        """
        stmt = (
            select(
                Account.id,
                Account.code,
                Account.name,
                Account.category,
                Account.normal_balance,
                Account.is_active,
                money_sum(JournalEntryLine.debit).label("debit_total"),
                money_sum(JournalEntryLine.credit).label("credit_total"),
            )
            .join(JournalEntry, JournalEntry.id == JournalEntryLine.journal_entry_id)
            .join(Account, Account.id == JournalEntryLine.account_id)
            .where(JournalEntryLine.tenant_id == tenant_id)
            .group_by(
                Account.id,
                Account.code,
                Account.name,
                Account.category,
                Account.normal_balance,
                Account.is_active,
            )
            .order_by(Account.code)
        )
        if start_date is not None:
            stmt = stmt.where(JournalEntry.entry_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(JournalEntry.entry_date <= end_date)

        return [
            TrialBalanceRow(
                account_id=row.id,
                account_code=row.code,
                account_name=row.name,
                category=AccountCategory(row.category),
                normal_balance=NormalBalance(row.normal_balance),
                is_active=row.is_active,
                debit_total=row.debit_total or ZERO,
                credit_total=row.credit_total or ZERO,
            )
            for row in self.session.execute(stmt)
        ]

    def cumulative_totals(self, tenant_id: UUID, as_of_date: date) -> list[TrialBalanceRow]:
        """Totals of every line dated on or before as_of_date."""
        return self.account_totals(tenant_id, end_date=as_of_date)

    def open_item_lines(
        self, tenant_id: UUID, tag: AccountTag | str, as_of_date: date
    ) -> list[OpenItemLine]:
        """
        Lines dated on or before as_of_date on accounts carrying tag.

        Tags live in a JSON column, so tag matching happens in Python.
        """
        tag_value = AccountTag(tag).value
        accounts = [
            account
            for account in self.session.execute(
                select(Account).where(Account.tenant_id == tenant_id)
            ).scalars()
            if tag_value in (account.tags or ())
        ]
        if not accounts:
            return []
        by_id = {account.id: account for account in accounts}

        stmt = (
            select(JournalEntryLine, JournalEntry)
            .join(JournalEntry, JournalEntry.id == JournalEntryLine.journal_entry_id)
            .where(
                JournalEntryLine.tenant_id == tenant_id,
                JournalEntryLine.account_id.in_(list(by_id)),
                JournalEntry.entry_date <= as_of_date,
            )
            .order_by(JournalEntry.entry_number, JournalEntryLine.line_no)
        )
        result = []
        for line, entry in self.session.execute(stmt):
            account = by_id[line.account_id]
            result.append(
                OpenItemLine(
                    account_id=account.id,
                    account_code=account.code,
                    normal_balance=NormalBalance(account.normal_balance),
                    entry_id=entry.id,
                    entry_number=entry.entry_number,
                    entry_date=entry.entry_date,
                    reference_kind=entry.reference_kind,
                    reference_id=entry.reference_id,
                    item_reference=line.item_reference,
                    due_date=line.due_date,
                    debit=line.debit,
                    credit=line.credit,
                )
            )
        return result

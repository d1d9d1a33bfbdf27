"""
Financial statements -- pure builders over per-account totals.

Responsibility:
    Turns TrialBalanceRow lists into the trial balance, balance sheet and
    income statement, and computes the lines of a year-end closing entry.

Architecture position:
    Kernel > Reporting -- pure functions, no database access.  The
    ReportEngine feeds them rows from the LedgerSelector.

Invariants enforced:
    - Decimal arithmetic throughout, no rounding.
    - Balance sheet: total_assets == total_liabilities + total_equity, where
      equity includes a current-earnings line for revenue, cost of goods and
      expense balances not yet closed to retained earnings.
    - Income statement: net_income = revenue - cost_of_goods - expenses.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from ledger_kernel.db.types import MONEY_CONTEXT, money_total
from ledger_kernel.domain.dtos import LineSpec
from ledger_kernel.models.account import INCOME_STATEMENT_CATEGORIES, AccountCategory
from ledger_kernel.selectors.ledger_selector import TrialBalanceRow

ZERO = Decimal("0")

CURRENT_EARNINGS_LABEL = "Current earnings"


@dataclass(frozen=True)
class StatementLine:
    """One account on a statement, amount on its normal side."""

    account_id: UUID | None
    account_code: str
    account_name: str
    amount: Decimal


@dataclass(frozen=True)
class TrialBalanceReport:
    tenant_id: UUID
    start_date: date | None
    end_date: date
    rows: tuple[TrialBalanceRow, ...]
    total_debits: Decimal
    total_credits: Decimal

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    def row_for(self, account_id: UUID) -> TrialBalanceRow | None:
        for row in self.rows:
            if row.account_id == account_id:
                return row
        return None


@dataclass(frozen=True)
class BalanceSheetReport:
    tenant_id: UUID
    as_of_date: date
    assets: tuple[StatementLine, ...]
    liabilities: tuple[StatementLine, ...]
    equity: tuple[StatementLine, ...]
    current_earnings: Decimal
    total_assets: Decimal
    total_liabilities: Decimal
    total_equity: Decimal

    @property
    def is_balanced(self) -> bool:
        return self.total_assets == self.total_liabilities + self.total_equity


@dataclass(frozen=True)
class IncomeStatementReport:
    tenant_id: UUID
    start_date: date
    end_date: date
    revenue: tuple[StatementLine, ...]
    cost_of_goods: tuple[StatementLine, ...]
    expenses: tuple[StatementLine, ...]
    total_revenue: Decimal
    total_cost_of_goods: Decimal
    total_expenses: Decimal

    @property
    def gross_profit(self) -> Decimal:
        return MONEY_CONTEXT.subtract(self.total_revenue, self.total_cost_of_goods)

    @property
    def net_income(self) -> Decimal:
        return MONEY_CONTEXT.subtract(self.gross_profit, self.total_expenses)


def _section(rows: Iterable[TrialBalanceRow], category: AccountCategory) -> tuple[StatementLine, ...]:
    return tuple(
        StatementLine(
            account_id=row.account_id,
            account_code=row.account_code,
            account_name=row.account_name,
            amount=row.natural_balance,
        )
        for row in rows
        if row.category == category
    )


def _total(lines: Iterable[StatementLine]) -> Decimal:
    return money_total(line.amount for line in lines)


def build_trial_balance(
    tenant_id: UUID,
    start_date: date | None,
    end_date: date,
    rows: Sequence[TrialBalanceRow],
) -> TrialBalanceReport:
    return TrialBalanceReport(
        tenant_id=tenant_id,
        start_date=start_date,
        end_date=end_date,
        rows=tuple(rows),
        total_debits=money_total(row.debit_total for row in rows),
        total_credits=money_total(row.credit_total for row in rows),
    )


def current_earnings(rows: Iterable[TrialBalanceRow]) -> Decimal:
    """Revenue less cost of goods and expenses over the given rows."""
    rows = list(rows)
    gross = MONEY_CONTEXT.subtract(
        _total(_section(rows, AccountCategory.REVENUE)),
        _total(_section(rows, AccountCategory.COST_OF_GOODS)),
    )
    return MONEY_CONTEXT.subtract(gross, _total(_section(rows, AccountCategory.EXPENSE)))


def build_balance_sheet(
    tenant_id: UUID, as_of_date: date, rows: Sequence[TrialBalanceRow]
) -> BalanceSheetReport:
    """
    Balance sheet from cumulative totals up to as_of_date.

    Unclosed income-statement balances appear as one synthetic equity line
    so the sheet balances at any date, not only after a year-end close.
    """
    assets = _section(rows, AccountCategory.ASSET)
    liabilities = _section(rows, AccountCategory.LIABILITY)
    equity = _section(rows, AccountCategory.EQUITY)
    earnings = current_earnings(rows)
    if earnings != ZERO:
        equity = equity + (
            StatementLine(
                account_id=None,
                account_code="",
                account_name=CURRENT_EARNINGS_LABEL,
                amount=earnings,
            ),
        )
    return BalanceSheetReport(
        tenant_id=tenant_id,
        as_of_date=as_of_date,
        assets=assets,
        liabilities=liabilities,
        equity=equity,
        current_earnings=earnings,
        total_assets=_total(assets),
        total_liabilities=_total(liabilities),
        total_equity=_total(equity),
    )


def build_income_statement(
    tenant_id: UUID,
    start_date: date,
    end_date: date,
    rows: Sequence[TrialBalanceRow],
) -> IncomeStatementReport:
    revenue = _section(rows, AccountCategory.REVENUE)
    cost_of_goods = _section(rows, AccountCategory.COST_OF_GOODS)
    expenses = _section(rows, AccountCategory.EXPENSE)
    return IncomeStatementReport(
        tenant_id=tenant_id,
        start_date=start_date,
        end_date=end_date,
        revenue=revenue,
        cost_of_goods=cost_of_goods,
        expenses=expenses,
        total_revenue=_total(revenue),
        total_cost_of_goods=_total(cost_of_goods),
        total_expenses=_total(expenses),
    )


def year_end_closing_lines(
    rows: Iterable[TrialBalanceRow],
    retained_earnings_account_id: UUID,
    narration: str = "Year-end close",
) -> list[LineSpec]:
    """
    Lines of the entry that zeroes income-statement accounts.

    Each revenue, cost-of-goods and expense account with a non-zero balance
    gets one line on its opposite side; the net goes to retained earnings
    (credit for a profit, debit for a loss).  Returns an empty list when
    there is nothing to close.  Posting the result is an ordinary post().
    """
    lines: list[LineSpec] = []
    net_debit = ZERO
    for row in rows:
        if row.category not in INCOME_STATEMENT_CATEGORIES:
            continue
        balance = row.net_debit
        if balance == ZERO:
            continue
        net_debit = MONEY_CONTEXT.add(net_debit, balance)
        if balance > ZERO:
            lines.append(LineSpec.crediting(row.account_id, balance, narration=narration))
        else:
            lines.append(LineSpec.debiting(row.account_id, balance.copy_negate(), narration=narration))

    if net_debit > ZERO:
        lines.append(
            LineSpec.debiting(retained_earnings_account_id, net_debit, narration=narration)
        )
    elif net_debit < ZERO:
        lines.append(
            LineSpec.crediting(retained_earnings_account_id, net_debit.copy_negate(), narration=narration)
        )
    return lines

"""
ReportEngine -- read-only financial reports.

Responsibility:
    Answers trial balance, balance sheet, income statement and aging
    queries for one tenant by combining LedgerSelector aggregates with the
    pure builders in reporting/statements.py and reporting/aging.py.

Architecture position:
    Kernel > Reporting.  Reads through selectors only; never adds, flushes
    or commits.

Invariants enforced:
    - Reports are computed from journal lines, never from the balance cache.
    - Voided entries and their mirrors are both included and net to zero.

Failure modes:
    - ValueError when start_date is after end_date.
    - ConfigurationError at construction when the aging buckets are not
      contiguous.
"""

from datetime import date
from typing import Sequence
from uuid import UUID

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import AccountTag
from ledger_kernel.reporting.aging import (
    STANDARD_BUCKETS,
    AgeBucket,
    AgingReport,
    age_items,
    validate_buckets,
)
from ledger_kernel.reporting.statements import (
    BalanceSheetReport,
    IncomeStatementReport,
    TrialBalanceReport,
    build_balance_sheet,
    build_income_statement,
    build_trial_balance,
)
from ledger_kernel.selectors.ledger_selector import LedgerSelector

logger = get_logger("reporting.report_engine")


def _check_range(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise ValueError(f"start_date {start_date} is after end_date {end_date}")


class ReportEngine:
    """
    Report queries for callers that own a session.

    Non-goals:
        - Rendering.  Reports are frozen dataclasses; formatting is the
          caller's concern.
    """

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        buckets: Sequence[AgeBucket] = STANDARD_BUCKETS,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self._ledger = LedgerSelector(session)
        self._buckets = validate_buckets(buckets)

    def trial_balance(
        self, tenant_id: UUID, start_date: date, end_date: date
    ) -> TrialBalanceReport:
        """Per-account totals of lines dated within [start_date, end_date]."""
        _check_range(start_date, end_date)
        rows = self._ledger.account_totals(tenant_id, start_date, end_date)
        report = build_trial_balance(tenant_id, start_date, end_date, rows)
        with LogContext.bind(tenant_id=tenant_id):
            logger.debug(
                "report_generated",
                extra={
                    "report": "trial_balance",
                    "row_count": len(rows),
                    "is_balanced": report.is_balanced,
                },
            )
        return report

    def balance_sheet(self, tenant_id: UUID, as_of_date: date | None = None) -> BalanceSheetReport:
        as_of_date = as_of_date or self.clock.today()
        rows = self._ledger.cumulative_totals(tenant_id, as_of_date)
        report = build_balance_sheet(tenant_id, as_of_date, rows)
        with LogContext.bind(tenant_id=tenant_id):
            logger.debug(
                "report_generated",
                extra={"report": "balance_sheet", "row_count": len(rows)},
            )
        return report

    def income_statement(
        self, tenant_id: UUID, start_date: date, end_date: date
    ) -> IncomeStatementReport:
        _check_range(start_date, end_date)
        rows = self._ledger.account_totals(tenant_id, start_date, end_date)
        report = build_income_statement(tenant_id, start_date, end_date, rows)
        with LogContext.bind(tenant_id=tenant_id):
            logger.debug(
                "report_generated",
                extra={"report": "income_statement", "net_income": report.net_income},
            )
        return report

    def aged_receivables(self, tenant_id: UUID, as_of_date: date | None = None) -> AgingReport:
        return self._aging(tenant_id, AccountTag.RECEIVABLE, as_of_date)

    def aged_payables(self, tenant_id: UUID, as_of_date: date | None = None) -> AgingReport:
        return self._aging(tenant_id, AccountTag.PAYABLE, as_of_date)

    def _aging(self, tenant_id: UUID, tag: AccountTag, as_of_date: date | None) -> AgingReport:
        as_of_date = as_of_date or self.clock.today()
        lines = self._ledger.open_item_lines(tenant_id, tag, as_of_date)
        report = age_items(tenant_id, tag.value, lines, as_of_date, self._buckets)
        with LogContext.bind(tenant_id=tenant_id):
            logger.debug(
                "report_generated",
                extra={"report": f"aged_{tag.value}", "item_count": len(report.items)},
            )
        return report

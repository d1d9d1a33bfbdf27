"""Read-only financial reports."""

from ledger_kernel.reporting.aging import (
    STANDARD_BUCKETS,
    AgeBucket,
    AgedItem,
    AgingReport,
    age_items,
    validate_buckets,
)
from ledger_kernel.reporting.report_engine import ReportEngine
from ledger_kernel.reporting.statements import (
    BalanceSheetReport,
    IncomeStatementReport,
    StatementLine,
    TrialBalanceReport,
    year_end_closing_lines,
)

__all__ = [
    "STANDARD_BUCKETS",
    "AgeBucket",
    "AgedItem",
    "AgingReport",
    "BalanceSheetReport",
    "IncomeStatementReport",
    "ReportEngine",
    "StatementLine",
    "TrialBalanceReport",
    "age_items",
    "validate_buckets",
    "year_end_closing_lines",
]

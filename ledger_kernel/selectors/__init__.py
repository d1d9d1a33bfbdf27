"""Read-only query layer."""

from ledger_kernel.selectors.base import BaseSelector
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.selectors.ledger_selector import (
    LedgerSelector,
    OpenItemLine,
    TrialBalanceRow,
)

__all__ = [
    "BaseSelector",
    "JournalSelector",
    "LedgerSelector",
    "OpenItemLine",
    "TrialBalanceRow",
]

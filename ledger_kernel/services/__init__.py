"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.balance_aggregator import BalanceAggregator
from ledger_kernel.services.ledger_orchestrator import (
    LedgerOrchestrator,
    LedgerServices,
    run_with_retry,
)
from ledger_kernel.services.period_manager import PeriodManager
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_kernel.services.reversal_engine import ReversalEngine
from ledger_kernel.services.sequence_service import SequenceService

__all__ = [
    "AccountRegistry",
    "AuditorService",
    "BalanceAggregator",
    "LedgerOrchestrator",
    "LedgerServices",
    "PeriodManager",
    "PostingEngine",
    "ReversalEngine",
    "SequenceService",
    "run_with_retry",
]

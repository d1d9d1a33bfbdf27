"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import (
    Account,
    AccountCategory,
    AccountTag,
    NormalBalance,
    normal_balance_for,
)
from ledger_kernel.models.account_balance import AccountBalance
from ledger_kernel.models.audit_event import AuditAction, AuditEvent
from ledger_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from ledger_kernel.models.journal import JournalEntry, JournalEntryLine, JournalEntryStatus
from ledger_kernel.models.sequence import SequenceCounter

__all__ = [
    "Account",
    "AccountBalance",
    "AccountCategory",
    "AccountTag",
    "AuditAction",
    "AuditEvent",
    "FiscalPeriod",
    "JournalEntry",
    "JournalEntryLine",
    "JournalEntryStatus",
    "NormalBalance",
    "PeriodStatus",
    "SequenceCounter",
    "normal_balance_for",
]

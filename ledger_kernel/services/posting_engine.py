"""
PostingEngine -- the only writer of journal entries.

Responsibility:
    Validates a caller-supplied line set and, if it is acceptable, writes the
    entry header, its lines, the balance cache update and the audit event as
    one atomic unit.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Used directly by
    callers that own a session, by the ReversalEngine for mirror entries, and
    by the LedgerOrchestrator.

Invariants enforced:
    - Checks run in a fixed order, all before any write:
        1. entry_date lies in an Open period of the tenant
        2. every account is known to the tenant and active
        3. every line has exactly one strictly positive Decimal side
        4. sum(debit) == sum(credit), exactly
    - All writes happen in one savepoint: either the whole entry (header,
      lines, cache, audit) becomes visible with the caller's commit, or none
      of it does and no entry number is consumed.
    - Posted entries are never modified here.
    - reference_kind / reference_id are an opaque tag, stored as given.

Failure modes:
    - ClosedPeriodError (PeriodNotFoundError), InvalidAccountError
      (UnknownAccountError), MalformedLineError, UnbalancedEntryError.
"""

from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID, uuid4

from ledger_kernel.db.types import (
    MONEY_CONTEXT,
    MONEY_DECIMAL_PLACES,
    MONEY_MAX,
    ZERO,
    fractional_digits,
)
from ledger_kernel.domain.dtos import LineSpec, PostingResult
from ledger_kernel.exceptions import MalformedLineError, UnbalancedEntryError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.models.journal import JournalEntry, JournalEntryLine, JournalEntryStatus
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.balance_aggregator import BalanceAggregator
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.period_manager import PeriodManager
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.posting_engine")


def _coerce_amount(value, line_no: int, side: str) -> Decimal:
    # bool is an int subclass and float is inexact; neither is money
    if isinstance(value, bool) or isinstance(value, float):
        raise MalformedLineError(line_no, f"{side} must be a Decimal, got {type(value).__name__}")
    if isinstance(value, int):
        value = Decimal(value)
    if not isinstance(value, Decimal):
        raise MalformedLineError(line_no, f"{side} must be a Decimal, got {type(value).__name__}")
    if not value.is_finite():
        raise MalformedLineError(line_no, f"{side} must be finite")
    if value < ZERO:
        raise MalformedLineError(line_no, f"{side} must not be negative")
    if fractional_digits(value) > MONEY_DECIMAL_PLACES:
        raise MalformedLineError(
            line_no, f"{side} has more than {MONEY_DECIMAL_PLACES} decimal places"
        )
    if value > MONEY_MAX:
        raise MalformedLineError(line_no, f"{side} exceeds the largest storable amount")
    return value


def validate_lines(lines: Sequence[LineSpec]) -> list[LineSpec]:
    """
    Check the shape of every line and return them with normalized amounts.

    Raises:
        MalformedLineError: fewer than two lines, or a line whose amounts are
            not exactly one strictly positive non-float Decimal.
    """
    if len(lines) < 2:
        raise MalformedLineError(None, "an entry needs at least two lines")

    normalized: list[LineSpec] = []
    for line_no, line in enumerate(lines, start=1):
        debit = _coerce_amount(line.debit, line_no, "debit")
        credit = _coerce_amount(line.credit, line_no, "credit")
        if debit > ZERO and credit > ZERO:
            raise MalformedLineError(line_no, "both debit and credit are positive")
        if debit == ZERO and credit == ZERO:
            raise MalformedLineError(line_no, "neither debit nor credit is positive")
        normalized.append(
            LineSpec(
                account_id=line.account_id,
                debit=debit,
                credit=credit,
                narration=line.narration,
                item_reference=line.item_reference,
                due_date=line.due_date,
            )
        )
    return normalized


def validate_balance(lines: Sequence[LineSpec]) -> tuple[Decimal, Decimal]:
    """
    Exact debit/credit equality; returns the totals.

    Raises:
        UnbalancedEntryError: totals differ by any amount.
    """
    total_debits = ZERO
    total_credits = ZERO
    for line in lines:
        total_debits = MONEY_CONTEXT.add(total_debits, line.debit)
        total_credits = MONEY_CONTEXT.add(total_credits, line.credit)
    if total_debits != total_credits:
        raise UnbalancedEntryError(total_debits, total_credits)
    return total_debits, total_credits


class PostingEngine(BaseService):
    """
    Validates and writes journal entries.

    Contract:
        post() either returns a PostingResult for an entry that is now part of
        the caller's transaction, or raises a PostingError / PeriodError and
        leaves the session exactly as it was.
    """

    def __init__(
        self,
        session,
        clock=None,
        accounts: AccountRegistry | None = None,
        periods: PeriodManager | None = None,
        balances: BalanceAggregator | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session, clock)
        self._auditor = auditor or AuditorService(session, self.clock)
        self._accounts = accounts or AccountRegistry(session, self.clock, self._auditor)
        self._periods = periods or PeriodManager(session, self.clock, auditor=self._auditor)
        self._balances = balances or BalanceAggregator(session, self.clock, self._auditor)
        self._sequences = SequenceService(session)

    def post(
        self,
        tenant_id: UUID,
        entry_date: date,
        reference_kind: str,
        reference_id: str,
        narration: str | None,
        lines: Sequence[LineSpec],
        actor_id: UUID,
        *,
        is_reversal: bool = False,
        reversed_entry_id: UUID | None = None,
    ) -> PostingResult:
        """
        Post a balanced entry.

        Args:
            tenant_id: Owning tenant.
            entry_date: Accounting date; selects the fiscal period.
            reference_kind: Kind of business record behind the entry.
            reference_id: Id of that record.
            narration: Free-text description.
            lines: At least two LineSpecs.
            actor_id: Who posts.
            is_reversal: Set by the ReversalEngine for mirror entries.
            reversed_entry_id: On a mirror entry, the entry it mirrors.

        Returns:
            PostingResult with the assigned entry id and number.

        Raises:
            ClosedPeriodError, InvalidAccountError, MalformedLineError,
            UnbalancedEntryError.
        """
        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id, operation="post"):
            period = self._periods.validate_posting_date(tenant_id, entry_date)

            account_ids = [line.account_id for line in lines]
            accounts = self._accounts.resolve_for_posting(tenant_id, account_ids)

            try:
                normalized = validate_lines(lines)
                total_debits, total_credits = validate_balance(normalized)
            except (MalformedLineError, UnbalancedEntryError) as exc:
                logger.warning(
                    "posting_rejected",
                    extra={"reason_code": exc.code, "reference_id": str(reference_id)},
                )
                raise

            logger.debug(
                "balance_validated",
                extra={"total_debits": total_debits, "total_credits": total_credits},
            )

            with self.session.begin_nested():
                entry = self._write_entry(
                    tenant_id,
                    entry_date,
                    period.id,
                    reference_kind,
                    reference_id,
                    narration,
                    normalized,
                    actor_id,
                    is_reversal,
                    reversed_entry_id,
                )
                self._balances.apply_entry(tenant_id, period, entry.id, normalized, accounts)
                self._auditor.record(
                    tenant_id,
                    "journal_entry",
                    entry.id,
                    AuditAction.ENTRY_POSTED,
                    actor_id,
                    {
                        "entry_number": entry.entry_number,
                        "reference_kind": reference_kind,
                        "reference_id": str(reference_id),
                        "total": str(total_debits),
                        "is_reversal": is_reversal,
                    },
                )

            logger.info(
                "entry_posted",
                extra={
                    "entry_id": str(entry.id),
                    "entry_number": entry.entry_number,
                    "entry_date": str(entry_date),
                    "period_code": period.period_code,
                    "line_count": len(normalized),
                    "total": total_debits,
                    "is_reversal": is_reversal,
                },
            )
            return PostingResult(
                entry_id=entry.id,
                entry_number=entry.entry_number,
                entry_date=entry_date,
                period_id=period.id,
                total_debits=total_debits,
                total_credits=total_credits,
                line_count=len(normalized),
                is_reversal=is_reversal,
            )

    def _write_entry(
        self,
        tenant_id: UUID,
        entry_date: date,
        period_id: UUID,
        reference_kind: str,
        reference_id: str,
        narration: str | None,
        lines: Sequence[LineSpec],
        actor_id: UUID,
        is_reversal: bool,
        reversed_entry_id: UUID | None,
    ) -> JournalEntry:
        entry_number = self._sequences.next_value(tenant_id, SequenceService.JOURNAL_ENTRY)

        entry = JournalEntry(
            id=uuid4(),
            tenant_id=tenant_id,
            entry_number=entry_number,
            entry_date=entry_date,
            period_id=period_id,
            reference_kind=reference_kind,
            reference_id=str(reference_id),
            narration=narration,
            status=JournalEntryStatus.POSTED.value,
            actor_id=actor_id,
            posted_at=self.clock.now(),
            is_reversal=is_reversal,
            reversed_entry_id=reversed_entry_id,
            created_by_id=actor_id,
        )
        self.session.add(entry)
        for line_no, line in enumerate(lines, start=1):
            self.session.add(
                JournalEntryLine(
                    tenant_id=tenant_id,
                    journal_entry_id=entry.id,
                    line_no=line_no,
                    account_id=line.account_id,
                    debit=line.debit,
                    credit=line.credit,
                    narration=line.narration,
                    item_reference=line.item_reference,
                    due_date=line.due_date,
                    created_by_id=actor_id,
                )
            )
        self.session.flush()
        return entry


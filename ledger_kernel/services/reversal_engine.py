"""
ReversalEngine -- voids journal entries by posting their mirror image.

Responsibility:
    Neutralizes a posted entry without editing it: a new entry with every
    debit and credit swapped is posted through the PostingEngine, and the
    original is flagged Voided with a link to its mirror.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - The target row is locked before its status is read, so of two
      concurrent voids exactly one succeeds; the other sees AlreadyVoidedError.
    - The mirror is dated by the configured VoidDatePolicy and must land in an
      Open period.
    - The dependency check runs before any write; a non-empty answer aborts
      the void with nothing changed.
    - The mirror post and the Voided flag share one savepoint: both happen
      or neither does.
    - A mirror entry is an ordinary posted entry and may itself be voided.

Failure modes:
    - EntryNotFoundError, AlreadyVoidedError, ClosedPeriodError,
      VoidBlockedError, plus anything the PostingEngine raises for the mirror.
"""

from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.dependencies import DependencyCheck, no_dependencies
from ledger_kernel.domain.dtos import JournalEntryInfo, LineSpec, ReversalResult
from ledger_kernel.domain.policies import LedgerPolicy, VoidDatePolicy
from ledger_kernel.exceptions import (
    AlreadyVoidedError,
    EntryNotFoundError,
    VoidBlockedError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.period_manager import PeriodManager
from ledger_kernel.services.posting_engine import PostingEngine

logger = get_logger("services.reversal_engine")


class ReversalEngine(BaseService):
    """
    Void service.

    Contract:
        void() returns a ReversalResult once the mirror entry exists and the
        original is Voided, both inside the caller's transaction.

    Non-goals:
        - Partial voids.  Adjusting part of an entry is done with a new,
          ordinary posting.
    """

    def __init__(
        self,
        session,
        clock=None,
        policy: LedgerPolicy | None = None,
        dependency_check: DependencyCheck | None = None,
        posting_engine: PostingEngine | None = None,
        periods: PeriodManager | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session, clock)
        self._policy = policy or LedgerPolicy()
        self._dependency_check = dependency_check or no_dependencies
        self._auditor = auditor or AuditorService(session, self.clock)
        self._periods = periods or PeriodManager(
            session, self.clock, policy=self._policy, auditor=self._auditor
        )
        self._posting = posting_engine or PostingEngine(
            session, self.clock, periods=self._periods, auditor=self._auditor
        )

    def void(
        self,
        tenant_id: UUID,
        entry_id: UUID,
        actor_id: UUID,
        reason: str,
        dependency_check: DependencyCheck | None = None,
    ) -> ReversalResult:
        """
        Void a posted entry.

        Args:
            tenant_id: Owning tenant.
            entry_id: Entry to void.
            actor_id: Who voids.
            reason: Recorded on the original and in the mirror's narration.
            dependency_check: Overrides the engine's configured check for
                this call.

        Raises:
            EntryNotFoundError, AlreadyVoidedError, ClosedPeriodError,
            VoidBlockedError.
        """
        with LogContext.bind(
            tenant_id=tenant_id, actor_id=actor_id, entry_id=entry_id, operation="void"
        ):
            entry = self._load_for_update(tenant_id, entry_id)

            if entry.status == JournalEntryStatus.VOIDED:
                logger.warning(
                    "void_rejected_already_voided",
                    extra={"reversal_entry_id": str(entry.reversal_entry_id)},
                )
                raise AlreadyVoidedError(str(entry_id), str(entry.reversal_entry_id))

            if self._policy.void_date_policy == VoidDatePolicy.CURRENT_DATE:
                reversal_date = self.clock.today()
            else:
                reversal_date = entry.entry_date
            self._periods.validate_posting_date(tenant_id, reversal_date)

            info = JournalEntryInfo.from_model(entry)
            check = dependency_check or self._dependency_check
            blocking = tuple(check(tenant_id, info))
            if blocking:
                logger.warning(
                    "void_blocked",
                    extra={
                        "blocking_count": len(blocking),
                        "blocking_kinds": sorted({b.kind for b in blocking}),
                    },
                )
                raise VoidBlockedError(str(entry_id), blocking)

            mirror_lines = [
                LineSpec(
                    account_id=line.account_id,
                    debit=line.debit,
                    credit=line.credit,
                    narration=line.narration,
                    item_reference=line.item_reference,
                    due_date=line.due_date,
                ).mirrored()
                for line in info.lines
            ]
            narration = f"Void of entry #{entry.entry_number}: {reason}"[:500]

            with self.session.begin_nested():
                mirror = self._posting.post(
                    tenant_id,
                    reversal_date,
                    entry.reference_kind,
                    entry.reference_id,
                    narration,
                    mirror_lines,
                    actor_id,
                    is_reversal=True,
                    reversed_entry_id=entry.id,
                )

                entry.status = JournalEntryStatus.VOIDED.value
                entry.voided_at = self.clock.now()
                entry.voided_by_id = actor_id
                entry.void_reason = reason[:500] if reason else None
                entry.reversal_entry_id = mirror.entry_id
                entry.updated_by_id = actor_id
                self.session.flush()

                self._auditor.record(
                    tenant_id,
                    "journal_entry",
                    entry.id,
                    AuditAction.ENTRY_VOIDED,
                    actor_id,
                    {
                        "reversal_entry_id": str(mirror.entry_id),
                        "reversal_date": str(reversal_date),
                        "reason": reason,
                    },
                )

            logger.info(
                "entry_voided",
                extra={
                    "entry_number": entry.entry_number,
                    "reversal_entry_id": str(mirror.entry_id),
                    "reversal_entry_number": mirror.entry_number,
                    "reversal_date": str(reversal_date),
                },
            )
            return ReversalResult(
                original_entry_id=entry.id,
                reversal_entry_id=mirror.entry_id,
                reversal_entry_number=mirror.entry_number,
                reversal_date=reversal_date,
            )

    def _load_for_update(self, tenant_id: UUID, entry_id: UUID) -> JournalEntry:
        entry = self.session.execute(
            select(JournalEntry)
            .where(JournalEntry.tenant_id == tenant_id, JournalEntry.id == entry_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

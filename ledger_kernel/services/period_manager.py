"""
PeriodManager -- fiscal period lifecycle and the posting date gate.

Responsibility:
    Opens non-overlapping periods, moves them through
    Open -> Closed -> Locked (with an optional Closed -> Open reopen), and
    answers "may an entry dated D be posted?" for the PostingEngine and the
    ReversalEngine.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - Periods of a tenant never overlap; period codes are unique per tenant.
    - Only Open periods accept postings.
    - Locked is terminal.  Reopen is allowed from Closed only, and only when
      the engine policy allows it.
    - The posting gate takes a shared row lock on the period and close/lock
      take an exclusive one, so a close cannot slip in between a post's gate
      check and its commit.

Failure modes:
    - ClosedPeriodError / PeriodNotFoundError from the posting gate.
    - PeriodOverlapError, DuplicatePeriodCodeError on open.
    - InvalidPeriodTransitionError, PeriodImmutableError,
      PeriodHasOpenDependentsError on lifecycle transitions.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.dependencies import CloseGuard, no_open_dependents
from ledger_kernel.domain.dtos import FiscalPeriodInfo
from ledger_kernel.domain.policies import LedgerPolicy
from ledger_kernel.exceptions import (
    ClosedPeriodError,
    DuplicatePeriodCodeError,
    InvalidPeriodTransitionError,
    PeriodHasOpenDependentsError,
    PeriodImmutableError,
    PeriodNotFoundError,
    PeriodOverlapError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.base import BaseService

logger = get_logger("services.period_manager")


class PeriodManager(BaseService):
    """
    Fiscal period service.

    Contract:
        Every method is scoped by tenant_id.  Transition methods return a
        fresh FiscalPeriodInfo snapshot.

    Non-goals:
        - Does NOT compute closing entries; see
          reporting.statements.year_end_closing_lines.
    """

    def __init__(
        self,
        session,
        clock=None,
        policy: LedgerPolicy | None = None,
        close_guard: CloseGuard | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session, clock)
        self._policy = policy or LedgerPolicy()
        self._close_guard = close_guard or no_open_dependents
        self._auditor = auditor or AuditorService(session, self.clock)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open_period(
        self,
        tenant_id: UUID,
        period_code: str,
        name: str,
        start_date: date,
        end_date: date,
        actor_id: UUID,
    ) -> FiscalPeriodInfo:
        """
        Create a new Open fiscal period.

        Raises:
            ValueError: If start_date > end_date.
            DuplicatePeriodCodeError: If the code is already used.
            PeriodOverlapError: If the range overlaps an existing period.
        """
        if start_date > end_date:
            raise ValueError(
                f"start_date ({start_date}) cannot be after end_date ({end_date})"
            )

        duplicate = self.session.execute(
            select(FiscalPeriod.id).where(
                FiscalPeriod.tenant_id == tenant_id,
                FiscalPeriod.period_code == period_code,
            )
        ).first()
        if duplicate is not None:
            raise DuplicatePeriodCodeError(period_code)

        self._validate_no_overlap(tenant_id, period_code, start_date, end_date)

        period = FiscalPeriod(
            tenant_id=tenant_id,
            period_code=period_code,
            name=name,
            start_date=start_date,
            end_date=end_date,
            status=PeriodStatus.OPEN.value,
            created_by_id=actor_id,
        )
        self.session.add(period)
        self.session.flush()

        self._auditor.record(
            tenant_id, "fiscal_period", period.id, AuditAction.PERIOD_OPENED, actor_id,
            {"period_code": period_code, "start_date": str(start_date), "end_date": str(end_date)},
        )
        logger.info(
            "period_opened",
            extra={
                "period_code": period_code,
                "start_date": str(start_date),
                "end_date": str(end_date),
            },
        )
        return FiscalPeriodInfo.from_model(period)

    def _validate_no_overlap(
        self,
        tenant_id: UUID,
        period_code: str,
        start_date: date,
        end_date: date,
    ) -> None:
        # Two ranges overlap iff start1 <= end2 AND start2 <= end1
        overlapping = self.session.execute(
            select(FiscalPeriod)
            .where(
                FiscalPeriod.tenant_id == tenant_id,
                FiscalPeriod.start_date <= end_date,
                FiscalPeriod.end_date >= start_date,
            )
            .limit(1)
        ).scalar_one_or_none()

        if overlapping is not None:
            logger.warning(
                "period_overlap_rejected",
                extra={"period_code": period_code, "existing": overlapping.period_code},
            )
            raise PeriodOverlapError(period_code, overlapping.period_code)

    def close(self, tenant_id: UUID, period_id: UUID, actor_id: UUID) -> FiscalPeriodInfo:
        """
        Open -> Closed.

        The configured close guard runs first; any blocker it reports aborts
        the close without changing the period.

        Raises:
            PeriodNotFoundError, InvalidPeriodTransitionError,
            PeriodHasOpenDependentsError.
        """
        period = self._get_period_for_update(tenant_id, period_id)
        if period.status != PeriodStatus.OPEN:
            raise InvalidPeriodTransitionError(
                period.period_code, str(period.status), PeriodStatus.CLOSED.value
            )

        blockers = tuple(self._close_guard(tenant_id, FiscalPeriodInfo.from_model(period)))
        if blockers:
            logger.warning(
                "period_close_blocked",
                extra={"period_code": period.period_code, "blocker_count": len(blockers)},
            )
            raise PeriodHasOpenDependentsError(period.period_code, blockers)

        period.status = PeriodStatus.CLOSED.value
        period.closed_at = self.clock.now()
        period.closed_by_id = actor_id
        period.updated_by_id = actor_id
        self.session.flush()

        self._auditor.record(
            tenant_id, "fiscal_period", period.id, AuditAction.PERIOD_CLOSED, actor_id
        )
        logger.info("period_closed", extra={"period_code": period.period_code})
        return FiscalPeriodInfo.from_model(period)

    def lock(self, tenant_id: UUID, period_id: UUID, actor_id: UUID) -> FiscalPeriodInfo:
        """
        Closed -> Locked.  Terminal.

        Raises:
            PeriodNotFoundError, InvalidPeriodTransitionError.
        """
        period = self._get_period_for_update(tenant_id, period_id)
        if period.status != PeriodStatus.CLOSED:
            raise InvalidPeriodTransitionError(
                period.period_code, str(period.status), PeriodStatus.LOCKED.value
            )

        period.status = PeriodStatus.LOCKED.value
        period.locked_at = self.clock.now()
        period.locked_by_id = actor_id
        period.updated_by_id = actor_id
        self.session.flush()

        self._auditor.record(
            tenant_id, "fiscal_period", period.id, AuditAction.PERIOD_LOCKED, actor_id
        )
        logger.info("period_locked", extra={"period_code": period.period_code})
        return FiscalPeriodInfo.from_model(period)

    def reopen(self, tenant_id: UUID, period_id: UUID, actor_id: UUID) -> FiscalPeriodInfo:
        """
        Closed -> Open, when the policy allows reopening.

        Raises:
            PeriodNotFoundError.
            PeriodImmutableError: period is Locked, or reopening is disabled.
            InvalidPeriodTransitionError: period is already Open.
        """
        period = self._get_period_for_update(tenant_id, period_id)
        if period.status == PeriodStatus.LOCKED:
            raise PeriodImmutableError(period.period_code, "reopen")
        if period.status != PeriodStatus.CLOSED:
            raise InvalidPeriodTransitionError(
                period.period_code, str(period.status), PeriodStatus.OPEN.value
            )
        if not self._policy.allow_period_reopen:
            raise PeriodImmutableError(period.period_code, "reopen")

        period.status = PeriodStatus.OPEN.value
        period.reopened_at = self.clock.now()
        period.reopened_by_id = actor_id
        period.updated_by_id = actor_id
        self.session.flush()

        self._auditor.record(
            tenant_id, "fiscal_period", period.id, AuditAction.PERIOD_REOPENED, actor_id
        )
        logger.info("period_reopened", extra={"period_code": period.period_code})
        return FiscalPeriodInfo.from_model(period)

    # ------------------------------------------------------------------
    # Posting gate
    # ------------------------------------------------------------------

    def validate_posting_date(self, tenant_id: UUID, entry_date: date) -> FiscalPeriodInfo:
        """
        Return the Open period covering entry_date, share-locked.

        Raises:
            PeriodNotFoundError: no period covers the date.
            ClosedPeriodError: the covering period is Closed or Locked.
        """
        period = self.session.execute(
            select(FiscalPeriod)
            .where(
                FiscalPeriod.tenant_id == tenant_id,
                FiscalPeriod.start_date <= entry_date,
                FiscalPeriod.end_date >= entry_date,
            )
            .with_for_update(read=True)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if period is None:
            logger.warning("posting_period_missing", extra={"entry_date": str(entry_date)})
            raise PeriodNotFoundError(entry_date)

        if period.status != PeriodStatus.OPEN:
            logger.warning(
                "posting_period_closed",
                extra={
                    "entry_date": str(entry_date),
                    "period_code": period.period_code,
                    "status": str(period.status),
                },
            )
            raise ClosedPeriodError(entry_date, period.period_code, str(period.status))

        return FiscalPeriodInfo.from_model(period)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_period_for(self, tenant_id: UUID, on_date: date) -> PeriodStatus | None:
        """Status of the period containing on_date, or None if there is none."""
        period = self.get_period_for_date(tenant_id, on_date)
        return period.status if period else None

    def get_period(self, tenant_id: UUID, period_id: UUID) -> FiscalPeriodInfo:
        period = self.session.execute(
            select(FiscalPeriod).where(
                FiscalPeriod.tenant_id == tenant_id, FiscalPeriod.id == period_id
            )
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(period_id=str(period_id))
        return FiscalPeriodInfo.from_model(period)

    def get_period_by_code(self, tenant_id: UUID, period_code: str) -> FiscalPeriodInfo | None:
        period = self.session.execute(
            select(FiscalPeriod).where(
                FiscalPeriod.tenant_id == tenant_id,
                FiscalPeriod.period_code == period_code,
            )
        ).scalar_one_or_none()
        return FiscalPeriodInfo.from_model(period) if period else None

    def get_period_for_date(self, tenant_id: UUID, on_date: date) -> FiscalPeriodInfo | None:
        period = self.session.execute(
            select(FiscalPeriod).where(
                FiscalPeriod.tenant_id == tenant_id,
                FiscalPeriod.start_date <= on_date,
                FiscalPeriod.end_date >= on_date,
            )
        ).scalar_one_or_none()
        return FiscalPeriodInfo.from_model(period) if period else None

    def list_periods(self, tenant_id: UUID) -> list[FiscalPeriodInfo]:
        periods = self.session.execute(
            select(FiscalPeriod)
            .where(FiscalPeriod.tenant_id == tenant_id)
            .order_by(FiscalPeriod.start_date)
        ).scalars()
        return [FiscalPeriodInfo.from_model(p) for p in periods]

    def _get_period_for_update(self, tenant_id: UUID, period_id: UUID) -> FiscalPeriod:
        period = self.session.execute(
            select(FiscalPeriod)
            .where(FiscalPeriod.tenant_id == tenant_id, FiscalPeriod.id == period_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(period_id=str(period_id))
        return period

"""
LedgerOrchestrator -- transaction-owning facade over the kernel services.

Responsibility:
    Opens one session per call, builds the services on it with the shared
    clock, policy and hooks, runs the operation, and commits or rolls back.
    Database contention is translated into TransactionConflictError so that
    callers only ever see the kernel's exception hierarchy.

Architecture position:
    Kernel > Services -- the outermost kernel layer.  The only place that
    commits.  Services below it stay flush-only.

Invariants enforced:
    - One call, one transaction: a post, its cache update and its audit row
      commit together or not at all.
    - OperationalError (deadlock, serialization failure, lock timeout) and
      IntegrityError (counter or cache uniqueness race) surface as
      TransactionConflictError, which is retryable.  Validation errors are
      re-raised unchanged and are never retried by run_with_retry().

Failure modes:
    - Any LedgerKernelError raised by a service.
    - TransactionConflictError on database contention.
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from typing import Callable, Iterable, Iterator, Sequence, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.engine import get_session_factory, session_scope
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dependencies import CloseGuard, DependencyCheck
from ledger_kernel.domain.dtos import (
    AccountBalanceInfo,
    AccountInfo,
    BalanceDrift,
    FiscalPeriodInfo,
    LineSpec,
    PostingResult,
    RebuildResult,
    ReversalResult,
)
from ledger_kernel.domain.policies import LedgerPolicy
from ledger_kernel.exceptions import LedgerKernelError, TransactionConflictError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import AccountCategory
from ledger_kernel.reporting.aging import STANDARD_BUCKETS, AgeBucket, AgingReport
from ledger_kernel.reporting.report_engine import ReportEngine
from ledger_kernel.reporting.statements import (
    BalanceSheetReport,
    IncomeStatementReport,
    TrialBalanceReport,
)
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.balance_aggregator import BalanceAggregator
from ledger_kernel.services.period_manager import PeriodManager
from ledger_kernel.services.posting_engine import PostingEngine
from ledger_kernel.services.reversal_engine import ReversalEngine

logger = get_logger("services.ledger_orchestrator")

T = TypeVar("T")


@dataclass(frozen=True)
class LedgerServices:
    """The kernel services bound to one session."""

    session: Session
    auditor: AuditorService
    accounts: AccountRegistry
    periods: PeriodManager
    balances: BalanceAggregator
    posting: PostingEngine
    reversal: ReversalEngine
    reports: ReportEngine


class LedgerOrchestrator:
    """
    Entry point for callers that do not manage sessions themselves.

    Contract:
        Every public method runs in its own transaction and returns DTOs
        that stay valid after the session is closed.

    Non-goals:
        - Does NOT retry on its own.  Wrap calls in run_with_retry() where
          a retry is acceptable to the caller.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        policy: LedgerPolicy | None = None,
        dependency_check: DependencyCheck | None = None,
        close_guard: CloseGuard | None = None,
        aging_buckets: Sequence[AgeBucket] = STANDARD_BUCKETS,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._policy = policy or LedgerPolicy()
        self._dependency_check = dependency_check
        self._close_guard = close_guard
        self._aging_buckets = tuple(aging_buckets)

    # ------------------------------------------------------------------
    # Transaction scope
    # ------------------------------------------------------------------

    def build_services(self, session: Session) -> LedgerServices:
        """Wire the services onto a caller-owned session."""
        auditor = AuditorService(session, self._clock)
        accounts = AccountRegistry(session, self._clock, auditor)
        periods = PeriodManager(
            session,
            self._clock,
            policy=self._policy,
            close_guard=self._close_guard,
            auditor=auditor,
        )
        balances = BalanceAggregator(session, self._clock, auditor)
        posting = PostingEngine(
            session,
            self._clock,
            accounts=accounts,
            periods=periods,
            balances=balances,
            auditor=auditor,
        )
        reversal = ReversalEngine(
            session,
            self._clock,
            policy=self._policy,
            dependency_check=self._dependency_check,
            posting_engine=posting,
            periods=periods,
            auditor=auditor,
        )
        reports = ReportEngine(session, self._clock, buckets=self._aging_buckets)
        return LedgerServices(
            session=session,
            auditor=auditor,
            accounts=accounts,
            periods=periods,
            balances=balances,
            posting=posting,
            reversal=reversal,
            reports=reports,
        )

    @contextmanager
    def unit_of_work(self, operation: str) -> Iterator[LedgerServices]:
        """
        One transaction around a block of service calls.

        Commits when the block exits normally, rolls back otherwise.
        """
        factory = self._session_factory or get_session_factory()
        with LogContext.bind(correlation_id=str(uuid4()), operation=operation):
            t0 = time.monotonic()
            try:
                with session_scope(factory) as session:
                    yield self.build_services(session)
            except (OperationalError, IntegrityError) as exc:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                detail = str(getattr(exc, "orig", None) or exc)
                logger.warning(
                    "transaction_conflict",
                    extra={
                        "error_type": type(exc).__name__,
                        "detail": detail,
                        "duration_ms": duration_ms,
                    },
                )
                raise TransactionConflictError(operation, detail) from exc
            except LedgerKernelError as exc:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                logger.info(
                    "operation_rejected",
                    extra={"error_code": exc.code, "duration_ms": duration_ms},
                )
                raise
            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.debug("operation_completed", extra={"duration_ms": duration_ms})

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(
        self,
        tenant_id: UUID,
        code: str,
        name: str,
        category: AccountCategory | str,
        actor_id: UUID,
        parent_id: UUID | None = None,
        is_system: bool = False,
        tags: Iterable[str] = (),
    ) -> AccountInfo:
        with self.unit_of_work("create_account") as svc:
            return svc.accounts.create_account(
                tenant_id,
                code,
                name,
                category,
                actor_id,
                parent_id=parent_id,
                is_system=is_system,
                tags=tags,
            )

    def deactivate_account(self, tenant_id: UUID, account_id: UUID, actor_id: UUID) -> AccountInfo:
        with self.unit_of_work("deactivate_account") as svc:
            return svc.accounts.deactivate(tenant_id, account_id, actor_id)

    def reactivate_account(self, tenant_id: UUID, account_id: UUID, actor_id: UUID) -> AccountInfo:
        with self.unit_of_work("reactivate_account") as svc:
            return svc.accounts.reactivate(tenant_id, account_id, actor_id)

    # ------------------------------------------------------------------
    # Periods
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
        with self.unit_of_work("open_period") as svc:
            return svc.periods.open_period(
                tenant_id, period_code, name, start_date, end_date, actor_id
            )

    def close_period(self, tenant_id: UUID, period_id: UUID, actor_id: UUID) -> FiscalPeriodInfo:
        with self.unit_of_work("close_period") as svc:
            return svc.periods.close(tenant_id, period_id, actor_id)

    def lock_period(self, tenant_id: UUID, period_id: UUID, actor_id: UUID) -> FiscalPeriodInfo:
        with self.unit_of_work("lock_period") as svc:
            return svc.periods.lock(tenant_id, period_id, actor_id)

    def reopen_period(self, tenant_id: UUID, period_id: UUID, actor_id: UUID) -> FiscalPeriodInfo:
        with self.unit_of_work("reopen_period") as svc:
            return svc.periods.reopen(tenant_id, period_id, actor_id)

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------

    def post(
        self,
        tenant_id: UUID,
        entry_date: date,
        reference_kind: str,
        reference_id: str,
        narration: str | None,
        lines: Sequence[LineSpec],
        actor_id: UUID,
    ) -> PostingResult:
        with self.unit_of_work("post") as svc:
            return svc.posting.post(
                tenant_id, entry_date, reference_kind, reference_id, narration, lines, actor_id
            )

    def void(
        self,
        tenant_id: UUID,
        entry_id: UUID,
        actor_id: UUID,
        reason: str,
        dependency_check: DependencyCheck | None = None,
    ) -> ReversalResult:
        with self.unit_of_work("void") as svc:
            return svc.reversal.void(
                tenant_id, entry_id, actor_id, reason, dependency_check=dependency_check
            )

    # ------------------------------------------------------------------
    # Balance cache
    # ------------------------------------------------------------------

    def get_balance(
        self, tenant_id: UUID, account_id: UUID, period_id: UUID
    ) -> AccountBalanceInfo | None:
        with self.unit_of_work("get_balance") as svc:
            return svc.balances.get_balance(tenant_id, account_id, period_id)

    def detect_drift(self, tenant_id: UUID, period_id: UUID) -> list[BalanceDrift]:
        with self.unit_of_work("detect_drift") as svc:
            return svc.balances.detect_drift(tenant_id, period_id)

    def rebuild_balances(
        self, tenant_id: UUID, period_id: UUID, actor_id: UUID | None = None
    ) -> RebuildResult:
        with self.unit_of_work("rebuild_balances") as svc:
            return svc.balances.rebuild(tenant_id, period_id, actor_id)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def trial_balance(self, tenant_id: UUID, start_date: date, end_date: date) -> TrialBalanceReport:
        with self.unit_of_work("trial_balance") as svc:
            return svc.reports.trial_balance(tenant_id, start_date, end_date)

    def balance_sheet(self, tenant_id: UUID, as_of_date: date) -> BalanceSheetReport:
        with self.unit_of_work("balance_sheet") as svc:
            return svc.reports.balance_sheet(tenant_id, as_of_date)

    def income_statement(
        self, tenant_id: UUID, start_date: date, end_date: date
    ) -> IncomeStatementReport:
        with self.unit_of_work("income_statement") as svc:
            return svc.reports.income_statement(tenant_id, start_date, end_date)

    def aged_receivables(self, tenant_id: UUID, as_of_date: date) -> AgingReport:
        with self.unit_of_work("aged_receivables") as svc:
            return svc.reports.aged_receivables(tenant_id, as_of_date)

    def aged_payables(self, tenant_id: UUID, as_of_date: date) -> AgingReport:
        with self.unit_of_work("aged_payables") as svc:
            return svc.reports.aged_payables(tenant_id, as_of_date)


def run_with_retry(
    operation: Callable[[], T],
    attempts: int = 3,
    backoff_seconds: float = 0.05,
) -> T:
    """
    Call operation() until it succeeds or a non-retryable error occurs.

    Only errors whose ``retryable`` flag is set are retried; the last one is
    re-raised once attempts are exhausted.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except LedgerKernelError as exc:
            if not exc.retryable or attempt == attempts:
                raise
            logger.warning(
                "operation_retrying",
                extra={"attempt": attempt, "max_attempts": attempts, "error_code": exc.code},
            )
            time.sleep(backoff_seconds * attempt)
    raise AssertionError("unreachable")

"""
BalanceAggregator -- incremental per-account, per-period balance cache.

Responsibility:
    Keeps account_balances in step with journal_entry_lines.  Every post
    (including void mirrors) applies its lines to the cache inside the same
    savepoint that inserts them, so the cache and the ledger commit together.
    rebuild() recomputes a period purely from lines; detect_drift() reports
    differences without writing.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Called by the
    PostingEngine; rebuild/detect_drift are also exposed through the
    LedgerOrchestrator.

Invariants enforced:
    - closing = opening + natural(debit_total, credit_total) on every row.
    - opening = natural balance of all lines dated before the period start.
      A post therefore shifts the opening and closing of the same account's
      rows in every later period.
    - Rows are locked in (account_id, period start) order.  Concurrent posts
      touching overlapping accounts acquire locks in the same order and
      cannot deadlock on the cache.
    - After any sequence of posts and voids, rebuild() reproduces the
      cached values exactly.

Failure modes:
    - IntegrityError when two transactions create the same cache row at once
      is absorbed with a savepoint and a re-read of the winner's row.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ledger_kernel.db.types import MONEY_CONTEXT, money_sum
from ledger_kernel.domain.balances import compute_natural_balance
from ledger_kernel.domain.dtos import (
    AccountBalanceInfo,
    AccountInfo,
    BalanceDrift,
    FiscalPeriodInfo,
    RebuildResult,
)
from ledger_kernel.exceptions import PeriodNotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.account_balance import AccountBalance
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.models.fiscal_period import FiscalPeriod
from ledger_kernel.models.journal import JournalEntry, JournalEntryLine
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.base import BaseService

logger = get_logger("services.balance_aggregator")

ZERO = Decimal("0")


@dataclass(frozen=True)
class _Movement:
    debit: Decimal
    credit: Decimal


class BalanceAggregator(BaseService):
    """
    Balance cache service.

    Non-goals:
        - Does NOT validate postings; it trusts the PostingEngine's checks.
    """

    def __init__(self, session, clock=None, auditor: AuditorService | None = None):
        super().__init__(session, clock)
        self._auditor = auditor or AuditorService(session, self.clock)

    # ------------------------------------------------------------------
    # Incremental update
    # ------------------------------------------------------------------

    def apply_entry(
        self,
        tenant_id: UUID,
        period: FiscalPeriodInfo,
        entry_id: UUID,
        lines: Iterable,
        accounts: Mapping[UUID, AccountInfo],
    ) -> None:
        """
        Apply one entry's lines to the cache.

        Preconditions:
            - The entry's lines are already flushed (they are excluded by
              entry_id when a missing row is seeded from the ledger).
            - accounts maps every line's account_id to its AccountInfo.
        """
        movements: dict[UUID, list[Decimal]] = defaultdict(lambda: [ZERO, ZERO])
        for line in lines:
            movement = movements[line.account_id]
            movement[0] = MONEY_CONTEXT.add(movement[0], line.debit)
            movement[1] = MONEY_CONTEXT.add(movement[1], line.credit)

        for account_id in sorted(movements, key=str):
            debit, credit = movements[account_id]
            account = accounts[account_id]
            delta = compute_natural_balance(debit, credit, account.normal_balance)

            row = self._lock_or_create_row(tenant_id, account, period, entry_id)
            row.debit_total = MONEY_CONTEXT.add(row.debit_total, debit)
            row.credit_total = MONEY_CONTEXT.add(row.credit_total, credit)
            row.closing_balance = MONEY_CONTEXT.add(
                row.opening_balance,
                compute_natural_balance(
                    row.debit_total, row.credit_total, account.normal_balance
                ),
            )

            if delta != ZERO:
                self._shift_later_periods(tenant_id, account_id, period.end_date, delta)

        self.session.flush()
        logger.debug(
            "balances_applied",
            extra={
                "period_code": period.period_code,
                "account_count": len(movements),
            },
        )

    def _row_query(self, tenant_id: UUID, account_id: UUID, period_id: UUID):
        return (
            select(AccountBalance)
            .where(
                AccountBalance.tenant_id == tenant_id,
                AccountBalance.account_id == account_id,
                AccountBalance.period_id == period_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    def _lock_or_create_row(
        self,
        tenant_id: UUID,
        account: AccountInfo,
        period: FiscalPeriodInfo,
        entry_id: UUID,
    ) -> AccountBalance:
        row = self.session.execute(
            self._row_query(tenant_id, account.id, period.id)
        ).scalar_one_or_none()
        if row is not None:
            return row

        # Seed from the ledger, leaving out the entry being applied
        before = self._movements(tenant_id, end_before=period.start_date, exclude_entry_id=entry_id,
                                 account_ids=[account.id]).get(account.id)
        during = self._movements(tenant_id, start=period.start_date, end=period.end_date,
                                 exclude_entry_id=entry_id, account_ids=[account.id]).get(account.id)
        opening = (
            compute_natural_balance(before.debit, before.credit, account.normal_balance)
            if before else ZERO
        )
        debit_total = during.debit if during else ZERO
        credit_total = during.credit if during else ZERO

        savepoint = self.session.begin_nested()
        try:
            row = AccountBalance(
                tenant_id=tenant_id,
                account_id=account.id,
                period_id=period.id,
                opening_balance=opening,
                debit_total=debit_total,
                credit_total=credit_total,
                closing_balance=opening
                + compute_natural_balance(debit_total, credit_total, account.normal_balance),
            )
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
            return row
        except IntegrityError:
            logger.debug(
                "balance_row_race_retry",
                extra={"account_id": str(account.id), "period_code": period.period_code},
            )
            savepoint.rollback()
            row = self.session.execute(
                self._row_query(tenant_id, account.id, period.id)
            ).scalar_one_or_none()
            if row is None:
                raise
            return row

    def _shift_later_periods(
        self, tenant_id: UUID, account_id: UUID, after: date, delta: Decimal
    ) -> None:
        later_rows = self.session.execute(
            select(AccountBalance)
            .join(FiscalPeriod, FiscalPeriod.id == AccountBalance.period_id)
            .where(
                AccountBalance.tenant_id == tenant_id,
                AccountBalance.account_id == account_id,
                FiscalPeriod.start_date > after,
            )
            .order_by(FiscalPeriod.start_date)
            .with_for_update(of=AccountBalance)
            .execution_options(populate_existing=True)
        ).scalars().all()
        for row in later_rows:
            row.opening_balance = MONEY_CONTEXT.add(row.opening_balance, delta)
            row.closing_balance = MONEY_CONTEXT.add(row.closing_balance, delta)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(
        self, tenant_id: UUID, account_id: UUID, period_id: UUID
    ) -> AccountBalanceInfo | None:
        row = self.session.execute(
            select(AccountBalance).where(
                AccountBalance.tenant_id == tenant_id,
                AccountBalance.account_id == account_id,
                AccountBalance.period_id == period_id,
            )
        ).scalar_one_or_none()
        return AccountBalanceInfo.from_model(row) if row else None

    def list_balances(self, tenant_id: UUID, period_id: UUID) -> list[AccountBalanceInfo]:
        rows = self.session.execute(
            select(AccountBalance).where(
                AccountBalance.tenant_id == tenant_id,
                AccountBalance.period_id == period_id,
            )
        ).scalars()
        return sorted(
            (AccountBalanceInfo.from_model(r) for r in rows),
            key=lambda b: str(b.account_id),
        )

    # ------------------------------------------------------------------
    # Recompute from lines
    # ------------------------------------------------------------------

    def _movements(
        self,
        tenant_id: UUID,
        start: date | None = None,
        end: date | None = None,
        end_before: date | None = None,
        exclude_entry_id: UUID | None = None,
        account_ids: Sequence[UUID] | None = None,
    ) -> dict[UUID, _Movement]:
        stmt = (
            select(
                JournalEntryLine.account_id,
                money_sum(JournalEntryLine.debit),
                money_sum(JournalEntryLine.credit),
            )
            .join(JournalEntry, JournalEntry.id == JournalEntryLine.journal_entry_id)
            .where(JournalEntryLine.tenant_id == tenant_id)
            .group_by(JournalEntryLine.account_id)
        )
        if start is not None:
            stmt = stmt.where(JournalEntry.entry_date >= start)
        if end is not None:
            stmt = stmt.where(JournalEntry.entry_date <= end)
        if end_before is not None:
            stmt = stmt.where(JournalEntry.entry_date < end_before)
        if exclude_entry_id is not None:
            stmt = stmt.where(JournalEntry.id != exclude_entry_id)
        if account_ids is not None:
            stmt = stmt.where(JournalEntryLine.account_id.in_(account_ids))
        return {
            account_id: _Movement(debit or ZERO, credit or ZERO)
            for account_id, debit, credit in self.session.execute(stmt)
        }

    def _expected_balances(
        self, tenant_id: UUID, period: FiscalPeriodInfo
    ) -> dict[UUID, AccountBalanceInfo]:
        during = self._movements(tenant_id, start=period.start_date, end=period.end_date)
        if not during:
            return {}
        before = self._movements(
            tenant_id, end_before=period.start_date, account_ids=list(during)
        )
        normal_balances = dict(
            self.session.execute(
                select(Account.id, Account.normal_balance).where(
                    Account.tenant_id == tenant_id, Account.id.in_(list(during))
                )
            ).all()
        )

        expected: dict[UUID, AccountBalanceInfo] = {}
        for account_id, movement in during.items():
            normal = normal_balances[account_id]
            prior = before.get(account_id)
            opening = (
                compute_natural_balance(prior.debit, prior.credit, normal) if prior else ZERO
            )
            expected[account_id] = AccountBalanceInfo(
                account_id=account_id,
                period_id=period.id,
                opening_balance=opening,
                debit_total=movement.debit,
                credit_total=movement.credit,
                closing_balance=MONEY_CONTEXT.add(
                    opening, compute_natural_balance(movement.debit, movement.credit, normal)
                ),
            )
        return expected

    def _cached_rows(self, tenant_id: UUID, period_id: UUID) -> dict[UUID, AccountBalance]:
        rows = self.session.execute(
            select(AccountBalance)
            .where(
                AccountBalance.tenant_id == tenant_id,
                AccountBalance.period_id == period_id,
            )
            .execution_options(populate_existing=True)
        ).scalars()
        return {row.account_id: row for row in rows}

    def _diff(
        self,
        period: FiscalPeriodInfo,
        cached: Mapping[UUID, AccountBalance],
        expected: Mapping[UUID, AccountBalanceInfo],
    ) -> tuple[BalanceDrift, ...]:
        drift: list[BalanceDrift] = []
        for account_id in sorted(set(cached) | set(expected), key=str):
            row = cached.get(account_id)
            cached_info = AccountBalanceInfo.from_model(row) if row is not None else None
            expected_info = expected.get(account_id)
            if cached_info is None or expected_info is None:
                drift.append(BalanceDrift(account_id, period.id, cached_info, expected_info))
            elif not cached_info.same_values(expected_info):
                drift.append(BalanceDrift(account_id, period.id, cached_info, expected_info))
        return tuple(drift)

    def _get_period(self, tenant_id: UUID, period_id: UUID) -> FiscalPeriodInfo:
        period = self.session.execute(
            select(FiscalPeriod).where(
                FiscalPeriod.tenant_id == tenant_id, FiscalPeriod.id == period_id
            )
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(period_id=str(period_id))
        return FiscalPeriodInfo.from_model(period)

    def detect_drift(self, tenant_id: UUID, period_id: UUID) -> list[BalanceDrift]:
        """
        Compare cached rows of a period against values recomputed from lines.

        Read-only; an empty list means the cache is consistent.
        """
        period = self._get_period(tenant_id, period_id)
        drift = self._diff(
            period,
            self._cached_rows(tenant_id, period_id),
            self._expected_balances(tenant_id, period),
        )
        if drift:
            logger.warning(
                "balance_drift_detected",
                extra={"period_code": period.period_code, "drift_count": len(drift)},
            )
        return list(drift)

    def rebuild(
        self, tenant_id: UUID, period_id: UUID, actor_id: UUID | None = None
    ) -> RebuildResult:
        """
        Rewrite every cache row of the period from journal_entry_lines.

        Postconditions:
            - The period's rows equal the recomputed values exactly.
            - The returned RebuildResult lists the drift that was repaired.
        """
        period = self._get_period(tenant_id, period_id)
        expected = self._expected_balances(tenant_id, period)

        cached = {}
        for account_id in sorted(expected, key=str):
            row = self.session.execute(
                self._row_query(tenant_id, account_id, period_id)
            ).scalar_one_or_none()
            if row is not None:
                cached[account_id] = row
        for account_id, row in self._cached_rows(tenant_id, period_id).items():
            cached.setdefault(account_id, row)

        drift = self._diff(period, cached, expected)

        for account_id, row in cached.items():
            if account_id not in expected:
                self.session.delete(row)
        for account_id, values in expected.items():
            row = cached.get(account_id)
            if row is None:
                row = AccountBalance(
                    tenant_id=tenant_id, account_id=account_id, period_id=period_id
                )
                self.session.add(row)
            row.opening_balance = values.opening_balance
            row.debit_total = values.debit_total
            row.credit_total = values.credit_total
            row.closing_balance = values.closing_balance
        self.session.flush()

        if actor_id is not None:
            self._auditor.record(
                tenant_id, "fiscal_period", period_id, AuditAction.BALANCES_REBUILT, actor_id,
                {"rows_rebuilt": len(expected), "drift_count": len(drift)},
            )
        log = logger.warning if drift else logger.info
        log(
            "balances_rebuilt",
            extra={
                "period_code": period.period_code,
                "rows_rebuilt": len(expected),
                "drift_count": len(drift),
            },
        )
        return RebuildResult(
            tenant_id=tenant_id,
            period_id=period_id,
            rows_rebuilt=len(expected),
            drift=drift,
        )

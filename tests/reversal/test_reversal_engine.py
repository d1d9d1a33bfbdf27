"""
ReversalEngine tests.

Verifies:
- A void posts the mirror entry and flags the original Voided
- Original and mirror net to zero per account in the trial balance
- A second void of the same entry raises AlreadyVoidedError
- Dependency checks block a void with nothing changed
- The mirror is dated by the configured void-date policy
- A void whose mirror date falls in a closed period is refused
- A mirror entry may itself be voided
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dependencies import DependencyRegistry
from ledger_kernel.domain.dtos import BlockingReference
from ledger_kernel.domain.policies import LedgerPolicy, VoidDatePolicy
from ledger_kernel.exceptions import (
    AlreadyVoidedError,
    ClosedPeriodError,
    EntryNotFoundError,
    VoidBlockedError,
)
from ledger_kernel.models.journal import JournalEntryStatus
from ledger_kernel.services.reversal_engine import ReversalEngine


class TestVoid:
    """Voiding posts a mirror and flags the original."""

    def test_void_creates_mirror(
        self, post_sale, reversal_engine, journal_selector, tenant_id, test_actor_id, january
    ):
        original = post_sale()

        result = reversal_engine.void(tenant_id, original.entry_id, test_actor_id, "duplicate invoice")

        assert result.original_entry_id == original.entry_id
        assert result.reversal_entry_number == original.entry_number + 1
        assert result.reversal_date == date(2024, 1, 15)

        voided = journal_selector.get_entry(tenant_id, original.entry_id)
        assert voided.status == JournalEntryStatus.VOIDED
        assert voided.is_voided
        assert voided.reversal_entry_id == result.reversal_entry_id
        assert voided.void_reason == "duplicate invoice"
        assert voided.voided_by_id == test_actor_id

        mirror = journal_selector.get_entry(tenant_id, result.reversal_entry_id)
        assert mirror.is_reversal
        assert mirror.reversed_entry_id == original.entry_id
        assert mirror.status == JournalEntryStatus.POSTED
        assert mirror.narration.startswith(f"Void of entry #{original.entry_number}")
        assert [(l.account_id, l.debit, l.credit) for l in mirror.lines] == [
            (l.account_id, l.credit, l.debit) for l in voided.lines
        ]

    def test_trial_balance_nets_to_zero(
        self, post_sale, reversal_engine, report_engine, tenant_id, test_actor_id, january
    ):
        original = post_sale()
        reversal_engine.void(tenant_id, original.entry_id, test_actor_id, "wrong customer")

        report = report_engine.trial_balance(tenant_id, date(2024, 1, 1), date(2024, 1, 31))

        assert report.is_balanced
        assert len(report.rows) == 3
        for row in report.rows:
            assert row.net_debit == Decimal("0")
            assert row.debit_total == row.credit_total

    def test_second_void_rejected(
        self, post_sale, reversal_engine, journal_selector, tenant_id, test_actor_id, january
    ):
        original = post_sale()
        first = reversal_engine.void(tenant_id, original.entry_id, test_actor_id, "first")

        with pytest.raises(AlreadyVoidedError) as exc_info:
            reversal_engine.void(tenant_id, original.entry_id, test_actor_id, "second")

        assert exc_info.value.reversal_entry_id == str(first.reversal_entry_id)
        assert journal_selector.count_entries(tenant_id) == 2

    def test_unknown_entry_rejected(self, reversal_engine, tenant_id, test_actor_id, january):
        with pytest.raises(EntryNotFoundError):
            reversal_engine.void(tenant_id, uuid4(), test_actor_id, "nothing there")

    def test_other_tenant_cannot_void(
        self, post_sale, reversal_engine, other_tenant_id, test_actor_id, january
    ):
        original = post_sale()
        with pytest.raises(EntryNotFoundError):
            reversal_engine.void(other_tenant_id, original.entry_id, test_actor_id, "not mine")

    def test_mirror_can_be_voided(
        self, post_sale, reversal_engine, report_engine, journal_selector, tenant_id,
        test_actor_id, january,
    ):
        original = post_sale()
        first = reversal_engine.void(tenant_id, original.entry_id, test_actor_id, "mistake")

        second = reversal_engine.void(
            tenant_id, first.reversal_entry_id, test_actor_id, "void was a mistake"
        )

        assert journal_selector.get_entry(tenant_id, first.reversal_entry_id).is_voided
        assert journal_selector.count_entries(tenant_id) == 3
        report = report_engine.trial_balance(tenant_id, date(2024, 1, 1), date(2024, 1, 31))
        cash_row = next(r for r in report.rows if r.account_code == "1000")
        # Original, mirror, mirror-of-mirror: the sale's effect is back
        assert cash_row.net_debit == Decimal("530.00")
        assert second.reversal_entry_number == 3

    def test_void_is_logged(
        self, post_sale, reversal_engine, tenant_id, test_actor_id, january, captured_logs
    ):
        original = post_sale()
        reversal_engine.void(tenant_id, original.entry_id, test_actor_id, "typo")

        voided = [r for r in captured_logs() if r["message"] == "entry_voided"]
        assert len(voided) == 1
        assert voided[0]["entry_id"] == str(original.entry_id)
        assert voided[0]["operation"] == "void"


class TestVoidDependencies:
    """Dependency checks run before any write."""

    def test_blocked_void_changes_nothing(
        self, post_sale, reversal_engine, journal_selector, tenant_id, test_actor_id, january
    ):
        original = post_sale(reference_id="INV-7")
        registry = DependencyRegistry()
        registry.register(
            "sales_invoice",
            lambda tenant, entry: [
                BlockingReference("payment", "PAY-1", f"applied to {entry.reference_id}")
            ],
        )

        with pytest.raises(VoidBlockedError) as exc_info:
            reversal_engine.void(
                tenant_id, original.entry_id, test_actor_id, "customer dispute",
                dependency_check=registry,
            )

        assert exc_info.value.blocking == (
            BlockingReference("payment", "PAY-1", "applied to INV-7"),
        )
        entry = journal_selector.get_entry(tenant_id, original.entry_id)
        assert entry.status == JournalEntryStatus.POSTED
        assert entry.reversal_entry_id is None
        assert journal_selector.count_entries(tenant_id) == 1

    def test_check_for_other_kind_does_not_block(
        self, post_sale, reversal_engine, tenant_id, test_actor_id, january
    ):
        original = post_sale()
        registry = DependencyRegistry()
        registry.register(
            "purchase_invoice",
            lambda tenant, entry: [BlockingReference("payment", "PAY-9")],
        )

        result = reversal_engine.void(
            tenant_id, original.entry_id, test_actor_id, "ok", dependency_check=registry
        )
        assert result.reversal_entry_id is not None

    def test_wildcard_check_runs_for_every_kind(self, post_sale, reversal_engine, tenant_id,
                                               test_actor_id, january):
        original = post_sale()
        seen = []
        registry = DependencyRegistry()

        def _audit_hold(tenant, entry):
            seen.append(entry.id)
            return [BlockingReference("audit_hold", "HOLD-1")]

        registry.register(DependencyRegistry.WILDCARD, _audit_hold)

        with pytest.raises(VoidBlockedError):
            reversal_engine.void(
                tenant_id, original.entry_id, test_actor_id, "x", dependency_check=registry
            )
        assert seen == [original.entry_id]

    def test_engine_level_check(
        self, session, post_sale, deterministic_clock, period_manager, posting_engine, tenant_id,
        test_actor_id, january,
    ):
        original = post_sale()
        engine = ReversalEngine(
            session,
            deterministic_clock,
            dependency_check=lambda tenant, entry: [BlockingReference("settlement", "S-1")],
            posting_engine=posting_engine,
            periods=period_manager,
        )

        with pytest.raises(VoidBlockedError):
            engine.void(tenant_id, original.entry_id, test_actor_id, "blocked")


class TestVoidDatePolicy:
    """The mirror's date follows the policy and must be in an open period."""

    def test_original_date_policy(self, post_sale, reversal_engine, tenant_id, test_actor_id,
                                  january, february, deterministic_clock):
        original = post_sale(entry_date=date(2024, 1, 10))
        deterministic_clock.set_time(datetime(2024, 2, 5, 9, 0, tzinfo=timezone.utc))

        result = reversal_engine.void(tenant_id, original.entry_id, test_actor_id, "late catch")

        assert result.reversal_date == date(2024, 1, 10)

    def test_current_date_policy(
        self, session, post_sale, deterministic_clock, period_manager, posting_engine, tenant_id,
        test_actor_id, january, february, journal_selector,
    ):
        original = post_sale(entry_date=date(2024, 1, 10))
        deterministic_clock.set_time(datetime(2024, 2, 5, 9, 0, tzinfo=timezone.utc))
        engine = ReversalEngine(
            session,
            deterministic_clock,
            policy=LedgerPolicy(void_date_policy=VoidDatePolicy.CURRENT_DATE),
            posting_engine=posting_engine,
            periods=period_manager,
        )

        result = engine.void(tenant_id, original.entry_id, test_actor_id, "late catch")

        assert result.reversal_date == date(2024, 2, 5)
        mirror = journal_selector.get_entry(tenant_id, result.reversal_entry_id)
        assert mirror.period_id == february.id

    def test_void_into_closed_period_rejected(
        self, post_sale, reversal_engine, period_manager, journal_selector, tenant_id,
        test_actor_id, january,
    ):
        original = post_sale()
        period_manager.close(tenant_id, january.id, test_actor_id)

        with pytest.raises(ClosedPeriodError):
            reversal_engine.void(tenant_id, original.entry_id, test_actor_id, "too late")

        assert not journal_selector.get_entry(tenant_id, original.entry_id).is_voided
        assert journal_selector.count_entries(tenant_id) == 1

    def test_current_date_policy_into_open_period_after_close(
        self, session, post_sale, deterministic_clock, period_manager, posting_engine, tenant_id,
        test_actor_id, january, february,
    ):
        original = post_sale(entry_date=date(2024, 1, 10))
        period_manager.close(tenant_id, january.id, test_actor_id)
        deterministic_clock.set_time(datetime(2024, 2, 5, 9, 0, tzinfo=timezone.utc))
        engine = ReversalEngine(
            session,
            deterministic_clock,
            policy=LedgerPolicy(void_date_policy=VoidDatePolicy.CURRENT_DATE),
            posting_engine=posting_engine,
            periods=period_manager,
        )

        result = engine.void(tenant_id, original.entry_id, test_actor_id, "after close")

        assert result.reversal_date == date(2024, 2, 5)

"""
Property-based posting tests (hypothesis).

Verifies, for generated line sets:
- Every balanced set posts, and the trial balance and balance sheet balance
- The balance cache agrees with a rebuild from lines
- Any imbalance, however small, is rejected with nothing written
- Voiding any posted entry brings every account back to zero
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from ledger_kernel.domain.dtos import LineSpec
from ledger_kernel.exceptions import UnbalancedEntryError
from ledger_kernel.models.account import AccountCategory

CATEGORIES = (
    AccountCategory.ASSET,
    AccountCategory.LIABILITY,
    AccountCategory.REVENUE,
    AccountCategory.EXPENSE,
)

FUZZ_SETTINGS = settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)

# Cents up to 100,000.00
amounts = st.integers(min_value=1, max_value=10_000_000).map(lambda cents: Decimal(cents).scaleb(-2))

transfers = st.lists(
    st.tuples(
        amounts,
        st.integers(min_value=0, max_value=len(CATEGORIES) - 1),
        st.integers(min_value=0, max_value=len(CATEGORIES) - 1),
    ),
    min_size=1,
    max_size=4,
)


@pytest.fixture
def fresh_ledger(account_registry, period_manager, test_actor_id):
    """Factory giving each generated example its own tenant, accounts and period."""

    def _make():
        tenant = uuid4()
        accounts = [
            account_registry.create_account(
                tenant, f"{i + 1}000", category.value, category, test_actor_id
            )
            for i, category in enumerate(CATEGORIES)
        ]
        period = period_manager.open_period(
            tenant, "2024-01", "January 2024", date(2024, 1, 1), date(2024, 1, 31), test_actor_id
        )
        return tenant, accounts, period

    return _make


def _lines(accounts, generated):
    lines = []
    for amount, debit_index, credit_index in generated:
        lines.append(LineSpec.debiting(accounts[debit_index].id, amount))
        lines.append(LineSpec.crediting(accounts[credit_index].id, amount))
    return lines


class TestPostingProperties:

    @FUZZ_SETTINGS
    @given(generated=transfers)
    def test_balanced_sets_post_and_reports_balance(
        self, fresh_ledger, posting_engine, report_engine, balance_aggregator, test_actor_id,
        generated,
    ):
        tenant, accounts, period = fresh_ledger()
        lines = _lines(accounts, generated)

        result = posting_engine.post(
            tenant, date(2024, 1, 15), "fuzz", "F-1", None, lines, test_actor_id
        )

        expected_total = sum((amount for amount, _, _ in generated), Decimal("0"))
        assert result.total_debits == expected_total
        trial = report_engine.trial_balance(tenant, date(2024, 1, 1), date(2024, 1, 31))
        assert trial.is_balanced
        assert trial.total_debits == expected_total
        assert report_engine.balance_sheet(tenant, date(2024, 1, 31)).is_balanced
        assert balance_aggregator.detect_drift(tenant, period.id) == []

    @FUZZ_SETTINGS
    @given(generated=transfers, cents_off=st.integers(min_value=1, max_value=100))
    def test_any_imbalance_rejected(
        self, fresh_ledger, posting_engine, journal_selector, test_actor_id, generated, cents_off,
    ):
        tenant, accounts, period = fresh_ledger()
        lines = _lines(accounts, generated)
        lines.append(LineSpec.debiting(accounts[0].id, Decimal(cents_off).scaleb(-2)))

        with pytest.raises(UnbalancedEntryError):
            posting_engine.post(tenant, date(2024, 1, 15), "fuzz", "F-1", None, lines, test_actor_id)

        assert journal_selector.count_entries(tenant) == 0

    @FUZZ_SETTINGS
    @given(generated=transfers)
    def test_void_returns_accounts_to_zero(
        self, fresh_ledger, posting_engine, reversal_engine, report_engine, balance_aggregator,
        test_actor_id, generated,
    ):
        tenant, accounts, period = fresh_ledger()
        posted = posting_engine.post(
            tenant, date(2024, 1, 15), "fuzz", "F-1", None, _lines(accounts, generated),
            test_actor_id,
        )

        reversal_engine.void(tenant, posted.entry_id, test_actor_id, "fuzz")

        trial = report_engine.trial_balance(tenant, date(2024, 1, 1), date(2024, 1, 31))
        assert all(row.net_debit == 0 for row in trial.rows)
        for balance in balance_aggregator.list_balances(tenant, period.id):
            assert balance.closing_balance == 0

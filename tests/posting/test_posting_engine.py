"""
PostingEngine tests.

Verifies:
- A balanced multi-line entry posts and gets the next entry number
- Unbalanced and malformed line sets are rejected before any write
- Posting is refused for unknown, foreign or inactive accounts
- A rejected post leaves no header, lines, cache row or consumed number
- Entry numbers are gap-free per tenant and independent across tenants
- Amounts of any size up to 9 decimal places are stored and summed exactly
- The reference tag is stored as given, never validated
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from ledger_kernel.domain.dtos import LineSpec
from ledger_kernel.exceptions import (
    MalformedLineError,
    UnbalancedEntryError,
    UnknownAccountError,
)
from ledger_kernel.models.account_balance import AccountBalance
from ledger_kernel.models.journal import JournalEntry, JournalEntryLine, JournalEntryStatus
from ledger_kernel.services.sequence_service import SequenceService


def _entry_count(session, tenant_id):
    return session.execute(
        select(func.count()).select_from(JournalEntry).where(JournalEntry.tenant_id == tenant_id)
    ).scalar_one()


def _line_count(session, tenant_id):
    return session.execute(
        select(func.count())
        .select_from(JournalEntryLine)
        .where(JournalEntryLine.tenant_id == tenant_id)
    ).scalar_one()


def _balance_row_count(session, tenant_id):
    return session.execute(
        select(func.count())
        .select_from(AccountBalance)
        .where(AccountBalance.tenant_id == tenant_id)
    ).scalar_one()


class TestBalancedPosting:
    """A balanced entry becomes part of the ledger."""

    def test_sale_with_tax_posts(self, post_sale, journal_selector, tenant_id, january):
        result = post_sale()

        assert result.entry_number == 1
        assert result.total_debits == Decimal("530.00")
        assert result.total_credits == Decimal("530.00")
        assert result.line_count == 3
        assert result.period_id == january.id
        assert result.is_reversal is False

        entry = journal_selector.get_entry(tenant_id, result.entry_id)
        assert entry is not None
        assert entry.status == JournalEntryStatus.POSTED
        assert [line.line_no for line in entry.lines] == [1, 2, 3]
        assert entry.total_debits == entry.total_credits == Decimal("530.00")

    def test_lines_keep_request_order(
        self, posting_engine, standard_accounts, tenant_id, test_actor_id, january, journal_selector
    ):
        lines = [
            LineSpec.crediting(standard_accounts["revenue"].id, Decimal("100.00")),
            LineSpec.debiting(standard_accounts["ar"].id, Decimal("100.00"), item_reference="INV-1"),
        ]
        result = posting_engine.post(
            tenant_id, date(2024, 1, 10), "sales_invoice", "INV-1", None, lines, test_actor_id
        )

        entry = journal_selector.get_entry(tenant_id, result.entry_id)
        assert entry.lines[0].account_id == standard_accounts["revenue"].id
        assert entry.lines[1].account_id == standard_accounts["ar"].id
        assert entry.lines[1].item_reference == "INV-1"

    def test_integer_amounts_are_accepted(
        self, posting_engine, standard_accounts, tenant_id, test_actor_id, january
    ):
        result = posting_engine.post(
            tenant_id,
            date(2024, 1, 10),
            "manual",
            "M-1",
            None,
            [
                LineSpec.debiting(standard_accounts["cash"].id, 100),
                LineSpec.crediting(standard_accounts["capital"].id, 100),
            ],
            test_actor_id,
        )
        assert result.total_debits == Decimal("100")

    def test_entry_posted_is_logged(self, post_sale, captured_logs, january):
        post_sale()

        messages = [r["message"] for r in captured_logs()]
        assert "entry_posted" in messages
        posted = next(r for r in captured_logs() if r["message"] == "entry_posted")
        assert posted["entry_number"] == 1
        assert posted["line_count"] == 3
        assert posted["operation"] == "post"

    def test_reference_tag_is_stored_as_given(
        self, posting_engine, standard_accounts, tenant_id, test_actor_id, january,
        journal_selector,
    ):
        result = posting_engine.post(
            tenant_id,
            date(2024, 1, 15),
            "",
            "",
            None,
            [
                LineSpec.debiting(standard_accounts["cash"].id, Decimal("10.00")),
                LineSpec.crediting(standard_accounts["revenue"].id, Decimal("10.00")),
            ],
            test_actor_id,
        )

        entry = journal_selector.get_entry(tenant_id, result.entry_id)
        assert (entry.reference_kind, entry.reference_id) == ("", "")
        assert [e.id for e in journal_selector.entries_for_reference(tenant_id, "", "")] == [
            result.entry_id
        ]


class TestRejectedPosting:
    """Invalid entries raise and write nothing."""

    def test_unbalanced_entry_rejected(
        self, posting_engine, standard_accounts, tenant_id, test_actor_id, january
    ):
        with pytest.raises(UnbalancedEntryError) as exc_info:
            posting_engine.post(
                tenant_id,
                date(2024, 1, 15),
                "sales_invoice",
                "INV-500",
                None,
                [
                    LineSpec.debiting(standard_accounts["cash"].id, Decimal("500.00")),
                    LineSpec.crediting(standard_accounts["revenue"].id, Decimal("480.00")),
                ],
                test_actor_id,
            )

        assert exc_info.value.debits == Decimal("500.00")
        assert exc_info.value.credits == Decimal("480.00")
        assert exc_info.value.code == "UNBALANCED_ENTRY"

    def test_rejected_post_writes_nothing(
        self, session, posting_engine, standard_accounts, tenant_id, test_actor_id, january
    ):
        with pytest.raises(UnbalancedEntryError):
            posting_engine.post(
                tenant_id,
                date(2024, 1, 15),
                "sales_invoice",
                "INV-500",
                None,
                [
                    LineSpec.debiting(standard_accounts["cash"].id, Decimal("500.00")),
                    LineSpec.crediting(standard_accounts["revenue"].id, Decimal("480.00")),
                ],
                test_actor_id,
            )

        assert _entry_count(session, tenant_id) == 0
        assert _line_count(session, tenant_id) == 0
        assert _balance_row_count(session, tenant_id) == 0
        assert SequenceService(session).current_value(
            tenant_id, SequenceService.JOURNAL_ENTRY
        ) is None

    def test_rejection_does_not_consume_entry_number(
        self, post_sale, posting_engine, standard_accounts, tenant_id, test_actor_id, january
    ):
        first = post_sale()
        with pytest.raises(UnbalancedEntryError):
            posting_engine.post(
                tenant_id,
                date(2024, 1, 15),
                "manual",
                "BAD",
                None,
                [
                    LineSpec.debiting(standard_accounts["cash"].id, Decimal("10.00")),
                    LineSpec.crediting(standard_accounts["revenue"].id, Decimal("9.99")),
                ],
                test_actor_id,
            )
        second = post_sale()

        assert (first.entry_number, second.entry_number) == (1, 2)

    def test_rejection_is_logged(
        self, posting_engine, standard_accounts, tenant_id, test_actor_id, january, captured_logs
    ):
        with pytest.raises(UnbalancedEntryError):
            posting_engine.post(
                tenant_id,
                date(2024, 1, 15),
                "manual",
                "BAD",
                None,
                [
                    LineSpec.debiting(standard_accounts["cash"].id, Decimal("10.00")),
                    LineSpec.crediting(standard_accounts["revenue"].id, Decimal("9.00")),
                ],
                test_actor_id,
            )

        rejected = [r for r in captured_logs() if r["message"] == "posting_rejected"]
        assert len(rejected) == 1
        assert rejected[0]["reason_code"] == "UNBALANCED_ENTRY"
        assert rejected[0]["level"] == "WARNING"


class TestMalformedLines:
    """Line shape is checked for every line."""

    @pytest.fixture
    def post_lines(self, posting_engine, tenant_id, test_actor_id, january):
        def _post(lines):
            return posting_engine.post(
                tenant_id, date(2024, 1, 15), "manual", "M-1", None, lines, test_actor_id
            )

        return _post

    def test_single_line_rejected(self, post_lines, standard_accounts):
        with pytest.raises(MalformedLineError) as exc_info:
            post_lines([LineSpec.debiting(standard_accounts["cash"].id, Decimal("10.00"))])
        assert exc_info.value.line_no is None

    def test_no_lines_rejected(self, post_lines):
        with pytest.raises(MalformedLineError):
            post_lines([])

    def test_both_sides_positive_rejected(self, post_lines, standard_accounts):
        with pytest.raises(MalformedLineError) as exc_info:
            post_lines(
                [
                    LineSpec(
                        account_id=standard_accounts["cash"].id,
                        debit=Decimal("10.00"),
                        credit=Decimal("10.00"),
                    ),
                    LineSpec.crediting(standard_accounts["revenue"].id, Decimal("0.00")),
                ]
            )
        assert exc_info.value.line_no == 1

    def test_zero_line_rejected(self, post_lines, standard_accounts):
        with pytest.raises(MalformedLineError) as exc_info:
            post_lines(
                [
                    LineSpec.debiting(standard_accounts["cash"].id, Decimal("10.00")),
                    LineSpec.crediting(standard_accounts["revenue"].id, Decimal("10.00")),
                    LineSpec.debiting(standard_accounts["rent"].id, Decimal("0")),
                ]
            )
        assert exc_info.value.line_no == 3
        assert "neither" in exc_info.value.reason

    def test_negative_amount_rejected(self, post_lines, standard_accounts):
        with pytest.raises(MalformedLineError) as exc_info:
            post_lines(
                [
                    LineSpec.debiting(standard_accounts["cash"].id, Decimal("-10.00")),
                    LineSpec.crediting(standard_accounts["revenue"].id, Decimal("-10.00")),
                ]
            )
        assert exc_info.value.line_no == 1

    def test_float_amount_rejected(self, post_lines, standard_accounts):
        with pytest.raises(MalformedLineError) as exc_info:
            post_lines(
                [
                    LineSpec.debiting(standard_accounts["cash"].id, 10.5),
                    LineSpec.crediting(standard_accounts["revenue"].id, Decimal("10.50")),
                ]
            )
        assert "float" in exc_info.value.reason

    def test_too_many_decimal_places_rejected(self, post_lines, standard_accounts):
        with pytest.raises(MalformedLineError):
            post_lines(
                [
                    LineSpec.debiting(standard_accounts["cash"].id, Decimal("1.0000000001")),
                    LineSpec.crediting(standard_accounts["revenue"].id, Decimal("1.0000000001")),
                ]
            )

    def test_amount_beyond_column_range_rejected(self, post_lines, standard_accounts):
        too_big = Decimal("100000000000000000000000000000")
        with pytest.raises(MalformedLineError) as exc_info:
            post_lines(
                [
                    LineSpec.debiting(standard_accounts["cash"].id, too_big),
                    LineSpec.crediting(standard_accounts["revenue"].id, too_big),
                ]
            )
        assert exc_info.value.line_no == 1
        assert "largest" in exc_info.value.reason

    def test_shape_checked_before_balance(self, post_lines, standard_accounts):
        # Both problems present; the malformed line wins
        with pytest.raises(MalformedLineError):
            post_lines(
                [
                    LineSpec.debiting(standard_accounts["cash"].id, Decimal("10.00")),
                    LineSpec.crediting(standard_accounts["revenue"].id, Decimal("-5.00")),
                ]
            )


class TestAccountChecks:
    """Every line must target a known, active account of the tenant."""

    def test_unknown_account_rejected(
        self, posting_engine, standard_accounts, tenant_id, test_actor_id, january
    ):
        missing = uuid4()
        with pytest.raises(UnknownAccountError) as exc_info:
            posting_engine.post(
                tenant_id,
                date(2024, 1, 15),
                "manual",
                "M-1",
                None,
                [
                    LineSpec.debiting(standard_accounts["cash"].id, Decimal("10.00")),
                    LineSpec.crediting(missing, Decimal("10.00")),
                ],
                test_actor_id,
            )
        assert exc_info.value.account_id == str(missing)

    def test_other_tenants_account_rejected(
        self,
        posting_engine,
        create_account,
        standard_accounts,
        tenant_id,
        other_tenant_id,
        test_actor_id,
        january,
    ):
        from ledger_kernel.models.account import AccountCategory

        foreign = create_account("1000", "Cash", AccountCategory.ASSET, tenant=other_tenant_id)
        with pytest.raises(UnknownAccountError):
            posting_engine.post(
                tenant_id,
                date(2024, 1, 15),
                "manual",
                "M-1",
                None,
                [
                    LineSpec.debiting(foreign.id, Decimal("10.00")),
                    LineSpec.crediting(standard_accounts["revenue"].id, Decimal("10.00")),
                ],
                test_actor_id,
            )

    def test_inactive_account_rejected(
        self,
        posting_engine,
        account_registry,
        standard_accounts,
        tenant_id,
        test_actor_id,
        january,
    ):
        account_registry.deactivate(tenant_id, standard_accounts["inventory"].id, test_actor_id)

        with pytest.raises(UnknownAccountError) as exc_info:
            posting_engine.post(
                tenant_id,
                date(2024, 1, 15),
                "manual",
                "M-1",
                None,
                [
                    LineSpec.debiting(standard_accounts["inventory"].id, Decimal("10.00")),
                    LineSpec.crediting(standard_accounts["cash"].id, Decimal("10.00")),
                ],
                test_actor_id,
            )
        assert "inactive" in exc_info.value.reason


class TestEntryNumbering:
    """Entry numbers are per tenant, strictly increasing, without gaps."""

    def test_numbers_increase(self, post_sale, january):
        numbers = [post_sale().entry_number for _ in range(4)]
        assert numbers == [1, 2, 3, 4]

    def test_tenants_are_numbered_independently(
        self,
        post_sale,
        posting_engine,
        create_account,
        period_manager,
        other_tenant_id,
        test_actor_id,
        january,
    ):
        from ledger_kernel.models.account import AccountCategory

        post_sale()
        post_sale()

        period_manager.open_period(
            other_tenant_id, "2024-01", "January 2024", date(2024, 1, 1), date(2024, 1, 31),
            test_actor_id,
        )
        cash = create_account("1000", "Cash", AccountCategory.ASSET, tenant=other_tenant_id)
        capital = create_account("3000", "Capital", AccountCategory.EQUITY, tenant=other_tenant_id)
        result = posting_engine.post(
            other_tenant_id,
            date(2024, 1, 5),
            "manual",
            "OPEN-1",
            None,
            [
                LineSpec.debiting(cash.id, Decimal("1000.00")),
                LineSpec.crediting(capital.id, Decimal("1000.00")),
            ],
            test_actor_id,
        )

        assert result.entry_number == 1


class TestAmountPrecision:
    """Amounts are stored, summed and cached exactly, whatever their size."""

    @pytest.mark.parametrize(
        "gross, net, tax",
        [
            ("1234567890123456.78", "1234567890123456.70", "0.08"),
            ("12345678.12", "12345678.05", "0.07"),
            ("98765432.123456789", "98765432.123456788", "0.000000001"),
            (
                "99999999999999999999999999999.999999999",
                "99999999999999999999999999999.999999998",
                "0.000000001",
            ),
        ],
    )
    def test_large_and_fine_amounts_round_trip(
        self, session, posting_engine, report_engine, balance_aggregator, journal_selector,
        standard_accounts, tenant_id, test_actor_id, january, gross, net, tax,
    ):
        gross, net, tax = Decimal(gross), Decimal(net), Decimal(tax)
        cash = standard_accounts["cash"]
        result = posting_engine.post(
            tenant_id,
            date(2024, 1, 15),
            "sales_invoice",
            "INV-BIG",
            None,
            [
                LineSpec.debiting(cash.id, gross),
                LineSpec.crediting(standard_accounts["revenue"].id, net),
                LineSpec.crediting(standard_accounts["tax"].id, tax),
            ],
            test_actor_id,
        )
        session.expire_all()

        entry = journal_selector.get_entry(tenant_id, result.entry_id)
        assert [(line.debit, line.credit) for line in entry.lines] == [
            (gross, Decimal("0")),
            (Decimal("0"), net),
            (Decimal("0"), tax),
        ]

        trial = report_engine.trial_balance(tenant_id, date(2024, 1, 1), date(2024, 1, 31))
        cash_row = next(row for row in trial.rows if row.account_id == cash.id)
        assert cash_row.debit_total == gross
        assert trial.total_debits == trial.total_credits == gross

        assert balance_aggregator.get_balance(tenant_id, cash.id, january.id).closing_balance == gross
        assert balance_aggregator.detect_drift(tenant_id, january.id) == []

    def test_many_small_amounts_sum_exactly(
        self, session, posting_engine, report_engine, standard_accounts, tenant_id,
        test_actor_id, january,
    ):
        for i in range(10):
            posting_engine.post(
                tenant_id,
                date(2024, 1, 15),
                "manual",
                f"M-{i}",
                None,
                [
                    LineSpec.debiting(standard_accounts["cash"].id, Decimal("0.10")),
                    LineSpec.crediting(standard_accounts["revenue"].id, Decimal("0.10")),
                ],
                test_actor_id,
            )
        session.expire_all()

        trial = report_engine.trial_balance(tenant_id, date(2024, 1, 1), date(2024, 1, 31))
        assert trial.total_debits == Decimal("1.00")

"""
Concurrency tests (real commits, one session per thread).

Verifies:
- Concurrent posts for one tenant get unique, gap-free entry numbers
- The balance cache stays consistent with the lines under concurrency
- Of two concurrent voids of one entry exactly one succeeds
- Tenants posting concurrently do not share entry numbers

On SQLite the writers serialize on the database lock; on PostgreSQL the
row locks on the sequence counter, balance rows and void target do the
work.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal

import pytest

from ledger_kernel.domain.dtos import LineSpec
from ledger_kernel.exceptions import AlreadyVoidedError
from ledger_kernel.models.account import AccountCategory
from ledger_kernel.services.ledger_orchestrator import run_with_retry

pytestmark = pytest.mark.slow_locks

THREADS = 4
POSTS_PER_THREAD = 5


def _post_sale(ledger, tenant_id, setup, actor_id, ref, amount=Decimal("10.00")):
    return run_with_retry(
        lambda: ledger.post(
            tenant_id,
            date(2024, 1, 15),
            "sales_invoice",
            ref,
            None,
            [
                LineSpec.debiting(setup["cash"].id, amount),
                LineSpec.crediting(setup["revenue"].id, amount),
            ],
            actor_id,
        ),
        attempts=5,
    )


class TestConcurrentPosting:

    def test_entry_numbers_unique_and_gap_free(self, ledger, ledger_setup, tenant_id,
                                               test_actor_id):
        def _worker(worker_no):
            return [
                _post_sale(ledger, tenant_id, ledger_setup, test_actor_id, f"W{worker_no}-{i}")
                .entry_number
                for i in range(POSTS_PER_THREAD)
            ]

        with ThreadPoolExecutor(max_workers=THREADS) as pool:
            results = list(pool.map(_worker, range(THREADS)))

        numbers = sorted(n for worker_numbers in results for n in worker_numbers)
        assert numbers == list(range(1, THREADS * POSTS_PER_THREAD + 1))

    def test_cache_consistent_after_concurrent_posts(self, ledger, ledger_setup, tenant_id,
                                                     test_actor_id):
        def _worker(worker_no):
            for i in range(POSTS_PER_THREAD):
                _post_sale(ledger, tenant_id, ledger_setup, test_actor_id, f"W{worker_no}-{i}")

        with ThreadPoolExecutor(max_workers=THREADS) as pool:
            list(pool.map(_worker, range(THREADS)))

        period_id = ledger_setup["period"].id
        cash = ledger.get_balance(tenant_id, ledger_setup["cash"].id, period_id)
        expected = Decimal("10.00") * THREADS * POSTS_PER_THREAD
        assert cash.debit_total == expected
        assert cash.closing_balance == expected
        assert ledger.detect_drift(tenant_id, period_id) == []

    def test_concurrent_voids_one_wins(self, ledger, ledger_setup, tenant_id, test_actor_id):
        posted = _post_sale(ledger, tenant_id, ledger_setup, test_actor_id, "INV-1")
        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def _void(reason):
            barrier.wait()
            try:
                result = run_with_retry(
                    lambda: ledger.void(tenant_id, posted.entry_id, test_actor_id, reason),
                    attempts=5,
                )
                outcome = ("voided", result.reversal_entry_id)
            except AlreadyVoidedError as exc:
                outcome = ("already_voided", exc.reversal_entry_id)
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=_void, args=(f"void {i}",)) for i in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        kinds = sorted(kind for kind, _ in outcomes)
        assert kinds == ["already_voided", "voided"]
        winner = next(ref for kind, ref in outcomes if kind == "voided")
        loser = next(ref for kind, ref in outcomes if kind == "already_voided")
        assert loser == str(winner)

        report = ledger.trial_balance(tenant_id, date(2024, 1, 1), date(2024, 1, 31))
        assert all(row.net_debit == 0 for row in report.rows)

    def test_tenants_post_concurrently(self, ledger, ledger_setup, tenant_id, other_tenant_id,
                                       test_actor_id):
        other_setup = {
            "cash": ledger.create_account(
                other_tenant_id, "1000", "Cash", AccountCategory.ASSET, test_actor_id
            ),
            "revenue": ledger.create_account(
                other_tenant_id, "4000", "Revenue", AccountCategory.REVENUE, test_actor_id
            ),
        }
        ledger.open_period(
            other_tenant_id, "2024-01", "January 2024", date(2024, 1, 1), date(2024, 1, 31),
            test_actor_id,
        )

        def _worker(args):
            tenant, setup = args
            return [
                _post_sale(ledger, tenant, setup, test_actor_id, f"T-{i}").entry_number
                for i in range(POSTS_PER_THREAD)
            ]

        with ThreadPoolExecutor(max_workers=2) as pool:
            mine, theirs = pool.map(
                _worker, [(tenant_id, ledger_setup), (other_tenant_id, other_setup)]
            )

        assert mine == list(range(1, POSTS_PER_THREAD + 1))
        assert theirs == list(range(1, POSTS_PER_THREAD + 1))

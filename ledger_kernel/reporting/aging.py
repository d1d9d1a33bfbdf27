"""
Open-item aging for receivables and payables.

Items are the lines of receivable / payable accounts grouped by item key
(the line's item_reference, else the entry's reference_kind:reference_id).
An item's amount is its balance on the account's normal side; settled items
(balance zero) are dropped.  Age is counted in days from the item's due
date, which is the earliest due_date on its lines or, failing that, the
earliest entry_date.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from ledger_kernel.db.types import MONEY_CONTEXT, money_total
from ledger_kernel.domain.balances import compute_natural_balance
from ledger_kernel.exceptions import ConfigurationError
from ledger_kernel.selectors.ledger_selector import OpenItemLine

ZERO = Decimal("0")


@dataclass(frozen=True)
class AgeBucket:
    """
    Inclusive day range.  min_days None means unbounded below (not yet due),
    max_days None means unbounded above.
    """

    name: str
    min_days: int | None
    max_days: int | None

    def contains(self, days: int) -> bool:
        if self.min_days is not None and days < self.min_days:
            return False
        if self.max_days is not None and days > self.max_days:
            return False
        return True


STANDARD_BUCKETS: tuple[AgeBucket, ...] = (
    AgeBucket("Current", None, 0),
    AgeBucket("1-30", 1, 30),
    AgeBucket("31-60", 31, 60),
    AgeBucket("61-90", 61, 90),
    AgeBucket("Over 90", 91, None),
)


def validate_buckets(buckets: Sequence[AgeBucket]) -> tuple[AgeBucket, ...]:
    """
    Buckets must be contiguous and cover every day count exactly once.

    Raises:
        ConfigurationError: empty list, gaps, overlaps, duplicate names, or
            bounded ends.
    """
    buckets = tuple(buckets)
    if not buckets:
        raise ConfigurationError("aging_buckets", "at least one bucket is required")
    if len({b.name for b in buckets}) != len(buckets):
        raise ConfigurationError("aging_buckets", "bucket names must be unique")
    if buckets[0].min_days is not None:
        raise ConfigurationError("aging_buckets", "first bucket must have no lower bound")
    if buckets[-1].max_days is not None:
        raise ConfigurationError("aging_buckets", "last bucket must have no upper bound")
    for previous, current in zip(buckets, buckets[1:]):
        if previous.max_days is None or current.min_days is None:
            raise ConfigurationError(
                "aging_buckets", f"only the outer buckets may be unbounded ({current.name})"
            )
        if current.min_days != previous.max_days + 1:
            raise ConfigurationError(
                "aging_buckets",
                f"bucket {current.name} must start at day {previous.max_days + 1}",
            )
        if current.max_days is not None and current.max_days < current.min_days:
            raise ConfigurationError("aging_buckets", f"bucket {current.name} is empty")
    return buckets


@dataclass(frozen=True)
class AgedItem:
    item_key: str
    account_id: UUID
    account_code: str
    due_date: date
    days_overdue: int
    amount: Decimal
    bucket: str


@dataclass(frozen=True)
class AgingReport:
    tenant_id: UUID
    as_of_date: date
    kind: str
    items: tuple[AgedItem, ...]
    bucket_totals: tuple[tuple[str, Decimal], ...]

    @property
    def total(self) -> Decimal:
        return money_total(item.amount for item in self.items)

    def bucket_total(self, name: str) -> Decimal:
        return dict(self.bucket_totals).get(name, ZERO)


def _bucket_for(days: int, buckets: Sequence[AgeBucket]) -> str:
    for bucket in buckets:
        if bucket.contains(days):
            return bucket.name
    raise ConfigurationError("aging_buckets", f"no bucket covers {days} days")


def age_items(
    tenant_id: UUID,
    kind: str,
    lines: Iterable[OpenItemLine],
    as_of_date: date,
    buckets: Sequence[AgeBucket] = STANDARD_BUCKETS,
) -> AgingReport:
    """Group lines into open items and place each in its age bucket."""
    grouped: OrderedDict[tuple[UUID, str], list[OpenItemLine]] = OrderedDict()
    for line in lines:
        grouped.setdefault((line.account_id, line.item_key), []).append(line)

    items: list[AgedItem] = []
    for (account_id, item_key), item_lines in grouped.items():
        debit = money_total(line.debit for line in item_lines)
        credit = money_total(line.credit for line in item_lines)
        amount = compute_natural_balance(debit, credit, item_lines[0].normal_balance)
        if amount == ZERO:
            continue

        due_dates = [line.due_date for line in item_lines if line.due_date is not None]
        due = min(due_dates) if due_dates else min(line.entry_date for line in item_lines)
        days = (as_of_date - due).days
        items.append(
            AgedItem(
                item_key=item_key,
                account_id=account_id,
                account_code=item_lines[0].account_code,
                due_date=due,
                days_overdue=days,
                amount=amount,
                bucket=_bucket_for(days, buckets),
            )
        )

    totals = OrderedDict((bucket.name, ZERO) for bucket in buckets)
    for item in items:
        totals[item.bucket] = MONEY_CONTEXT.add(totals[item.bucket], item.amount)

    return AgingReport(
        tenant_id=tenant_id,
        as_of_date=as_of_date,
        kind=kind,
        items=tuple(sorted(items, key=lambda i: (i.due_date, i.item_key))),
        bucket_totals=tuple(totals.items()),
    )

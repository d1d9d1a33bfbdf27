"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the per-tenant Chart of Accounts -- the
    target of every journal line.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - code is unique per tenant (uq_account_tenant_code).
    - normal_balance is derived from category at creation; code, category and
      normal_balance never change afterwards (db/immutability.py).
    - Accounts referenced by journal lines are never deleted; they are
      deactivated instead.

Audit relevance:
    Changing the category of an account after posting would silently alter
    the meaning of historical lines, so the structural fields are locked.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class AccountCategory(str, Enum):
    """Top-level classification of an account."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    COST_OF_GOODS = "cost_of_goods"
    EXPENSE = "expense"


class NormalBalance(str, Enum):
    """Side on which an account's balance naturally sits."""

    DEBIT = "debit"
    CREDIT = "credit"


class AccountTag(str, Enum):
    """Standard tags for account categorization."""

    RECEIVABLE = "receivable"
    PAYABLE = "payable"
    RETAINED_EARNINGS = "retained_earnings"
    BANK = "bank"
    SUSPENSE = "suspense"


_DEBIT_NORMAL = frozenset(
    {AccountCategory.ASSET, AccountCategory.COST_OF_GOODS, AccountCategory.EXPENSE}
)

# Categories that roll into net income and are closed at year end.
INCOME_STATEMENT_CATEGORIES = frozenset(
    {AccountCategory.REVENUE, AccountCategory.COST_OF_GOODS, AccountCategory.EXPENSE}
)


def normal_balance_for(category: AccountCategory | str) -> NormalBalance:
    """Normal balance implied by an account category."""
    if AccountCategory(category) in _DEBIT_NORMAL:
        return NormalBalance.DEBIT
    return NormalBalance.CREDIT


class Account(TrackedBase):
    """
    Chart of Accounts entry for one tenant.

    Contract:
        (tenant_id, code) is unique.  A parent, when present, belongs to the
        same tenant and the same category.

    Non-goals:
        - This model does not validate posting eligibility; the
          AccountRegistry does that at posting time.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_account_tenant_code"),
        Index("idx_account_tenant_category", "tenant_id", "category"),
        Index("idx_account_tenant_active", "tenant_id", "is_active"),
        Index("idx_account_tenant_parent", "tenant_id", "parent_id"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    category: Mapped[AccountCategory] = mapped_column(String(20), nullable=False)

    normal_balance: Mapped[NormalBalance] = mapped_column(String(10), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # System accounts (retained earnings, suspense) may never be deactivated
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    def has_tag(self, tag: AccountTag | str) -> bool:
        tag_value = tag.value if isinstance(tag, AccountTag) else tag
        return tag_value in (self.tags or [])

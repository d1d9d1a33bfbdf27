"""
Module: ledger_kernel.models.account_balance
Responsibility: Per-tenant, per-account, per-period balance cache.
Architecture position: Kernel > Models.

Invariants enforced:
    - (tenant_id, account_id, period_id) is unique.
    - opening_balance and closing_balance are natural balances (positive on
      the account's normal side):
          debit-normal:  closing = opening + debit_total - credit_total
          credit-normal: closing = opening + credit_total - debit_total
    - The cache is derived data.  It can always be rebuilt from
      journal_entry_lines (BalanceAggregator.rebuild) and must then match.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString
from ledger_kernel.db.types import MoneyType


class AccountBalance(Base):
    """Cached movement and balance of one account in one period."""

    __tablename__ = "account_balances"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "account_id", "period_id", name="uq_balance_tenant_account_period"
        ),
        Index("idx_balance_tenant_period", "tenant_id", "period_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_periods.id"),
        nullable=False,
    )

    opening_balance: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)

    debit_total: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)

    credit_total: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)

    closing_balance: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<AccountBalance account={self.account_id} period={self.period_id} "
            f"closing={self.closing_balance}>"
        )

"""
AccountRegistry -- per-tenant chart of accounts.

Responsibility:
    Creates, deactivates and reactivates accounts, and resolves account ids
    for the PostingEngine.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - Account code is unique per tenant.
    - normal_balance is derived from the category at creation and never
      changes afterwards.
    - A parent belongs to the same tenant and the same category.
    - System accounts, and accounts still carrying a non-zero ledger
      balance, cannot be deactivated.
    - Inactive or foreign accounts never resolve for posting.

Failure modes:
    - DuplicateAccountCode, AccountNotFoundError, AccountHierarchyError,
      ProtectedAccountError, UnknownAccountError.
"""

from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.db.types import money_sum
from ledger_kernel.domain.dtos import AccountInfo
from ledger_kernel.exceptions import (
    AccountHierarchyError,
    AccountNotFoundError,
    DuplicateAccountCode,
    ProtectedAccountError,
    UnknownAccountError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountCategory, normal_balance_for
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.models.journal import JournalEntryLine
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account_registry")


class AccountRegistry(BaseService):
    """
    Chart-of-accounts service.

    Contract:
        All reads and writes are scoped by tenant_id; an account id that
        belongs to another tenant behaves exactly like an unknown id.
    """

    def __init__(self, session, clock=None, auditor: AuditorService | None = None):
        super().__init__(session, clock)
        self._auditor = auditor or AuditorService(session, self.clock)

    # ------------------------------------------------------------------
    # Commands
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
        """
        Create an account for a tenant.

        Raises:
            DuplicateAccountCode: code already exists for the tenant.
            AccountNotFoundError: parent_id is unknown to the tenant.
            AccountHierarchyError: parent has a different category.
        """
        category = AccountCategory(category)

        existing = self.session.execute(
            select(Account.id).where(Account.tenant_id == tenant_id, Account.code == code)
        ).first()
        if existing is not None:
            logger.warning(
                "account_code_duplicate",
                extra={"account_code": code},
            )
            raise DuplicateAccountCode(code)

        if parent_id is not None:
            parent = self._get_model(tenant_id, parent_id)
            if AccountCategory(parent.category) != category:
                raise AccountHierarchyError(
                    code,
                    str(parent_id),
                    f"parent category {parent.category} differs from {category.value}",
                )

        account = Account(
            tenant_id=tenant_id,
            code=code,
            name=name,
            category=category.value,
            normal_balance=normal_balance_for(category).value,
            is_active=True,
            is_system=is_system,
            tags=[str(getattr(tag, "value", tag)) for tag in tags] or None,
            parent_id=parent_id,
            created_by_id=actor_id,
        )
        self.session.add(account)
        self.session.flush()

        self._auditor.record(
            tenant_id,
            "account",
            account.id,
            AuditAction.ACCOUNT_CREATED,
            actor_id,
            {"code": code, "category": category.value},
        )
        logger.info(
            "account_created",
            extra={
                "account_id": str(account.id),
                "account_code": code,
                "category": category.value,
            },
        )
        return AccountInfo.from_model(account)

    def deactivate(self, tenant_id: UUID, account_id: UUID, actor_id: UUID) -> AccountInfo:
        """
        Deactivate an account.  History stays readable; new lines are refused.

        Raises:
            AccountNotFoundError: unknown to the tenant.
            ProtectedAccountError: system account, or non-zero balance.
        """
        account = self._get_model(tenant_id, account_id, for_update=True)

        if account.is_system:
            raise ProtectedAccountError(str(account_id), "system account")

        balance = self.ledger_balance(tenant_id, account_id)
        if balance != 0:
            logger.warning(
                "account_deactivation_blocked",
                extra={"account_id": str(account_id), "balance": balance},
            )
            raise ProtectedAccountError(
                str(account_id), f"account carries a non-zero balance of {balance}"
            )

        if account.is_active:
            account.is_active = False
            account.updated_by_id = actor_id
            self.session.flush()
            self._auditor.record(
                tenant_id, "account", account.id, AuditAction.ACCOUNT_DEACTIVATED, actor_id
            )
            logger.info("account_deactivated", extra={"account_id": str(account_id)})

        return AccountInfo.from_model(account)

    def reactivate(self, tenant_id: UUID, account_id: UUID, actor_id: UUID) -> AccountInfo:
        account = self._get_model(tenant_id, account_id, for_update=True)
        if not account.is_active:
            account.is_active = True
            account.updated_by_id = actor_id
            self.session.flush()
            self._auditor.record(
                tenant_id, "account", account.id, AuditAction.ACCOUNT_REACTIVATED, actor_id
            )
            logger.info("account_reactivated", extra={"account_id": str(account_id)})
        return AccountInfo.from_model(account)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, tenant_id: UUID, account_id: UUID) -> AccountInfo:
        return AccountInfo.from_model(self._get_model(tenant_id, account_id))

    def get_by_code(self, tenant_id: UUID, code: str) -> AccountInfo | None:
        account = self.session.execute(
            select(Account).where(Account.tenant_id == tenant_id, Account.code == code)
        ).scalar_one_or_none()
        return AccountInfo.from_model(account) if account else None

    def list_accounts(self, tenant_id: UUID, include_inactive: bool = False) -> list[AccountInfo]:
        stmt = select(Account).where(Account.tenant_id == tenant_id)
        if not include_inactive:
            stmt = stmt.where(Account.is_active.is_(True))
        stmt = stmt.order_by(Account.code)
        return [AccountInfo.from_model(a) for a in self.session.execute(stmt).scalars()]

    def children(self, tenant_id: UUID, account_id: UUID) -> list[AccountInfo]:
        stmt = (
            select(Account)
            .where(Account.tenant_id == tenant_id, Account.parent_id == account_id)
            .order_by(Account.code)
        )
        return [AccountInfo.from_model(a) for a in self.session.execute(stmt).scalars()]

    def ledger_balance(self, tenant_id: UUID, account_id: UUID) -> Decimal:
        """Net debit balance over every line ever posted to the account."""
        debits, credits = self.session.execute(
            select(
                money_sum(JournalEntryLine.debit),
                money_sum(JournalEntryLine.credit),
            ).where(
                JournalEntryLine.tenant_id == tenant_id,
                JournalEntryLine.account_id == account_id,
            )
        ).one()
        return (debits or Decimal("0")) - (credits or Decimal("0"))

    def resolve_for_posting(
        self, tenant_id: UUID, account_ids: Sequence[UUID]
    ) -> dict[UUID, AccountInfo]:
        """
        Resolve every id to an active account of the tenant.

        Raises:
            UnknownAccountError: for the first id (in request order) that is
                unknown to the tenant or inactive.
        """
        wanted = set(account_ids)
        found = {
            account.id: account
            for account in self.session.execute(
                select(Account).where(
                    Account.tenant_id == tenant_id,
                    Account.id.in_(wanted),
                )
            ).scalars()
        }
        for account_id in account_ids:
            account = found.get(account_id)
            if account is None:
                logger.warning(
                    "posting_account_unknown",
                    extra={"account_id": str(account_id)},
                )
                raise UnknownAccountError(str(account_id), "account not found for tenant")
            if not account.is_active:
                logger.warning(
                    "posting_account_inactive",
                    extra={"account_id": str(account_id)},
                )
                raise UnknownAccountError(str(account_id), "account is inactive")
        return {account_id: AccountInfo.from_model(found[account_id]) for account_id in wanted}

    def _get_model(self, tenant_id: UUID, account_id: UUID, for_update: bool = False) -> Account:
        stmt = select(Account).where(Account.tenant_id == tenant_id, Account.id == account_id)
        if for_update:
            stmt = stmt.with_for_update()
        account = self.session.execute(stmt).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

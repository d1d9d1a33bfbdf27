"""
Module: ledger_kernel.models.audit_event
Responsibility: Append-only log of ledger state transitions (posts, voids,
    period lifecycle, account lifecycle, cache rebuilds).
Architecture position: Kernel > Models.  Written only by AuditorService.

Invariants enforced:
    - Audit events are never updated or deleted (db/immutability.py).
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Actions recorded in the audit log."""

    ACCOUNT_CREATED = "account_created"
    ACCOUNT_DEACTIVATED = "account_deactivated"
    ACCOUNT_REACTIVATED = "account_reactivated"
    PERIOD_OPENED = "period_opened"
    PERIOD_CLOSED = "period_closed"
    PERIOD_LOCKED = "period_locked"
    PERIOD_REOPENED = "period_reopened"
    ENTRY_POSTED = "entry_posted"
    ENTRY_VOIDED = "entry_voided"
    BALANCES_REBUILT = "balances_rebuilt"


class AuditEvent(Base):
    """A single audited state transition."""

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_tenant_entity", "tenant_id", "entity_type", "entity_id"),
        Index("idx_audit_tenant_occurred", "tenant_id", "occurred_at"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[AuditAction] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} {self.entity_type}:{self.entity_id}>"

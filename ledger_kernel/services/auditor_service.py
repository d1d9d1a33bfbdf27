"""
AuditorService -- append-only audit log of ledger state transitions.

Responsibility:
    Records one AuditEvent for every state change the kernel makes (account
    lifecycle, period lifecycle, posts, voids, cache rebuilds) in the same
    transaction as the change itself.

Invariants enforced:
    - Events are never updated or deleted (db/immutability.py).
    - An event exists iff its change committed, because both share the
      caller's transaction.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_event import AuditAction, AuditEvent
from ledger_kernel.services.base import BaseService

logger = get_logger("services.auditor")


class AuditorService(BaseService):
    """Writes and reads audit events."""

    def record(
        self,
        tenant_id: UUID,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        event = AuditEvent(
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self.clock.now(),
            payload=payload,
        )
        self.session.add(event)
        self.session.flush()
        logger.debug(
            "audit_event_recorded",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
            },
        )
        return event

    def list_events(
        self,
        tenant_id: UUID,
        entity_type: str | None = None,
        entity_id: UUID | None = None,
    ) -> list[AuditEvent]:
        """Events for a tenant in recording order, optionally filtered."""
        stmt = select(AuditEvent).where(AuditEvent.tenant_id == tenant_id)
        if entity_type is not None:
            stmt = stmt.where(AuditEvent.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(AuditEvent.entity_id == entity_id)
        stmt = stmt.order_by(AuditEvent.occurred_at, AuditEvent.id)
        return list(self.session.execute(stmt).scalars().all())

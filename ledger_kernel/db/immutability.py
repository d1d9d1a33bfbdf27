"""
ORM-level immutability enforcement for ledger records.

===============================================================================
WHAT IS PROTECTED
===============================================================================

Entity            | Rule
------------------|-------------------------------------------------------------
JournalEntry      | Never deleted.  The only permitted update is the one-time
                  | posted -> voided flip together with its void metadata.
JournalEntryLine  | Never updated, never deleted.
Account           | tenant_id, code, category, normal_balance never change.
                  | Accounts referenced by lines are never deleted.
FiscalPeriod      | A locked period never changes.  Dates of a period with
                  | entries never change.  Periods with entries are never
                  | deleted.
AuditEvent        | Never updated, never deleted.

The listeners inspect SQLAlchemy attribute history inside before_update /
before_delete mapper events and raise ImmutabilityViolationError, which
aborts the flush.  Bulk UPDATE/DELETE statements bypass mapper events; the
kernel never issues them against these tables.

Usage:
    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})

_VOID_FIELDS = frozenset(
    {"status", "voided_at", "voided_by_id", "void_reason", "reversal_entry_id"}
) | _AUDIT_METADATA_FIELDS

_ACCOUNT_STRUCTURAL_FIELDS = ("tenant_id", "code", "category", "normal_balance")


def _changed_fields(target) -> list[str]:
    state = inspect(target)
    return [
        prop.key
        for prop in state.mapper.column_attrs
        if state.attrs[prop.key].history.has_changes()
    ]


def _violation(entity_type: str, target, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "reason": reason,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_journal_entry_update(mapper, connection, target):
    status_history = get_history(target, "status")
    changed = _changed_fields(target)

    if status_history.deleted:
        old_status = str(getattr(status_history.deleted[0], "value", status_history.deleted[0]))
        new_status = str(getattr(target.status, "value", target.status))
        if old_status == "posted" and new_status == "voided":
            illegal = [name for name in changed if name not in _VOID_FIELDS]
            if not illegal:
                return
            raise _violation(
                "JournalEntry", target, "UPDATE",
                f"Cannot modify field '{illegal[0]}' while voiding",
            )
        raise _violation(
            "JournalEntry", target, "UPDATE",
            f"Illegal status transition {old_status} -> {new_status}",
        )

    illegal = [name for name in changed if name not in _AUDIT_METADATA_FIELDS]
    if illegal:
        raise _violation(
            "JournalEntry", target, "UPDATE",
            f"Cannot modify field '{illegal[0]}' on a journal entry",
        )


def _check_journal_entry_delete(mapper, connection, target):
    raise _violation("JournalEntry", target, "DELETE", "Journal entries cannot be deleted")


def _check_journal_line_update(mapper, connection, target):
    illegal = [name for name in _changed_fields(target) if name not in _AUDIT_METADATA_FIELDS]
    if illegal:
        raise _violation(
            "JournalEntryLine", target, "UPDATE",
            f"Cannot modify field '{illegal[0]}' on a journal line",
        )


def _check_journal_line_delete(mapper, connection, target):
    raise _violation("JournalEntryLine", target, "DELETE", "Journal lines cannot be deleted")


def _check_audit_event_update(mapper, connection, target):
    raise _violation("AuditEvent", target, "UPDATE", "Audit events are append-only")


def _check_audit_event_delete(mapper, connection, target):
    raise _violation("AuditEvent", target, "DELETE", "Audit events are append-only")


def _check_account_update(mapper, connection, target):
    for field in _ACCOUNT_STRUCTURAL_FIELDS:
        if get_history(target, field).has_changes():
            raise _violation(
                "Account", target, "UPDATE",
                f"Cannot modify structural field '{field}'",
            )


def _account_has_lines(connection, account_id) -> bool:
    from ledger_kernel.models.journal import JournalEntryLine

    row = connection.execute(
        select(JournalEntryLine.id).where(JournalEntryLine.account_id == account_id).limit(1)
    ).first()
    return row is not None


def _check_account_delete(mapper, connection, target):
    if _account_has_lines(connection, target.id):
        raise _violation(
            "Account", target, "DELETE",
            "Account is referenced by journal lines; deactivate it instead",
        )


def _period_has_entries(connection, period_id) -> bool:
    from ledger_kernel.models.journal import JournalEntry

    row = connection.execute(
        select(JournalEntry.id).where(JournalEntry.period_id == period_id).limit(1)
    ).first()
    return row is not None


def _check_fiscal_period_update(mapper, connection, target):
    status_history = get_history(target, "status")
    if status_history.deleted:
        old_status = status_history.deleted[0]
    else:
        old_status = target.status
    if str(getattr(old_status, "value", old_status)) == "locked":
        raise _violation("FiscalPeriod", target, "UPDATE", "Locked periods cannot change")

    dates_changed = (
        get_history(target, "start_date").has_changes()
        or get_history(target, "end_date").has_changes()
        or get_history(target, "tenant_id").has_changes()
    )
    if dates_changed and _period_has_entries(connection, target.id):
        raise _violation(
            "FiscalPeriod", target, "UPDATE",
            "Cannot change the dates of a period that has entries",
        )


def _check_fiscal_period_delete(mapper, connection, target):
    if _period_has_entries(connection, target.id):
        raise _violation(
            "FiscalPeriod", target, "DELETE",
            "Cannot delete a period that has entries",
        )


def _listeners():
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.audit_event import AuditEvent
    from ledger_kernel.models.fiscal_period import FiscalPeriod
    from ledger_kernel.models.journal import JournalEntry, JournalEntryLine

    return (
        (JournalEntry, "before_update", _check_journal_entry_update),
        (JournalEntry, "before_delete", _check_journal_entry_delete),
        (JournalEntryLine, "before_update", _check_journal_line_update),
        (JournalEntryLine, "before_delete", _check_journal_line_delete),
        (AuditEvent, "before_update", _check_audit_event_update),
        (AuditEvent, "before_delete", _check_audit_event_delete),
        (Account, "before_update", _check_account_update),
        (Account, "before_delete", _check_account_delete),
        (FiscalPeriod, "before_update", _check_fiscal_period_update),
        (FiscalPeriod, "before_delete", _check_fiscal_period_delete),
    )


def register_immutability_listeners() -> None:
    """
    Register all immutability listeners.  Safe to call more than once.
    """
    for target, event_name, listener in _listeners():
        if not event.contains(target, event_name, listener):
            event.listen(target, event_name, listener)


def unregister_immutability_listeners() -> None:
    """
    Remove the immutability listeners.

    WARNING: Only use this in tests that deliberately corrupt data to verify
    detection (e.g. balance drift tests).
    """
    for target, event_name, listener in _listeners():
        if event.contains(target, event_name, listener):
            event.remove(target, event_name, listener)

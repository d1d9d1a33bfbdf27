"""
SequenceService -- per-tenant, transactional counters.

Responsibility:
    Allocates entry numbers that are unique and strictly increasing within a
    tenant.  Numbers come from a locked counter row, never from
    ``MAX(entry_number) + 1``.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the PostingEngine
    inside the posting savepoint.

Invariants enforced:
    - Monotonic per (tenant, name): SELECT ... FOR UPDATE serializes
      concurrent allocations for the same tenant.
    - Transactional: the increment commits with the caller's transaction;
      a rolled-back post does not consume a number.

Failure modes:
    - IntegrityError on first-use creation races is absorbed with a savepoint
      and a re-read of the winner's row.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    JOURNAL_ENTRY = "journal_entry"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, tenant_id: UUID, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(
                SequenceCounter.tenant_id == tenant_id,
                SequenceCounter.name == sequence_name,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, tenant_id: UUID, sequence_name: str) -> int:
        """
        Get the next value for a tenant's named sequence.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously returned for (tenant_id, sequence_name).
            - The counter row stays locked until the transaction completes.
        """
        counter = self._locked_counter(tenant_id, sequence_name)

        if counter is None:
            # First use; another transaction may be creating it at the same time
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(
                    tenant_id=tenant_id, name=sequence_name, current_value=1
                )
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(tenant_id, sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, tenant_id: UUID, sequence_name: str) -> int | None:
        """Current value without incrementing; None if never used."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.tenant_id == tenant_id,
                SequenceCounter.name == sequence_name,
            )
        ).scalar_one_or_none()

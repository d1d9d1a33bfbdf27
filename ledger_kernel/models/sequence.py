"""
Module: ledger_kernel.models.sequence
Responsibility: Per-tenant named counters backing gap-free entry numbering.
Architecture position: Kernel > Models.  Written only by SequenceService.
"""

from uuid import UUID

from sqlalchemy import BigInteger, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString


class SequenceCounter(Base):
    """
    One counter row per (tenant, sequence name).

    Rows are read with SELECT ... FOR UPDATE, incremented and flushed inside
    the caller's transaction, so a rolled-back post never consumes a number.
    """

    __tablename__ = "sequence_counters"

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_sequence_tenant_name"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"

"""
Module: revrec_kernel.models.postable_entry
Responsibility: Outbox of postable-entry records handed to the GL subledger.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one postable entry per schedule entry (unique constraint), so
      a re-run sweep can never emit the same posting twice.
    - Rows are immutable once written.

Non-goals:
    - Delivery confirmation from the GL is tracked elsewhere; the engine
      only emits.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from revrec_kernel.db.base import Base, UUIDString


class PostableEntry(Base):
    """{periodId, contractId, pobId, amount, eventType} for the GL subledger."""

    __tablename__ = "postable_entries"
    __table_args__ = (
        Index("idx_postable_period", "period_id"),
    )

    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("periods.id"),
        nullable=False,
    )

    contract_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    obligation_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    schedule_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("recognition_schedule_entries.id"),
        nullable=False,
        unique=True,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    event_type: Mapped[str] = mapped_column(String(20), nullable=False)

    emitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_record(self) -> dict:
        """The record shape the GL subledger consumes."""
        return {
            "periodId": str(self.period_id),
            "contractId": str(self.contract_id),
            "pobId": str(self.obligation_id),
            "amount": str(self.amount),
            "eventType": str(self.event_type),
        }

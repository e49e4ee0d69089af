"""
Module: revrec_kernel.models.source_event
Responsibility: ORM persistence for externally originated business facts
    (orders, modifications, usage records, milestone completions, billings).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (source_system, source_id) is unique: a redelivered event is detected
      by payload hash rather than processed twice.
    - contract_id, once set, points at the contract version that was current
      when the event was processed and is never repointed.

Audit relevance:
    The source event is the root of every lineage trace.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from revrec_kernel.db.base import EnumString, TrackedBase, UUIDString


class SourceEventType(str, Enum):
    """Kinds of business fact the intake understands."""

    BOOKING = "Booking"
    MODIFICATION = "Modification"
    CANCELLATION = "Cancellation"
    USAGE = "Usage"
    MILESTONE = "Milestone"
    BILLING = "Billing"


class ProcessingStatus(str, Enum):
    """Processing status of a source event."""

    PENDING = "Pending"
    ALLOCATED = "Allocated"
    ERROR = "Error"


class SourceEvent(TrackedBase):
    """An ingested source event and its processing outcome."""

    __tablename__ = "source_events"
    __table_args__ = (
        UniqueConstraint("source_system", "source_id", name="uq_source_event"),
        Index("idx_source_event_source_id", "source_id"),
        Index("idx_source_event_status", "processing_status"),
        Index("idx_source_event_contract", "contract_id"),
        Index("idx_source_event_date", "ledger_id", "event_date"),
    )

    source_system: Mapped[str] = mapped_column(String(50), nullable=False)

    source_id: Mapped[str] = mapped_column(String(100), nullable=False)

    event_type: Mapped[SourceEventType] = mapped_column(EnumString(SourceEventType), nullable=False)

    event_date: Mapped[date] = mapped_column(Date, nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    ledger_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    customer_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    item_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    quantity: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Contract number this event refers to (modification, usage, billing)
    reference_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    legal_entity_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    org_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Remaining attributes (lines, milestone names, recognition dates)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    processing_status: Mapped[ProcessingStatus] = mapped_column(
        EnumString(ProcessingStatus),
        nullable=False,
        default=ProcessingStatus.PENDING,
    )

    contract_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("revenue_contracts.id"),
        nullable=True,
    )

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<SourceEvent {self.source_system}/{self.source_id} ({self.processing_status})>"

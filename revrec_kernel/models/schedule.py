"""
Module: revrec_kernel.models.schedule
Responsibility: ORM persistence for dated, period-bucketed recognition
    schedule entries.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - For every obligation, the non-Reversed entries sum exactly to the
      obligation's allocated_price (the final entry absorbs rounding).
    - Posted entries are immutable and cannot be deleted; changes arrive as
      new Catchup/Adjustment/Reversal entries (db/immutability.py).

Audit relevance:
    ``carried_from_id`` links an entry mirrored onto a successor obligation
    back to the posted entry it represents; mirrored entries are never
    handed to the general ledger a second time.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from revrec_kernel.db.base import EnumString, TrackedBase, UUIDString


class EntryEventType(str, Enum):
    """Why a schedule entry exists."""

    INITIAL = "Initial"
    CATCHUP = "Catchup"
    ADJUSTMENT = "Adjustment"
    REVERSAL = "Reversal"


class EntryStatus(str, Enum):
    """Lifecycle status of a schedule entry."""

    SCHEDULED = "Scheduled"
    POSTED = "Posted"
    REVERSED = "Reversed"


class RecognitionScheduleEntry(TrackedBase):
    """One dated slice of an obligation's revenue, bucketed into a period."""

    __tablename__ = "recognition_schedule_entries"
    __table_args__ = (
        Index("idx_entry_obligation", "obligation_id"),
        Index("idx_entry_sweep", "status", "schedule_date"),
        Index("idx_entry_period", "period_id"),
        Index("idx_entry_source_event", "source_event_id"),
    )

    obligation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("performance_obligations.id"),
        nullable=False,
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("revenue_contracts.id"),
        nullable=False,
    )

    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("periods.id"),
        nullable=False,
    )

    schedule_date: Mapped[date] = mapped_column(Date, nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    event_type: Mapped[EntryEventType] = mapped_column(
        EnumString(EntryEventType),
        nullable=False,
        default=EntryEventType.INITIAL,
    )

    status: Mapped[EntryStatus] = mapped_column(
        EnumString(EntryStatus),
        nullable=False,
        default=EntryStatus.SCHEDULED,
    )

    # Period whose sweep posted this entry
    posted_period_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Usage fact or milestone event that produced the entry
    source_event_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    carried_from_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("recognition_schedule_entries.id"),
        nullable=True,
    )

    # Milestone whose completion this entry recognizes
    milestone_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("obligation_milestones.id"),
        nullable=True,
    )

    # Entry this one replaced (milestone re-dating)
    replaces_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<RecognitionScheduleEntry {self.schedule_date} {self.amount} "
            f"{self.event_type} ({self.status})>"
        )

    @property
    def is_posted(self) -> bool:
        return self.status == EntryStatus.POSTED

    @property
    def counts_toward_total(self) -> bool:
        return self.status != EntryStatus.REVERSED

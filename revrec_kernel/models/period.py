"""
Module: revrec_kernel.models.period
Responsibility: ORM persistence for accounting periods -- the date ranges
    schedule entries are bucketed into and swept from.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Lifecycle NeverOpened -> Future -> Open -> Closed -> PermanentlyClosed,
      forward-only except the audited administrative reopen (Closed -> Open).
    - New postings are accepted only while Open.
    - PermanentlyClosed is terminal; the row can no longer change.

Failure modes:
    - PeriodTransitionError / PeriodImmutableError from PeriodService.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from revrec_kernel.db.base import EnumString, TrackedBase, UUIDString


class PeriodStatus(str, Enum):
    """Lifecycle status of an accounting period."""

    NEVER_OPENED = "NeverOpened"
    FUTURE = "Future"
    OPEN = "Open"
    CLOSED = "Closed"
    PERMANENTLY_CLOSED = "PermanentlyClosed"


# Normal forward transitions; Closed -> Open exists only as an audited reopen
FORWARD_TRANSITIONS: dict[PeriodStatus, PeriodStatus] = {
    PeriodStatus.NEVER_OPENED: PeriodStatus.FUTURE,
    PeriodStatus.FUTURE: PeriodStatus.OPEN,
    PeriodStatus.OPEN: PeriodStatus.CLOSED,
    PeriodStatus.CLOSED: PeriodStatus.PERMANENTLY_CLOSED,
}

CLOSED_STATUSES = (PeriodStatus.CLOSED, PeriodStatus.PERMANENTLY_CLOSED)


class Period(TrackedBase):
    """
    An accounting period within one ledger.

    Periods are rows passed explicitly (by id) into every operation that
    needs them; there is no ambient "current period".
    """

    __tablename__ = "periods"
    __table_args__ = (
        UniqueConstraint("ledger_id", "period_name", name="uq_period_ledger_name"),
        Index("idx_period_ledger_dates", "ledger_id", "start_date", "end_date"),
        Index("idx_period_status", "status"),
    )

    ledger_id: Mapped[str] = mapped_column(String(50), nullable=False)

    # e.g. "Jan-26", "2026-01"
    period_name: Mapped[str] = mapped_column(String(30), nullable=False)

    # Period boundaries (inclusive)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[PeriodStatus] = mapped_column(
        EnumString(PeriodStatus),
        nullable=False,
        default=PeriodStatus.NEVER_OPENED,
    )

    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reopen_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<Period {self.ledger_id}/{self.period_name}: {self.status}>"

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    def contains_date(self, check_date: date) -> bool:
        """Check if a date falls within this period."""
        return self.start_date <= check_date <= self.end_date

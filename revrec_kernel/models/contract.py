"""
Module: revrec_kernel.models.contract
Responsibility: ORM persistence for revenue contracts, their performance
    obligations and milestone plans.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Contract versions are append-only: (contract_number, version_number) is
      unique and a modification inserts version N+1 rather than editing N.
    - For Active and Superseded versions, total_allocated_price equals the
      sum of the obligations' allocated_price within one minor unit.
    - Superseded and Cancelled versions and any allocated obligation keep
      their financial fields frozen (db/immutability.py).

Failure modes:
    - IntegrityError on a duplicate (contract_number, version_number); the
      contract service turns it into VersionConflictError.

Audit relevance:
    A source event links to the contract version that was current when it
    was processed; the link survives later versions.  Obligations point to
    their predecessor in the previous version so posted history can be
    followed across modifications.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from revrec_kernel.db.base import EnumString, TrackedBase, UUIDString


class ContractStatus(str, Enum):
    """Lifecycle status of one contract version."""

    DRAFT = "Draft"
    ACTIVE = "Active"
    SUPERSEDED = "Superseded"
    CANCELLED = "Cancelled"


# Versions whose schedules are still swept and whose balances count
LIVE_CONTRACT_STATUSES = (ContractStatus.ACTIVE, ContractStatus.CANCELLED)


class RecognitionMethod(str, Enum):
    """How an obligation's allocated price turns into revenue."""

    POINT_IN_TIME = "PointInTime"
    RATABLE = "Ratable"
    MILESTONE = "Milestone"
    USAGE = "Usage"


class ObligationStatus(str, Enum):
    """Lifecycle status of a performance obligation."""

    UNALLOCATED = "Unallocated"
    ALLOCATED = "Allocated"
    RECOGNIZING = "Recognizing"
    COMPLETE = "Complete"


class RevenueContract(TrackedBase):
    """
    One version of a customer agreement.

    "Current version" is a query (highest version_number not Superseded),
    never a stored pointer.
    """

    __tablename__ = "revenue_contracts"
    __table_args__ = (
        UniqueConstraint(
            "contract_number", "version_number", name="uq_contract_version"
        ),
        Index("idx_contract_number", "contract_number"),
        Index("idx_contract_status", "status"),
        Index("idx_contract_ledger", "ledger_id"),
    )

    contract_number: Mapped[str] = mapped_column(String(50), nullable=False)

    version_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)

    ledger_id: Mapped[str] = mapped_column(String(50), nullable=False)

    legal_entity_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    org_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    status: Mapped[ContractStatus] = mapped_column(
        EnumString(ContractStatus),
        nullable=False,
        default=ContractStatus.DRAFT,
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    total_transaction_price: Mapped[Decimal] = mapped_column(nullable=False)

    total_allocated_price: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )

    effective_date: Mapped[date] = mapped_column(Date, nullable=False)

    sign_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # SSP book used for allocation (None = default book)
    ssp_book_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    previous_version_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("revenue_contracts.id"),
        nullable=True,
    )

    modification_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    obligations: Mapped[list["PerformanceObligation"]] = relationship(
        back_populates="contract",
        order_by="PerformanceObligation.line_number",
    )

    def __repr__(self) -> str:
        return f"<RevenueContract {self.contract_number} v{self.version_number} ({self.status})>"

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_CONTRACT_STATUSES


class PerformanceObligation(TrackedBase):
    """
    A distinct promised deliverable within one contract version.

    ``allocated_price`` is owned by the allocation step; nothing else
    writes it.
    """

    __tablename__ = "performance_obligations"
    __table_args__ = (
        UniqueConstraint("contract_id", "line_number", name="uq_obligation_line"),
        Index("idx_obligation_contract", "contract_id"),
        Index("idx_obligation_predecessor", "predecessor_id"),
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("revenue_contracts.id"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    item_id: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("1"))

    # Unit price observed in the contract; excluded from the proportional pool
    observable_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Unit price used as the SSP estimate when the catalog has no line
    list_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    region: Mapped[str | None] = mapped_column(String(50), nullable=True)

    standalone_selling_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    estimated_standalone_value: Mapped[Decimal | None] = mapped_column(nullable=True)

    allocated_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    recognition_method: Mapped[RecognitionMethod] = mapped_column(
        EnumString(RecognitionMethod),
        nullable=False,
    )

    recognition_start: Mapped[date] = mapped_column(Date, nullable=False)

    recognition_end: Mapped[date] = mapped_column(Date, nullable=False)

    usage_rate: Mapped[Decimal | None] = mapped_column(nullable=True)

    ssp_line_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ssp_lines.id"),
        nullable=True,
    )

    predecessor_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("performance_obligations.id"),
        nullable=True,
    )

    status: Mapped[ObligationStatus] = mapped_column(
        EnumString(ObligationStatus),
        nullable=False,
        default=ObligationStatus.UNALLOCATED,
    )

    contract: Mapped[RevenueContract] = relationship(back_populates="obligations")

    milestones: Mapped[list["ObligationMilestone"]] = relationship(
        back_populates="obligation",
        order_by="ObligationMilestone.sequence",
    )

    def __repr__(self) -> str:
        return f"<PerformanceObligation {self.item_id} line {self.line_number} ({self.status})>"


class ObligationMilestone(TrackedBase):
    """A pre-agreed milestone and its share of the obligation's price."""

    __tablename__ = "obligation_milestones"
    __table_args__ = (
        UniqueConstraint("obligation_id", "sequence", name="uq_milestone_sequence"),
    )

    obligation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("performance_obligations.id"),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    percentage: Mapped[Decimal] = mapped_column(nullable=False)

    planned_date: Mapped[date] = mapped_column(Date, nullable=False)

    completed_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    obligation: Mapped[PerformanceObligation] = relationship(back_populates="milestones")

    @property
    def trigger_date(self) -> date:
        return self.completed_date or self.planned_date

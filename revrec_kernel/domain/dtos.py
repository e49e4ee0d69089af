"""
DTOs -- Immutable snapshots handed across the service boundary.

Responsibility:
    Defines the frozen data structures services and selectors return instead
    of ORM rows: periods, contract versions, performance obligations,
    milestones, schedule entries and source events.

Architecture position:
    Kernel > Domain -- free of database access.  ``from_model()`` class
    methods are boundary converters called only from services and selectors.

Invariants enforced:
    - Frozen dataclasses; a caller cannot change persisted state through a
      returned value.
    - Status fields carry the enum's string value, so they compare equal to
      the ORM enum members and serialize without conversion.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from revrec_kernel.models.contract import (
        ObligationMilestone,
        PerformanceObligation,
        RevenueContract,
    )
    from revrec_kernel.models.period import Period
    from revrec_kernel.models.schedule import RecognitionScheduleEntry
    from revrec_kernel.models.source_event import SourceEvent


def _value(status: Any) -> str:
    return status.value if hasattr(status, "value") else str(status)


@dataclass(frozen=True)
class PeriodInfo:
    """Snapshot of an accounting period."""

    id: UUID
    ledger_id: str
    period_name: str
    start_date: date
    end_date: date
    status: str
    closed_at: datetime | None = None
    closed_by_id: UUID | None = None
    reopen_count: int = 0

    @property
    def is_open(self) -> bool:
        return self.status == "Open"

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date

    @classmethod
    def from_model(cls, period: Period) -> PeriodInfo:
        return cls(
            id=period.id,
            ledger_id=period.ledger_id,
            period_name=period.period_name,
            start_date=period.start_date,
            end_date=period.end_date,
            status=_value(period.status),
            closed_at=period.closed_at,
            closed_by_id=period.closed_by_id,
            reopen_count=period.reopen_count or 0,
        )


@dataclass(frozen=True)
class MilestoneInfo:
    """Snapshot of one milestone in an obligation's plan."""

    id: UUID
    sequence: int
    name: str
    percentage: Decimal
    planned_date: date
    completed_date: date | None

    @classmethod
    def from_model(cls, milestone: ObligationMilestone) -> MilestoneInfo:
        return cls(
            id=milestone.id,
            sequence=milestone.sequence,
            name=milestone.name,
            percentage=milestone.percentage,
            planned_date=milestone.planned_date,
            completed_date=milestone.completed_date,
        )


@dataclass(frozen=True)
class ObligationInfo:
    """Snapshot of a performance obligation within one contract version."""

    id: UUID
    contract_id: UUID
    line_number: int
    item_id: str
    quantity: Decimal
    observable_price: Decimal | None
    list_price: Decimal | None
    standalone_selling_price: Decimal | None
    estimated_standalone_value: Decimal | None
    allocated_price: Decimal
    recognition_method: str
    recognition_start: date
    recognition_end: date
    status: str
    ssp_line_id: UUID | None = None
    predecessor_id: UUID | None = None
    usage_rate: Decimal | None = None
    milestones: tuple[MilestoneInfo, ...] = ()

    @classmethod
    def from_model(cls, pob: PerformanceObligation) -> ObligationInfo:
        return cls(
            id=pob.id,
            contract_id=pob.contract_id,
            line_number=pob.line_number,
            item_id=pob.item_id,
            quantity=pob.quantity,
            observable_price=pob.observable_price,
            list_price=pob.list_price,
            standalone_selling_price=pob.standalone_selling_price,
            estimated_standalone_value=pob.estimated_standalone_value,
            allocated_price=pob.allocated_price,
            recognition_method=_value(pob.recognition_method),
            recognition_start=pob.recognition_start,
            recognition_end=pob.recognition_end,
            status=_value(pob.status),
            ssp_line_id=pob.ssp_line_id,
            predecessor_id=pob.predecessor_id,
            usage_rate=pob.usage_rate,
            milestones=tuple(MilestoneInfo.from_model(m) for m in pob.milestones),
        )


@dataclass(frozen=True)
class ContractInfo:
    """Snapshot of one contract version and its obligations."""

    id: UUID
    contract_number: str
    version_number: int
    customer_id: str
    ledger_id: str
    legal_entity_id: str | None
    org_id: str | None
    status: str
    currency: str
    total_transaction_price: Decimal
    total_allocated_price: Decimal
    effective_date: date
    previous_version_id: UUID | None = None
    modification_reason: str | None = None
    obligations: tuple[ObligationInfo, ...] = ()

    @property
    def is_live(self) -> bool:
        return self.status in ("Active", "Cancelled")

    def obligation_for_line(self, line_number: int) -> ObligationInfo | None:
        for obligation in self.obligations:
            if obligation.line_number == line_number:
                return obligation
        return None

    @classmethod
    def from_model(cls, contract: RevenueContract) -> ContractInfo:
        return cls(
            id=contract.id,
            contract_number=contract.contract_number,
            version_number=contract.version_number,
            customer_id=contract.customer_id,
            ledger_id=contract.ledger_id,
            legal_entity_id=contract.legal_entity_id,
            org_id=contract.org_id,
            status=_value(contract.status),
            currency=contract.currency,
            total_transaction_price=contract.total_transaction_price,
            total_allocated_price=contract.total_allocated_price,
            effective_date=contract.effective_date,
            previous_version_id=contract.previous_version_id,
            modification_reason=contract.modification_reason,
            obligations=tuple(ObligationInfo.from_model(o) for o in contract.obligations),
        )


@dataclass(frozen=True)
class ScheduleEntryInfo:
    """Snapshot of one recognition schedule entry."""

    id: UUID
    obligation_id: UUID
    contract_id: UUID
    period_id: UUID
    schedule_date: date
    amount: Decimal
    event_type: str
    status: str
    posted_period_id: UUID | None = None
    posted_at: datetime | None = None
    carried_from_id: UUID | None = None
    replaces_id: UUID | None = None
    source_event_id: UUID | None = None

    @classmethod
    def from_model(cls, entry: RecognitionScheduleEntry) -> ScheduleEntryInfo:
        return cls(
            id=entry.id,
            obligation_id=entry.obligation_id,
            contract_id=entry.contract_id,
            period_id=entry.period_id,
            schedule_date=entry.schedule_date,
            amount=entry.amount,
            event_type=_value(entry.event_type),
            status=_value(entry.status),
            posted_period_id=entry.posted_period_id,
            posted_at=entry.posted_at,
            carried_from_id=entry.carried_from_id,
            replaces_id=entry.replaces_id,
            source_event_id=entry.source_event_id,
        )


@dataclass(frozen=True)
class SourceEventInfo:
    """Snapshot of an ingested source event."""

    id: UUID
    source_system: str
    source_id: str
    event_type: str
    event_date: date
    amount: Decimal
    currency: str
    processing_status: str
    contract_id: UUID | None
    error_message: str | None
    attempt_count: int
    payload_hash: str

    @classmethod
    def from_model(cls, event: SourceEvent) -> SourceEventInfo:
        return cls(
            id=event.id,
            source_system=event.source_system,
            source_id=event.source_id,
            event_type=_value(event.event_type),
            event_date=event.event_date,
            amount=event.amount,
            currency=event.currency,
            processing_status=_value(event.processing_status),
            contract_id=event.contract_id,
            error_message=event.error_message,
            attempt_count=event.attempt_count or 0,
            payload_hash=event.payload_hash,
        )

"""
Source event lineage selector.

Walks the chain from a source event to the contract version it produced or
touched, that version's performance obligations, their recognition schedule
entries, and how much of that schedule has been posted.

DTOs are defined inline following the selector convention.

A missing link is reported as None (or an empty tuple) rather than raised:
an event still Pending, or one that failed, traces to no contract.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import func, select

from revrec_kernel.domain.dtos import (
    ContractInfo,
    ObligationInfo,
    ScheduleEntryInfo,
    SourceEventInfo,
)
from revrec_kernel.models.audit_event import AuditEvent
from revrec_kernel.models.contract import ContractStatus, RevenueContract
from revrec_kernel.models.schedule import EntryStatus, RecognitionScheduleEntry
from revrec_kernel.models.source_event import SourceEvent
from revrec_kernel.selectors.base import BaseSelector


class PostingStatus(str, Enum):
    """How far a traced contract version's schedule has been posted."""

    NOT_LINKED = "NotLinked"
    NO_SCHEDULE = "NoSchedule"
    SCHEDULED = "Scheduled"
    PARTIALLY_POSTED = "PartiallyPosted"
    POSTED = "Posted"
    # A later version carries the schedule; this version's entries never post
    SUPERSEDED = "Superseded"


# ============================================================================
# DTOs
# ============================================================================


@dataclass(frozen=True)
class TimelineEntry:
    """Single audited action touching the traced event or contract."""

    seq: int
    occurred_at: datetime
    entity_type: str
    entity_id: UUID
    action: str
    actor_id: UUID


@dataclass(frozen=True)
class TraceResult:
    source_id: str
    source_event: SourceEventInfo | None
    contract: ContractInfo | None
    obligations: tuple[ObligationInfo, ...]
    recognitions: tuple[ScheduleEntryInfo, ...]
    posting_status: str
    scheduled_amount: Decimal = Decimal("0")
    posted_amount: Decimal = Decimal("0")
    current_version_number: int | None = None
    timeline: tuple[TimelineEntry, ...] = ()

    @property
    def is_linked(self) -> bool:
        return self.contract is not None


# ============================================================================
# Selector
# ============================================================================


class TraceSelector(BaseSelector[SourceEvent]):
    """Read-only lineage lookup keyed by the source system's identifier."""

    def trace(self, source_id: str, source_system: str | None = None) -> TraceResult:
        event = self._find_event(source_id, source_system)
        if event is None:
            return TraceResult(
                source_id=source_id,
                source_event=None,
                contract=None,
                obligations=(),
                recognitions=(),
                posting_status=PostingStatus.NOT_LINKED.value,
            )

        event_info = SourceEventInfo.from_model(event)
        contract = (
            self.session.get(RevenueContract, event.contract_id)
            if event.contract_id is not None
            else None
        )
        if contract is None:
            return TraceResult(
                source_id=source_id,
                source_event=event_info,
                contract=None,
                obligations=(),
                recognitions=(),
                posting_status=PostingStatus.NOT_LINKED.value,
                timeline=self._timeline([event.id]),
            )

        contract_info = ContractInfo.from_model(contract)
        entries = self.session.execute(
            select(RecognitionScheduleEntry)
            .where(RecognitionScheduleEntry.contract_id == contract.id)
            .order_by(
                RecognitionScheduleEntry.schedule_date,
                RecognitionScheduleEntry.created_at,
            )
        ).scalars().all()

        counted = [e for e in entries if e.status != EntryStatus.REVERSED]
        posted = [e for e in counted if e.status == EntryStatus.POSTED]

        version_ids = self.session.execute(
            select(RevenueContract.id).where(
                RevenueContract.contract_number == contract.contract_number
            )
        ).scalars().all()
        current_version = self.session.execute(
            select(func.max(RevenueContract.version_number)).where(
                RevenueContract.contract_number == contract.contract_number
            )
        ).scalar_one()

        return TraceResult(
            source_id=source_id,
            source_event=event_info,
            contract=contract_info,
            obligations=contract_info.obligations,
            recognitions=tuple(ScheduleEntryInfo.from_model(e) for e in entries),
            posting_status=self._posting_status(contract.status, counted, posted).value,
            scheduled_amount=sum((e.amount for e in counted), Decimal("0")),
            posted_amount=sum((e.amount for e in posted), Decimal("0")),
            current_version_number=current_version,
            timeline=self._timeline([event.id, *version_ids]),
        )

    def _find_event(self, source_id: str, source_system: str | None) -> SourceEvent | None:
        query = select(SourceEvent).where(SourceEvent.source_id == source_id)
        if source_system is not None:
            query = query.where(SourceEvent.source_system == source_system)
        # Same source id from two systems: the most recently received wins
        query = query.order_by(SourceEvent.created_at.desc(), SourceEvent.source_system)
        return self.session.execute(query).scalars().first()

    @staticmethod
    def _posting_status(
        status: ContractStatus, counted: list, posted: list
    ) -> PostingStatus:
        if status == ContractStatus.SUPERSEDED:
            return PostingStatus.SUPERSEDED
        if not counted:
            return PostingStatus.NO_SCHEDULE
        if not posted:
            return PostingStatus.SCHEDULED
        if len(posted) == len(counted):
            return PostingStatus.POSTED
        return PostingStatus.PARTIALLY_POSTED

    def _timeline(self, entity_ids: list[UUID]) -> tuple[TimelineEntry, ...]:
        rows = self.session.execute(
            select(AuditEvent)
            .where(AuditEvent.entity_id.in_(entity_ids))
            .order_by(AuditEvent.seq)
        ).scalars().all()
        return tuple(
            TimelineEntry(
                seq=row.seq,
                occurred_at=row.occurred_at,
                entity_type=row.entity_type,
                entity_id=row.entity_id,
                action=row.action.value,
                actor_id=row.actor_id,
            )
            for row in rows
        )

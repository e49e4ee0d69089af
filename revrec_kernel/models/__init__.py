"""Domain models for the revenue recognition kernel."""

from revrec_kernel.models.audit_event import AuditAction, AuditEvent
from revrec_kernel.models.contract import (
    LIVE_CONTRACT_STATUSES,
    ContractStatus,
    ObligationMilestone,
    ObligationStatus,
    PerformanceObligation,
    RecognitionMethod,
    RevenueContract,
)
from revrec_kernel.models.period import Period, PeriodStatus
from revrec_kernel.models.postable_entry import PostableEntry
from revrec_kernel.models.schedule import (
    EntryEventType,
    EntryStatus,
    RecognitionScheduleEntry,
)
from revrec_kernel.models.source_event import (
    ProcessingStatus,
    SourceEvent,
    SourceEventType,
)
from revrec_kernel.models.ssp import SSPBook, SSPBookStatus, SSPLine

__all__ = [
    "LIVE_CONTRACT_STATUSES",
    "AuditAction",
    "AuditEvent",
    "ContractStatus",
    "EntryEventType",
    "EntryStatus",
    "ObligationMilestone",
    "ObligationStatus",
    "PerformanceObligation",
    "Period",
    "PeriodStatus",
    "PostableEntry",
    "ProcessingStatus",
    "RecognitionMethod",
    "RecognitionScheduleEntry",
    "RevenueContract",
    "SSPBook",
    "SSPBookStatus",
    "SSPLine",
    "SourceEvent",
    "SourceEventType",
]

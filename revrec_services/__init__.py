"""
revrec_services -- Package init and public API.

Responsibility:
    Stateful services that compose the pure engines (revrec_engines/) with
    database sessions, configuration and the clock: SSP catalog, contract
    versioning, recognition scheduling, period close and event intake.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        revrec_services/ -> revrec_engines/  (allowed)
        revrec_services/ -> revrec_kernel/   (allowed)
        revrec_services/ -> revrec_config/   (allowed)
        revrec_engines/  -> revrec_services/ (FORBIDDEN)
        revrec_kernel/   -> revrec_services/ (FORBIDDEN)

Invariants enforced:
    - Services flush and never commit; the caller owns the transaction.
    - All service wiring is centralised in RevRecOrchestrator.
"""

from revrec_services._close_types import (
    CloseCheck,
    CloseException,
    CloseExceptionType,
    CloseResult,
    SweepResult,
)
from revrec_services.close_orchestrator import CloseOrchestrator
from revrec_services.contract_service import (
    ContractDraft,
    ContractModification,
    ContractService,
    MilestoneDraft,
    ObligationDraft,
)
from revrec_services.event_intake import EventIntakeService, IntakeResult, IntakeStatus
from revrec_services.period_service import PeriodService
from revrec_services.recognition_scheduler import RecognitionScheduler
from revrec_services.revrec_orchestrator import RevRecOrchestrator
from revrec_services.ssp_catalog import (
    SSPBookInfo,
    SSPCatalogService,
    SSPLineInfo,
    SSPResolution,
)

__all__ = [
    "CloseCheck",
    "CloseException",
    "CloseExceptionType",
    "CloseOrchestrator",
    "CloseResult",
    "ContractDraft",
    "ContractModification",
    "ContractService",
    "EventIntakeService",
    "IntakeResult",
    "IntakeStatus",
    "MilestoneDraft",
    "ObligationDraft",
    "PeriodService",
    "RecognitionScheduler",
    "RevRecOrchestrator",
    "SSPBookInfo",
    "SSPCatalogService",
    "SSPLineInfo",
    "SSPResolution",
    "SweepResult",
]

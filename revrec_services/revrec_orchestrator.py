"""
revrec_services.revrec_orchestrator -- Central DI container for revrec services.

Responsibility:
    Creates every revenue recognition service exactly once and wires them
    together.  No service creates other services internally.

Architecture position:
    Services -- top of the service layer and the only place where services
    are constructed and composed.

Invariants enforced:
    - Single-instance lifecycle: one AuditorService (and so one audit
      sequence) per orchestrator.
    - All services share the same Session, Clock and RevRecConfig.

Usage:
    orchestrator = RevRecOrchestrator(session, config=get_active_config())
    orchestrator.intake.ingest(event, actor_id)
    orchestrator.close_orchestrator.sweep(period_id, actor_id)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from revrec_config import RevRecConfig, get_active_config
from revrec_kernel.domain.clock import Clock, SystemClock
from revrec_kernel.selectors.revenue_selector import RevenueSelector
from revrec_kernel.selectors.trace_selector import TraceSelector
from revrec_kernel.services.auditor_service import AuditorService
from revrec_services.close_orchestrator import CloseOrchestrator
from revrec_services.contract_service import ContractService
from revrec_services.event_intake import EventIntakeService
from revrec_services.period_service import PeriodService
from revrec_services.recognition_scheduler import RecognitionScheduler
from revrec_services.ssp_catalog import SSPCatalogService


class RevRecOrchestrator:
    """Central factory for revenue recognition services.

    Non-goals:
        - Does NOT manage transaction boundaries (caller's responsibility).
    """

    def __init__(
        self,
        session: Session,
        config: RevRecConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self.config = config or get_active_config()

        # Order matters (dependency graph)
        self.auditor = AuditorService(session, self._clock)
        self.period_service = PeriodService(session, self.auditor, self._clock)
        self.catalog = SSPCatalogService(session, self._clock)
        self.scheduler = RecognitionScheduler(session, self.config, self.auditor, self._clock)
        self.contract_service = ContractService(
            session,
            self.catalog,
            self.scheduler,
            self.auditor,
            self.config,
            self._clock,
        )
        self.close_orchestrator = CloseOrchestrator(
            session, self.period_service, self.auditor, self.config, self._clock
        )
        self.intake = EventIntakeService(
            session,
            self.contract_service,
            self.scheduler,
            self.auditor,
            self.config,
            self._clock,
        )

        # Read side
        self.trace_selector = TraceSelector(session)
        self.revenue_selector = RevenueSelector(session)

"""
revrec_services.close_orchestrator -- period sweep and close.

Responsibility:
    Sweep an Open period (post every due Scheduled entry of a live contract
    and emit one postable entry per posting), report what blocks the close,
    and close the period once nothing does.

Architecture position:
    Services -- orchestration over PeriodService and AuditorService.
    Consumes DTOs from _close_types.py.

Invariants enforced:
    - Sweep and close serialize on the period row (SELECT ... FOR UPDATE).
    - Sweep is idempotent: a posted entry is never swept again and at most
      one postable entry exists per schedule entry.  Totals are recomputed
      from state, so a repeated sweep reports the same values.
    - Only live contract versions (Active, Cancelled) are swept and block
      close; Superseded versions are history.
    - ``can_close`` takes no locks.
    - Work proceeds in batches of ``sweep.batch_size`` entries.

Failure modes:
    - PeriodNotFoundError for an unknown period id.
    - PeriodNotOpenError when sweeping a period that is not Open.
    - PeriodNotReadyError from ``close`` with every blocking exception.

Audit relevance:
    Each sweep and close is written to the audit chain with its totals;
    every posting is handed to the general ledger as a PostableEntry.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from revrec_config import RevRecConfig
from revrec_kernel.domain.clock import Clock, SystemClock
from revrec_kernel.domain.currency import CurrencyRegistry
from revrec_kernel.exceptions import PeriodNotFoundError, PeriodNotOpenError, PeriodNotReadyError
from revrec_kernel.logging_config import LogContext, get_logger
from revrec_kernel.models.audit_event import AuditAction
from revrec_kernel.models.contract import (
    LIVE_CONTRACT_STATUSES,
    ContractStatus,
    ObligationStatus,
    PerformanceObligation,
    RevenueContract,
)
from revrec_kernel.models.period import Period, PeriodStatus
from revrec_kernel.models.postable_entry import PostableEntry
from revrec_kernel.models.schedule import EntryStatus, RecognitionScheduleEntry
from revrec_kernel.models.source_event import ProcessingStatus, SourceEvent, SourceEventType
from revrec_kernel.services.auditor_service import AuditorService
from revrec_services._close_types import (
    CloseCheck,
    CloseException,
    CloseExceptionType,
    CloseResult,
    SweepResult,
)
from revrec_services.period_service import PeriodService
from revrec_services.recognition_scheduler import refresh_obligation_status

logger = get_logger("services.close")

ZERO = Decimal("0")


class CloseOrchestrator:
    """
    Sweeps and closes accounting periods.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT deliver postable entries to the general ledger; it only
          emits them (``pending_postable_entries`` is the handoff read).
    """

    def __init__(
        self,
        session: Session,
        period_service: PeriodService,
        auditor: AuditorService,
        config: RevRecConfig,
        clock: Clock | None = None,
    ):
        self._session = session
        self._period_service = period_service
        self._auditor = auditor
        self._config = config
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def sweep(self, period_id: UUID, actor_id: UUID) -> SweepResult:
        """
        Post every Scheduled entry of a live contract dated on or before the
        period's end date.

        Raises:
            PeriodNotOpenError: If the period is not Open.
        """
        with LogContext.bind(period_id=str(period_id), actor_id=str(actor_id)):
            period = self._period_service.get_period_for_update(period_id)
            if period.status != PeriodStatus.OPEN:
                logger.warning(
                    "sweep_rejected_period_not_open",
                    extra={"period_name": period.period_name, "status": period.status.value},
                )
                raise PeriodNotOpenError(period.period_name, period.status.value)

            logger.info(
                "sweep_started",
                extra={"period_name": period.period_name, "ledger_id": period.ledger_id},
            )

            now = self._clock.now()
            batch_size = self._config.sweep.batch_size
            emitted: list[PostableEntry] = []
            touched_obligations: set[UUID] = set()

            while True:
                batch = self._session.execute(
                    self._due_entries_query(period)
                    .order_by(RecognitionScheduleEntry.schedule_date, RecognitionScheduleEntry.id)
                    .limit(batch_size)
                ).scalars().all()
                if not batch:
                    break

                for entry in batch:
                    contract = self._session.get(RevenueContract, entry.contract_id)
                    entry.status = EntryStatus.POSTED
                    entry.posted_period_id = period.id
                    entry.posted_at = now
                    entry.updated_by_id = actor_id

                    postable = PostableEntry(
                        period_id=period.id,
                        contract_id=entry.contract_id,
                        obligation_id=entry.obligation_id,
                        schedule_entry_id=entry.id,
                        amount=entry.amount,
                        currency=contract.currency,
                        event_type=entry.event_type.value,
                        emitted_at=now,
                    )
                    self._session.add(postable)
                    emitted.append(postable)
                    touched_obligations.add(entry.obligation_id)

                self._session.flush()
                logger.debug("sweep_batch_posted", extra={"batch_count": len(batch)})

            for obligation_id in touched_obligations:
                obligation = self._session.get(PerformanceObligation, obligation_id)
                refresh_obligation_status(self._session, obligation)
            self._session.flush()

            total_recognized, billed = self._period_totals(period)
            posted_amount = sum((p.amount for p in emitted), ZERO)
            result = SweepResult(
                period_id=period.id,
                period_name=period.period_name,
                posted_count=len(emitted),
                posted_amount=posted_amount,
                total_recognized=total_recognized,
                billed_amount=billed,
                unbilled_accrual=total_recognized - billed,
                postable_entries=tuple(p.to_record() for p in emitted),
            )

            self._auditor.record_period_event(
                period_id=period.id,
                action=AuditAction.PERIOD_SWEPT,
                actor_id=actor_id,
                period_name=period.period_name,
                posted_count=result.posted_count,
                posted_amount=result.posted_amount,
                total_recognized=result.total_recognized,
                billed_amount=result.billed_amount,
                unbilled_accrual=result.unbilled_accrual,
            )
            logger.info(
                "sweep_completed",
                extra={
                    "period_name": period.period_name,
                    "posted_count": result.posted_count,
                    "posted_amount": str(result.posted_amount),
                    "total_recognized": str(result.total_recognized),
                    "unbilled_accrual": str(result.unbilled_accrual),
                },
            )
            return result

    def _live_contract_ids(self, ledger_id: str):
        return select(RevenueContract.id).where(
            RevenueContract.ledger_id == ledger_id,
            RevenueContract.status.in_(LIVE_CONTRACT_STATUSES),
        )

    def _due_entries_query(self, period: Period):
        return select(RecognitionScheduleEntry).where(
            RecognitionScheduleEntry.status == EntryStatus.SCHEDULED,
            RecognitionScheduleEntry.schedule_date <= period.end_date,
            RecognitionScheduleEntry.contract_id.in_(self._live_contract_ids(period.ledger_id)),
        )

    def _period_totals(self, period: Period) -> tuple[Decimal, Decimal]:
        """Revenue posted in the period, and billings against those contracts."""
        total_recognized = self._session.execute(
            select(func.coalesce(func.sum(PostableEntry.amount), 0)).where(
                PostableEntry.period_id == period.id
            )
        ).scalar_one()

        contract_numbers = (
            select(RevenueContract.contract_number)
            .join(PostableEntry, PostableEntry.contract_id == RevenueContract.id)
            .where(PostableEntry.period_id == period.id)
            .distinct()
        )
        billed = self._session.execute(
            select(func.coalesce(func.sum(SourceEvent.amount), 0)).where(
                SourceEvent.event_type == SourceEventType.BILLING,
                SourceEvent.processing_status == ProcessingStatus.ALLOCATED,
                SourceEvent.event_date >= period.start_date,
                SourceEvent.event_date <= period.end_date,
                SourceEvent.reference_number.in_(contract_numbers),
            )
        ).scalar_one()
        return Decimal(total_recognized), Decimal(billed)

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    def can_close(self, period_id: UUID) -> CloseCheck:
        """
        Everything that blocks closing the period.  Takes no locks.

        Raises:
            PeriodNotFoundError: If the period does not exist.
        """
        period = self._session.get(Period, period_id)
        if period is None:
            raise PeriodNotFoundError(str(period_id))

        exceptions: list[CloseException] = []

        if period.status != PeriodStatus.OPEN:
            exceptions.append(
                CloseException(
                    exception_type=CloseExceptionType.PERIOD_NOT_OPEN,
                    reference_id=str(period.id),
                    amount=ZERO,
                    detail=f"period {period.period_name} is {period.status.value}",
                )
            )

        unswept = self._session.execute(
            self._due_entries_query(period).order_by(RecognitionScheduleEntry.schedule_date)
        ).scalars().all()
        for entry in unswept:
            exceptions.append(
                CloseException(
                    exception_type=CloseExceptionType.UNSWEPT_ENTRY,
                    reference_id=str(entry.id),
                    amount=entry.amount,
                    detail=f"{entry.event_type.value} entry dated {entry.schedule_date} not posted",
                )
            )

        exceptions.extend(self._source_event_exceptions(period))
        exceptions.extend(self._allocation_exceptions(period))

        check = CloseCheck(
            period_id=period.id,
            period_name=period.period_name,
            allowed=not exceptions,
            exceptions=tuple(exceptions),
        )
        logger.info(
            "close_check",
            extra={
                "period_id": str(period.id),
                "period_name": period.period_name,
                "allowed": check.allowed,
                "exception_count": len(exceptions),
            },
        )
        return check

    def _source_event_exceptions(self, period: Period) -> list[CloseException]:
        ledger_contracts = select(RevenueContract.contract_number).where(
            RevenueContract.ledger_id == period.ledger_id
        )
        events = self._session.execute(
            select(SourceEvent)
            .where(
                SourceEvent.processing_status.in_(
                    (ProcessingStatus.PENDING, ProcessingStatus.ERROR)
                ),
                SourceEvent.event_date <= period.end_date,
                or_(
                    SourceEvent.ledger_id == period.ledger_id,
                    SourceEvent.reference_number.in_(ledger_contracts),
                ),
            )
            .order_by(SourceEvent.event_date, SourceEvent.source_id)
        ).scalars().all()

        exceptions = []
        for event in events:
            if event.processing_status == ProcessingStatus.ERROR:
                exception_type = CloseExceptionType.SOURCE_EVENT_ERROR
                detail = event.error_message or "processing failed"
            else:
                exception_type = CloseExceptionType.SOURCE_EVENT_PENDING
                detail = f"{event.event_type.value} event awaiting processing"
            exceptions.append(
                CloseException(
                    exception_type=exception_type,
                    reference_id=f"{event.source_system}/{event.source_id}",
                    amount=event.amount,
                    detail=detail,
                )
            )
        return exceptions

    def _allocation_exceptions(self, period: Period) -> list[CloseException]:
        contracts = self._session.execute(
            select(RevenueContract)
            .where(
                RevenueContract.ledger_id == period.ledger_id,
                RevenueContract.effective_date <= period.end_date,
                RevenueContract.status.in_((ContractStatus.DRAFT, ContractStatus.ACTIVE)),
            )
            .order_by(RevenueContract.contract_number, RevenueContract.version_number)
        ).scalars().all()

        exceptions = []
        for contract in contracts:
            if contract.status == ContractStatus.DRAFT:
                exceptions.append(
                    CloseException(
                        exception_type=CloseExceptionType.INCOMPLETE_ALLOCATION,
                        reference_id=contract.contract_number,
                        amount=contract.total_transaction_price,
                        detail=f"version {contract.version_number} has not been allocated",
                    )
                )
                continue

            unallocated = [
                pob for pob in contract.obligations
                if pob.status == ObligationStatus.UNALLOCATED
            ]
            for pob in unallocated:
                exceptions.append(
                    CloseException(
                        exception_type=CloseExceptionType.INCOMPLETE_ALLOCATION,
                        reference_id=str(pob.id),
                        amount=ZERO,
                        detail=(
                            f"{contract.contract_number} line {pob.line_number} "
                            f"({pob.item_id}) is unallocated"
                        ),
                    )
                )

            tolerance = (
                CurrencyRegistry.get_minor_unit(contract.currency)
                * self._config.rounding.tolerance_minor_units
            )
            allocated = sum((pob.allocated_price for pob in contract.obligations), ZERO)
            gap = contract.total_transaction_price - allocated
            if abs(gap) > tolerance:
                exceptions.append(
                    CloseException(
                        exception_type=CloseExceptionType.INCOMPLETE_ALLOCATION,
                        reference_id=contract.contract_number,
                        amount=gap,
                        detail=(
                            f"allocations sum to {allocated}, "
                            f"transaction price is {contract.total_transaction_price}"
                        ),
                    )
                )
        return exceptions

    def close(self, period_id: UUID, actor_id: UUID) -> CloseResult:
        """
        Close the period if ``can_close`` reports nothing.

        Raises:
            PeriodNotReadyError: With every blocking exception.
        """
        with LogContext.bind(period_id=str(period_id), actor_id=str(actor_id)):
            period = self._period_service.get_period_for_update(period_id)
            check = self.can_close(period_id)
            if not check.allowed:
                logger.warning(
                    "close_blocked",
                    extra={
                        "period_name": period.period_name,
                        "exceptions": [e.to_dict() for e in check.exceptions],
                    },
                )
                raise PeriodNotReadyError(period.period_name, check.exceptions)

            closed = self._period_service.mark_closed(period_id, actor_id)
            total_recognized, billed = self._period_totals(period)

            self._auditor.record_period_event(
                period_id=period.id,
                action=AuditAction.PERIOD_CLOSED,
                actor_id=actor_id,
                period_name=period.period_name,
                total_recognized=total_recognized,
                billed_amount=billed,
                unbilled_accrual=total_recognized - billed,
            )
            logger.info(
                "period_closed",
                extra={
                    "period_name": period.period_name,
                    "total_recognized": str(total_recognized),
                },
            )
            return CloseResult(
                period_id=closed.id,
                period_name=closed.period_name,
                status=closed.status,
                closed_at=closed.closed_at,
                closed_by_id=closed.closed_by_id,
            )

    # ------------------------------------------------------------------
    # GL handoff
    # ------------------------------------------------------------------

    def pending_postable_entries(self, period_id: UUID) -> list[dict]:
        """Postable entries emitted for a period, in emission order."""
        entries = self._session.execute(
            select(PostableEntry)
            .where(PostableEntry.period_id == period_id)
            .order_by(PostableEntry.emitted_at, PostableEntry.schedule_entry_id)
        ).scalars().all()
        return [entry.to_record() for entry in entries]

"""
PeriodService -- accounting period lifecycle.

Responsibility:
    Creates per-ledger accounting periods and drives their lifecycle
    (NeverOpened -> Future -> Open -> Closed -> PermanentlyClosed), plus
    the audited administrative reopen (Closed -> Open).

Architecture position:
    Services -- imperative shell.  Called by operators for period setup
    and by the CloseOrchestrator, which owns the Open -> Closed transition.

Invariants enforced:
    - Periods in one ledger never overlap.
    - Transitions move forward one step at a time; the only backward step
      is ``reopen``, which requires a reason and is audited.
    - A PermanentlyClosed period is never changed (PeriodImmutableError).
    - Returns frozen ``PeriodInfo`` DTOs, never ORM entities.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - PeriodNotFoundError: unknown period id.
    - PeriodOverlapError: new date range overlaps an existing period.
    - PeriodTransitionError: the requested transition is not allowed.
    - PeriodImmutableError: any change to a PermanentlyClosed period.
    - ValueError: inverted date range, or a reopen without a reason.

Audit relevance:
    Creation, every transition, and reopen (with reason and reopen count)
    are written to the audit chain.
"""

import calendar
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from revrec_kernel.domain.clock import Clock, SystemClock
from revrec_kernel.domain.dtos import PeriodInfo
from revrec_kernel.exceptions import (
    PeriodImmutableError,
    PeriodNotFoundError,
    PeriodOverlapError,
    PeriodTransitionError,
)
from revrec_kernel.logging_config import get_logger
from revrec_kernel.models.audit_event import AuditAction
from revrec_kernel.models.period import FORWARD_TRANSITIONS, Period, PeriodStatus
from revrec_kernel.services.auditor_service import AuditorService
from revrec_kernel.services.base import BaseService

logger = get_logger("services.period")

# Statuses a period may be created in
CREATABLE_STATUSES = (PeriodStatus.NEVER_OPENED, PeriodStatus.FUTURE, PeriodStatus.OPEN)


class PeriodService(BaseService[Period]):
    """
    Service for the accounting period lifecycle.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT check close readiness; ``mark_closed`` is only called by
          the CloseOrchestrator after ``can_close`` passes.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._auditor = auditor
        self._clock = clock or SystemClock()

    def _to_dto(self, period: Period) -> PeriodInfo:
        return PeriodInfo.from_model(period)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_period(
        self,
        ledger_id: str,
        period_name: str,
        start_date: date,
        end_date: date,
        actor_id: UUID,
        status: PeriodStatus = PeriodStatus.NEVER_OPENED,
    ) -> PeriodInfo:
        """
        Create a period in a ledger.

        Raises:
            ValueError: If start_date > end_date or status is not creatable.
            PeriodOverlapError: If the range overlaps a period in the ledger.
        """
        if start_date > end_date:
            raise ValueError(
                f"start_date ({start_date}) cannot be after end_date ({end_date})"
            )
        status = PeriodStatus(status)
        if status not in CREATABLE_STATUSES:
            raise ValueError(f"Periods cannot be created as {status.value}")

        self._validate_no_overlap(ledger_id, period_name, start_date, end_date)

        period = Period(
            ledger_id=ledger_id,
            period_name=period_name,
            start_date=start_date,
            end_date=end_date,
            status=status,
            reopen_count=0,
            created_by_id=actor_id,
        )
        self.session.add(period)
        self.session.flush()

        self._auditor.record_period_event(
            period_id=period.id,
            action=AuditAction.PERIOD_CREATED,
            actor_id=actor_id,
            period_name=period_name,
            ledger_id=ledger_id,
            start_date=start_date,
            end_date=end_date,
            status=status.value,
        )

        logger.info(
            "period_created",
            extra={
                "ledger_id": ledger_id,
                "period_name": period_name,
                "start_date": str(start_date),
                "end_date": str(end_date),
                "status": status.value,
            },
        )
        return self._to_dto(period)

    def create_monthly_periods(
        self,
        ledger_id: str,
        year: int,
        actor_id: UUID,
        status: PeriodStatus = PeriodStatus.NEVER_OPENED,
    ) -> list[PeriodInfo]:
        """Create the twelve calendar-month periods of ``year`` ("2024-01" ...)."""
        periods = []
        for month in range(1, 13):
            last_day = calendar.monthrange(year, month)[1]
            periods.append(
                self.create_period(
                    ledger_id=ledger_id,
                    period_name=f"{year}-{month:02d}",
                    start_date=date(year, month, 1),
                    end_date=date(year, month, last_day),
                    actor_id=actor_id,
                    status=status,
                )
            )
        return periods

    def _validate_no_overlap(
        self,
        ledger_id: str,
        period_name: str,
        start_date: date,
        end_date: date,
    ) -> None:
        """Two ranges overlap if start1 <= end2 AND start2 <= end1."""
        overlapping = self.session.execute(
            select(Period).where(
                Period.ledger_id == ledger_id,
                Period.start_date <= end_date,
                Period.end_date >= start_date,
            )
        ).scalars().first()

        if overlapping is not None:
            raise PeriodOverlapError(period_name, overlapping.period_name)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def mark_future(self, period_id: UUID, actor_id: UUID) -> PeriodInfo:
        """NeverOpened -> Future."""
        return self._transition(period_id, PeriodStatus.FUTURE, actor_id)

    def open_period(self, period_id: UUID, actor_id: UUID) -> PeriodInfo:
        """Future -> Open."""
        return self._transition(period_id, PeriodStatus.OPEN, actor_id)

    def mark_closed(self, period_id: UUID, actor_id: UUID) -> PeriodInfo:
        """
        Open -> Closed.

        Only the CloseOrchestrator calls this, holding the period row lock
        and after ``can_close`` reported no exceptions.
        """
        period = self.get_period_for_update(period_id)
        self._check_forward(period, PeriodStatus.CLOSED)

        previous = period.status
        period.status = PeriodStatus.CLOSED
        period.closed_at = self._clock.now()
        period.closed_by_id = actor_id
        period.updated_by_id = actor_id
        self.session.flush()

        self._record_transition(period, previous, actor_id)
        return self._to_dto(period)

    def permanently_close(self, period_id: UUID, actor_id: UUID) -> PeriodInfo:
        """Closed -> PermanentlyClosed.  Terminal."""
        period = self.get_period_for_update(period_id)
        self._check_forward(period, PeriodStatus.PERMANENTLY_CLOSED)

        previous = period.status
        period.status = PeriodStatus.PERMANENTLY_CLOSED
        period.updated_by_id = actor_id
        self.session.flush()

        self._auditor.record_period_event(
            period_id=period.id,
            action=AuditAction.PERIOD_PERMANENTLY_CLOSED,
            actor_id=actor_id,
            period_name=period.period_name,
            from_status=previous.value,
        )
        logger.info(
            "period_permanently_closed",
            extra={"period_id": str(period.id), "period_name": period.period_name},
        )
        return self._to_dto(period)

    def reopen(self, period_id: UUID, actor_id: UUID, reason: str) -> PeriodInfo:
        """
        Administrative reopen: Closed -> Open.

        Raises:
            ValueError: If ``reason`` is empty.
            PeriodImmutableError: If the period is PermanentlyClosed.
            PeriodTransitionError: If the period is not Closed.
        """
        if not reason or not reason.strip():
            raise ValueError("Reopening a period requires a reason")

        period = self.get_period_for_update(period_id)
        if period.status == PeriodStatus.PERMANENTLY_CLOSED:
            raise PeriodImmutableError(period.period_name, "reopen")
        if period.status != PeriodStatus.CLOSED:
            raise PeriodTransitionError(
                period.period_name, period.status.value, PeriodStatus.OPEN.value
            )

        period.status = PeriodStatus.OPEN
        period.closed_at = None
        period.closed_by_id = None
        period.reopen_count = (period.reopen_count or 0) + 1
        period.updated_by_id = actor_id
        self.session.flush()

        self._auditor.record_period_event(
            period_id=period.id,
            action=AuditAction.PERIOD_REOPENED,
            actor_id=actor_id,
            period_name=period.period_name,
            reason=reason,
            reopen_count=period.reopen_count,
        )
        logger.warning(
            "period_reopened",
            extra={
                "period_id": str(period.id),
                "period_name": period.period_name,
                "reason": reason,
                "reopen_count": period.reopen_count,
            },
        )
        return self._to_dto(period)

    def _transition(
        self,
        period_id: UUID,
        target: PeriodStatus,
        actor_id: UUID,
    ) -> PeriodInfo:
        period = self.get_period_for_update(period_id)
        self._check_forward(period, target)

        previous = period.status
        period.status = target
        period.updated_by_id = actor_id
        self.session.flush()

        self._record_transition(period, previous, actor_id)
        return self._to_dto(period)

    def _check_forward(self, period: Period, target: PeriodStatus) -> None:
        if period.status == PeriodStatus.PERMANENTLY_CLOSED:
            raise PeriodImmutableError(period.period_name, f"move to {target.value}")
        if FORWARD_TRANSITIONS.get(period.status) != target:
            logger.warning(
                "period_transition_rejected",
                extra={
                    "period_id": str(period.id),
                    "from_status": period.status.value,
                    "to_status": target.value,
                },
            )
            raise PeriodTransitionError(
                period.period_name, period.status.value, target.value
            )

    def _record_transition(
        self,
        period: Period,
        previous: PeriodStatus,
        actor_id: UUID,
    ) -> None:
        self._auditor.record_period_event(
            period_id=period.id,
            action=AuditAction.PERIOD_TRANSITIONED,
            actor_id=actor_id,
            period_name=period.period_name,
            from_status=previous.value,
            to_status=period.status.value,
        )
        logger.info(
            "period_transitioned",
            extra={
                "period_id": str(period.id),
                "period_name": period.period_name,
                "from_status": previous.value,
                "to_status": period.status.value,
            },
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_period(self, period_id: UUID) -> PeriodInfo:
        period = self.session.get(Period, period_id)
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return self._to_dto(period)

    def get_period_for_update(self, period_id: UUID) -> Period:
        """ORM Period with a row lock (``SELECT ... FOR UPDATE``)."""
        period = self.session.execute(
            select(Period).where(Period.id == period_id).with_for_update()
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period

    def get_period_for_date(self, ledger_id: str, on_date: date) -> PeriodInfo | None:
        """The ledger's period containing ``on_date``, if any."""
        period = self.session.execute(
            select(Period).where(
                Period.ledger_id == ledger_id,
                Period.start_date <= on_date,
                Period.end_date >= on_date,
            )
        ).scalars().first()
        return self._to_dto(period) if period else None

    def list_periods(
        self,
        ledger_id: str,
        status: PeriodStatus | None = None,
    ) -> list[PeriodInfo]:
        query = select(Period).where(Period.ledger_id == ledger_id)
        if status is not None:
            query = query.where(Period.status == PeriodStatus(status))
        query = query.order_by(Period.start_date)
        return [self._to_dto(p) for p in self.session.execute(query).scalars().all()]

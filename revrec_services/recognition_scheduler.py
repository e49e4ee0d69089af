"""
RecognitionScheduler -- persists recognition schedules for obligations.

Responsibility:
    Turns an allocated performance obligation into dated, period-bucketed
    RecognitionScheduleEntry rows; re-dates milestone entries on completion;
    records capped usage entries; and, for a successor obligation created
    by a contract modification, carries posted history forward and books
    the cumulative catch-up.

Architecture position:
    Services -- imperative shell around the pure ``revrec_engines.recognition``
    functions.  Called by the ContractService after allocation and by the
    EventIntakeService for usage and milestone facts.

Invariants enforced:
    - Schedule exactness: for every obligation the non-Reversed entries sum
      to exactly the allocated price (usage obligations: to what has been
      used, never above the allocated price).
    - Posted entries are never edited.  A milestone re-date reverses the
      still Scheduled entry and writes a replacement; a Posted one raises.
    - Every entry sits in a Period of the contract's ledger.  A date inside
      a Closed or PermanentlyClosed period is rolled forward into the first
      later period that is not closed, dated at its start, as a Catchup.
    - Predecessor rows are never touched; successors mirror them.

Failure modes:
    - PeriodNotFoundError: a date (or roll-forward target) has no period.
      Scheduling is all-or-nothing; the caller's savepoint discards partial
      work.
    - InvalidRecognitionPlanError: bad window, milestone percentages not
      summing to 100, or usage input on a non-usage obligation.
    - ScheduleImmutableViolation: completing a milestone whose entry has
      already been posted.
    - ContractStateError: milestone or usage facts against a contract
      version that is not Active.

Audit relevance:
    Carried entries keep ``carried_from_id``; replacement entries keep
    ``replaces_id``; usage and milestone entries keep the source event id.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from revrec_config import RevRecConfig
from revrec_engines.recognition import (
    MilestoneInput,
    PeriodWindow,
    PlannedEntry,
    cap_entries,
    capped_usage_amount,
    find_uncovered_date,
    milestone_schedule,
    point_in_time_schedule,
    ratable_schedule,
    split_for_modification,
)
from revrec_kernel.domain.clock import Clock, SystemClock
from revrec_kernel.domain.currency import CurrencyRegistry
from revrec_kernel.domain.dtos import ScheduleEntryInfo
from revrec_kernel.exceptions import (
    ContractStateError,
    InvalidRecognitionPlanError,
    PeriodNotFoundError,
    ScheduleImmutableViolation,
)
from revrec_kernel.logging_config import get_logger
from revrec_kernel.models.audit_event import AuditAction
from revrec_kernel.models.contract import (
    ContractStatus,
    ObligationMilestone,
    ObligationStatus,
    PerformanceObligation,
    RecognitionMethod,
    RevenueContract,
)
from revrec_kernel.models.period import CLOSED_STATUSES, Period
from revrec_kernel.models.schedule import (
    EntryEventType,
    EntryStatus,
    RecognitionScheduleEntry,
)
from revrec_kernel.services.auditor_service import AuditorService
from revrec_kernel.services.base import BaseService

logger = get_logger("services.recognition_scheduler")

ZERO = Decimal("0")


def refresh_obligation_status(session: Session, obligation: PerformanceObligation) -> None:
    """
    Allocated -> Recognizing on the first posted entry; Complete once every
    non-Reversed entry is Posted and together they reach the allocated price.
    """
    if obligation.status == ObligationStatus.UNALLOCATED:
        return

    entries = session.execute(
        select(RecognitionScheduleEntry).where(
            RecognitionScheduleEntry.obligation_id == obligation.id,
            RecognitionScheduleEntry.status != EntryStatus.REVERSED,
        )
    ).scalars().all()
    posted = [e for e in entries if e.status == EntryStatus.POSTED]
    if not posted:
        return

    posted_total = sum((e.amount for e in posted), ZERO)
    if len(posted) == len(entries) and posted_total == obligation.allocated_price:
        new_status = ObligationStatus.COMPLETE
    else:
        new_status = ObligationStatus.RECOGNIZING

    if obligation.status != new_status:
        logger.info(
            "obligation_status_changed",
            extra={
                "obligation_id": str(obligation.id),
                "from_status": obligation.status.value,
                "to_status": new_status.value,
            },
        )
        obligation.status = new_status


class RecognitionScheduler(BaseService[RecognitionScheduleEntry]):
    """
    Service for generating and amending recognition schedules.

    Non-goals:
        - Does NOT post entries; the CloseOrchestrator's sweep does.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        config: RevRecConfig,
        auditor: AuditorService,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._config = config
        self._auditor = auditor
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(self, obligation_id: UUID, actor_id: UUID) -> list[ScheduleEntryInfo]:
        """
        Build and persist the schedule of an allocated obligation.

        Idempotent: an obligation that already has entries gets them back
        unchanged.
        """
        obligation = self._get_obligation(obligation_id)
        existing = self._entries(obligation.id)
        if existing:
            return [ScheduleEntryInfo.from_model(e) for e in existing]

        contract = obligation.contract
        decimal_places = CurrencyRegistry.get_decimal_places(contract.currency)
        desired = self._desired_schedule(obligation, contract, decimal_places)

        created: list[RecognitionScheduleEntry] = []
        remaining: tuple[PlannedEntry, ...] = desired

        if obligation.predecessor_id is not None:
            carried = self._carry_posted_history(obligation, contract, actor_id)
            created.extend(carried)

            posted_total = sum((e.amount for e in carried), ZERO)
            posted_through = max((e.schedule_date for e in carried), default=None)
            split = split_for_modification(
                desired=desired,
                posted_to_date=posted_total,
                posted_through=posted_through,
            )
            remaining = split.remaining

            if split.catch_up != ZERO:
                if obligation.allocated_price == ZERO:
                    event_type = EntryEventType.REVERSAL
                elif split.catch_up > ZERO:
                    event_type = EntryEventType.CATCHUP
                else:
                    event_type = EntryEventType.ADJUSTMENT
                catch_up_date = max(contract.effective_date, posted_through)
                created.append(
                    self._add_entry(
                        obligation,
                        contract,
                        catch_up_date,
                        split.catch_up,
                        event_type,
                        actor_id,
                        description=(
                            f"Cumulative {event_type.value.lower()} for v{contract.version_number}: "
                            f"{split.desired_to_date} due vs {split.posted_to_date} posted"
                        ),
                    )
                )

        for planned in remaining:
            if planned.amount == ZERO:
                continue
            created.append(
                self._add_entry(
                    obligation,
                    contract,
                    planned.schedule_date,
                    planned.amount,
                    EntryEventType.INITIAL,
                    actor_id,
                    milestone_id=(
                        planned.ref
                        if obligation.recognition_method == RecognitionMethod.MILESTONE
                        else None
                    ),
                    source_event_id=(
                        planned.ref
                        if obligation.recognition_method == RecognitionMethod.USAGE
                        else None
                    ),
                )
            )

        self.session.flush()
        refresh_obligation_status(self.session, obligation)
        self.session.flush()

        logger.info(
            "schedule_generated",
            extra={
                "obligation_id": str(obligation.id),
                "contract_number": contract.contract_number,
                "version_number": contract.version_number,
                "recognition_method": obligation.recognition_method.value,
                "allocated_price": str(obligation.allocated_price),
                "entry_count": len(created),
            },
        )
        return [ScheduleEntryInfo.from_model(e) for e in created]

    def _desired_schedule(
        self,
        obligation: PerformanceObligation,
        contract: RevenueContract,
        decimal_places: int,
    ) -> tuple[PlannedEntry, ...]:
        """The obligation's full schedule as if nothing had been posted yet."""
        amount = obligation.allocated_price
        method = obligation.recognition_method

        if method == RecognitionMethod.POINT_IN_TIME:
            trigger = obligation.recognition_start or contract.effective_date
            return point_in_time_schedule(amount=amount, trigger_date=trigger)

        if method == RecognitionMethod.RATABLE:
            if amount == ZERO:
                return ()
            windows = self._period_windows(
                contract.ledger_id,
                obligation.recognition_start,
                obligation.recognition_end,
            )
            return ratable_schedule(
                amount=amount,
                recognition_start=obligation.recognition_start,
                recognition_end=obligation.recognition_end,
                periods=windows,
                decimal_places=decimal_places,
                convention=self._config.recognition.day_count_convention,
            )

        if method == RecognitionMethod.MILESTONE:
            return milestone_schedule(
                amount=amount,
                milestones=[
                    MilestoneInput(
                        milestone_ref=m.id,
                        percentage=m.percentage,
                        trigger_date=m.trigger_date,
                    )
                    for m in sorted(obligation.milestones, key=lambda m: m.sequence)
                ],
                decimal_places=decimal_places,
            )

        if method == RecognitionMethod.USAGE:
            # Usage is recognized as facts arrive; a successor re-books what
            # its predecessor had recognized, up to the new allocation
            if obligation.predecessor_id is None:
                return ()
            used = [
                PlannedEntry(e.schedule_date, e.amount, e.source_event_id)
                for e in self._entries(obligation.predecessor_id)
                if e.status != EntryStatus.REVERSED
            ]
            return cap_entries(used, amount)

        raise InvalidRecognitionPlanError(
            str(obligation.id), f"unknown recognition method {method}"
        )

    def _period_windows(
        self,
        ledger_id: str,
        start: date,
        end: date,
    ) -> list[PeriodWindow]:
        periods = self.session.execute(
            select(Period)
            .where(
                Period.ledger_id == ledger_id,
                Period.start_date <= end,
                Period.end_date >= start,
            )
            .order_by(Period.start_date)
        ).scalars().all()
        windows = [PeriodWindow(p.id, p.start_date, p.end_date) for p in periods]

        uncovered = find_uncovered_date(start, end, windows)
        if uncovered is not None:
            logger.warning(
                "schedule_period_missing",
                extra={"ledger_id": ledger_id, "uncovered_date": str(uncovered)},
            )
            raise PeriodNotFoundError(str(uncovered), ledger_id)
        return windows

    def _carry_posted_history(
        self,
        obligation: PerformanceObligation,
        contract: RevenueContract,
        actor_id: UUID,
    ) -> list[RecognitionScheduleEntry]:
        """Mirror the predecessor's Posted entries onto the successor."""
        predecessor = self._get_obligation(obligation.predecessor_id)
        milestone_map = self._milestone_map(predecessor, obligation)

        carried = []
        for source in self._entries(predecessor.id):
            if source.status != EntryStatus.POSTED:
                continue
            mirror = RecognitionScheduleEntry(
                obligation_id=obligation.id,
                contract_id=contract.id,
                period_id=source.period_id,
                schedule_date=source.schedule_date,
                amount=source.amount,
                event_type=source.event_type,
                status=EntryStatus.POSTED,
                posted_period_id=source.posted_period_id,
                posted_at=source.posted_at,
                source_event_id=source.source_event_id,
                carried_from_id=source.id,
                milestone_id=milestone_map.get(source.milestone_id),
                description=source.description,
                created_by_id=actor_id,
            )
            self.session.add(mirror)
            carried.append(mirror)

        if carried:
            logger.info(
                "posted_history_carried",
                extra={
                    "obligation_id": str(obligation.id),
                    "predecessor_id": str(predecessor.id),
                    "carried_count": len(carried),
                },
            )
        return carried

    @staticmethod
    def _milestone_map(
        predecessor: PerformanceObligation,
        successor: PerformanceObligation,
    ) -> dict[UUID, UUID]:
        by_sequence = {m.sequence: m.id for m in successor.milestones}
        return {
            m.id: by_sequence[m.sequence]
            for m in predecessor.milestones
            if m.sequence in by_sequence
        }

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------

    def complete_milestone(
        self,
        milestone_id: UUID,
        completed_on: date,
        actor_id: UUID,
        source_event_id: UUID | None = None,
    ) -> ScheduleEntryInfo | None:
        """
        Record a milestone completion and re-date its Scheduled entry.

        The still Scheduled entry is marked Reversed and replaced by an
        Initial entry at the completion date.  Returns the replacement, or
        None when the milestone carries no scheduled amount of its own.

        Raises:
            ScheduleImmutableViolation: If the milestone's entry is Posted.
        """
        milestone = self.session.get(ObligationMilestone, milestone_id)
        if milestone is None:
            raise InvalidRecognitionPlanError(str(milestone_id), "milestone not found")
        if milestone.completed_date is not None:
            raise InvalidRecognitionPlanError(
                str(milestone_id),
                f"milestone {milestone.name} already completed on {milestone.completed_date}",
            )

        obligation = milestone.obligation
        contract = obligation.contract
        self._require_active(contract, "complete a milestone on")

        entries = self.session.execute(
            select(RecognitionScheduleEntry).where(
                RecognitionScheduleEntry.obligation_id == obligation.id,
                RecognitionScheduleEntry.milestone_id == milestone.id,
                RecognitionScheduleEntry.status != EntryStatus.REVERSED,
            )
        ).scalars().all()

        posted = [e for e in entries if e.status == EntryStatus.POSTED]
        if posted:
            logger.warning(
                "milestone_entry_already_posted",
                extra={"milestone_id": str(milestone.id), "entry_id": str(posted[0].id)},
            )
            raise ScheduleImmutableViolation(
                entry_id=str(posted[0].id),
                reason=f"milestone {milestone.name} was already recognized",
            )

        milestone.completed_date = completed_on
        milestone.updated_by_id = actor_id

        replacement = None
        for old in entries:
            old.status = EntryStatus.REVERSED
            old.updated_by_id = actor_id
            replacement = self._add_entry(
                obligation,
                contract,
                completed_on,
                old.amount,
                EntryEventType.INITIAL,
                actor_id,
                milestone_id=milestone.id,
                source_event_id=source_event_id,
                replaces_id=old.id,
            )
        self.session.flush()

        self._auditor.record(
            entity_type="ObligationMilestone",
            entity_id=milestone.id,
            action=AuditAction.MILESTONE_COMPLETED,
            actor_id=actor_id,
            payload={
                "obligation_id": str(obligation.id),
                "milestone_name": milestone.name,
                "planned_date": milestone.planned_date,
                "completed_date": completed_on,
                "source_event_id": source_event_id,
            },
        )
        logger.info(
            "milestone_completed",
            extra={
                "milestone_id": str(milestone.id),
                "milestone_name": milestone.name,
                "completed_date": str(completed_on),
                "replaced_count": len(entries),
            },
        )
        return ScheduleEntryInfo.from_model(replacement) if replacement else None

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def record_usage(
        self,
        obligation_id: UUID,
        usage_date: date,
        actor_id: UUID,
        quantity: Decimal | None = None,
        amount: Decimal | None = None,
        source_event_id: UUID | None = None,
    ) -> ScheduleEntryInfo | None:
        """
        Record one usage fact as a recognition entry.

        Returns None when the obligation is already fully recognized.
        """
        obligation = self._get_obligation(obligation_id)
        if obligation.recognition_method != RecognitionMethod.USAGE:
            raise InvalidRecognitionPlanError(
                str(obligation.id),
                f"usage recorded against a {obligation.recognition_method.value} obligation",
            )
        contract = obligation.contract
        self._require_active(contract, "record usage on")

        recognized = sum(
            (e.amount for e in self._entries(obligation.id) if e.status != EntryStatus.REVERSED),
            ZERO,
        )
        usage_amount = capped_usage_amount(
            quantity=quantity,
            usage_rate=obligation.usage_rate,
            event_amount=amount,
            allocated_price=obligation.allocated_price,
            recognized_to_date=recognized,
            decimal_places=CurrencyRegistry.get_decimal_places(contract.currency),
        )

        if usage_amount == ZERO:
            logger.info(
                "usage_cap_reached",
                extra={
                    "obligation_id": str(obligation.id),
                    "allocated_price": str(obligation.allocated_price),
                    "recognized_to_date": str(recognized),
                },
            )
            return None

        entry = self._add_entry(
            obligation,
            contract,
            usage_date,
            usage_amount,
            EntryEventType.INITIAL,
            actor_id,
            source_event_id=source_event_id,
        )
        self.session.flush()

        logger.info(
            "usage_recorded",
            extra={
                "obligation_id": str(obligation.id),
                "usage_date": str(usage_date),
                "amount": str(usage_amount),
                "recognized_to_date": str(recognized + usage_amount),
            },
        )
        return ScheduleEntryInfo.from_model(entry)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def entries_for_obligation(
        self,
        obligation_id: UUID,
        include_reversed: bool = True,
    ) -> list[ScheduleEntryInfo]:
        entries = self._entries(obligation_id)
        if not include_reversed:
            entries = [e for e in entries if e.status != EntryStatus.REVERSED]
        return [ScheduleEntryInfo.from_model(e) for e in entries]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _add_entry(
        self,
        obligation: PerformanceObligation,
        contract: RevenueContract,
        planned_date: date,
        amount: Decimal,
        event_type: EntryEventType,
        actor_id: UUID,
        milestone_id: UUID | None = None,
        source_event_id: UUID | None = None,
        replaces_id: UUID | None = None,
        description: str | None = None,
    ) -> RecognitionScheduleEntry:
        period, schedule_date = self._resolve_period(contract.ledger_id, planned_date)
        if schedule_date != planned_date and event_type == EntryEventType.INITIAL:
            event_type = EntryEventType.CATCHUP

        entry = RecognitionScheduleEntry(
            obligation_id=obligation.id,
            contract_id=contract.id,
            period_id=period.id,
            schedule_date=schedule_date,
            amount=amount,
            event_type=event_type,
            status=EntryStatus.SCHEDULED,
            milestone_id=milestone_id,
            source_event_id=source_event_id,
            replaces_id=replaces_id,
            description=description,
            created_by_id=actor_id,
        )
        self.session.add(entry)
        return entry

    def _resolve_period(self, ledger_id: str, on_date: date) -> tuple[Period, date]:
        """Period (and date) an entry planned for ``on_date`` is bucketed into."""
        period = self.session.execute(
            select(Period).where(
                Period.ledger_id == ledger_id,
                Period.start_date <= on_date,
                Period.end_date >= on_date,
            )
        ).scalars().first()
        if period is None:
            raise PeriodNotFoundError(str(on_date), ledger_id)
        if period.status not in CLOSED_STATUSES:
            return period, on_date

        later = self.session.execute(
            select(Period)
            .where(
                Period.ledger_id == ledger_id,
                Period.start_date > period.end_date,
                Period.status.not_in(CLOSED_STATUSES),
            )
            .order_by(Period.start_date)
        ).scalars().first()
        if later is None:
            raise PeriodNotFoundError(f"a non-closed period after {on_date}", ledger_id)

        logger.info(
            "schedule_entry_rolled_forward",
            extra={
                "ledger_id": ledger_id,
                "planned_date": str(on_date),
                "closed_period": period.period_name,
                "target_period": later.period_name,
            },
        )
        return later, later.start_date

    def _require_active(self, contract: RevenueContract, operation: str) -> None:
        if contract.status != ContractStatus.ACTIVE:
            raise ContractStateError(str(contract.id), contract.status.value, operation)

    def _get_obligation(self, obligation_id: UUID) -> PerformanceObligation:
        obligation = self.session.get(PerformanceObligation, obligation_id)
        if obligation is None:
            raise InvalidRecognitionPlanError(str(obligation_id), "obligation not found")
        return obligation

    def _entries(self, obligation_id: UUID) -> list[RecognitionScheduleEntry]:
        return list(
            self.session.execute(
                select(RecognitionScheduleEntry)
                .where(RecognitionScheduleEntry.obligation_id == obligation_id)
                .order_by(
                    RecognitionScheduleEntry.schedule_date,
                    RecognitionScheduleEntry.created_at,
                )
            ).scalars().all()
        )

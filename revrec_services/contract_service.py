"""
ContractService -- versioned revenue contracts and their allocation.

Responsibility:
    Creates contracts, allocates their transaction price across performance
    obligations, and applies modifications and cancellations as new
    contract versions under optimistic concurrency.

Architecture position:
    Services -- imperative shell.  Resolves SSPs through SSPCatalogService,
    runs the pure ``revrec_engines.allocation`` engine, and hands allocated
    obligations to the RecognitionScheduler.

Invariants enforced:
    - Append-only history: a modification inserts version N+1 and moves N
      to Superseded through a compare-and-set; version N is otherwise never
      changed.
    - "Current version" is a query (highest version not Superseded), never
      a stored pointer.
    - Allocation is all-or-nothing: SSP resolution, the engine and every
      schedule run inside one savepoint.  A failure leaves the contract
      Draft with Unallocated obligations.
    - The allocated prices of a version sum to its transaction price
      within the configured tolerance.

Failure modes:
    - VersionConflictError: stale expected version, a compare-and-set that
      changed zero rows, or a lost race on (contract_number, version_number).
    - ContractNotFoundError / ContractStateError.
    - SSPNotFoundError / SSPBookNotFoundError when a line has neither a
      catalog SSP nor a list price.
    - Allocation, schedule and period errors propagate unchanged.

Audit relevance:
    Creation, allocation, modification and cancellation are each written to
    the audit chain with the version number and per-line allocations.
"""

import calendar
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from revrec_config import RevRecConfig
from revrec_engines.allocation import AllocationLineInput, allocate_relative_ssp
from revrec_kernel.domain.clock import Clock, SystemClock
from revrec_kernel.domain.currency import CurrencyRegistry
from revrec_kernel.domain.dtos import ContractInfo
from revrec_kernel.exceptions import (
    AllocationDegenerateError,
    ContractNotFoundError,
    ContractStateError,
    InvalidRecognitionPlanError,
    SSPBookNotFoundError,
    SSPNotFoundError,
    VersionConflictError,
)
from revrec_kernel.logging_config import LogContext, get_logger
from revrec_kernel.models.audit_event import AuditAction
from revrec_kernel.models.contract import (
    ContractStatus,
    ObligationMilestone,
    ObligationStatus,
    PerformanceObligation,
    RecognitionMethod,
    RevenueContract,
)
from revrec_kernel.models.schedule import EntryStatus, RecognitionScheduleEntry
from revrec_kernel.services.auditor_service import AuditorService
from revrec_kernel.services.base import BaseService
from revrec_services.recognition_scheduler import RecognitionScheduler
from revrec_services.ssp_catalog import SSPCatalogService

logger = get_logger("services.contract")

ZERO = Decimal("0")

T = TypeVar("T")


@dataclass(frozen=True)
class MilestoneDraft:
    name: str
    percentage: Decimal
    planned_date: date
    completed_date: date | None = None


@dataclass(frozen=True)
class ObligationDraft:
    """
    One contract line as submitted.

    Unset recognition fields are filled from configuration (by item
    pattern), from the predecessor line on a modification, or from the
    contract's effective date.
    """

    line_number: int
    item_id: str
    quantity: Decimal = Decimal("1")
    recognition_method: RecognitionMethod | str | None = None
    observable_price: Decimal | None = None
    list_price: Decimal | None = None
    recognition_start: date | None = None
    recognition_end: date | None = None
    usage_rate: Decimal | None = None
    region: str | None = None
    milestones: tuple[MilestoneDraft, ...] = ()


@dataclass(frozen=True)
class ContractDraft:
    contract_number: str
    customer_id: str
    ledger_id: str
    total_transaction_price: Decimal
    effective_date: date
    lines: tuple[ObligationDraft, ...]
    currency: str = "USD"
    legal_entity_id: str | None = None
    org_id: str | None = None
    sign_date: date | None = None
    ssp_book_id: UUID | None = None


@dataclass(frozen=True)
class ContractModification:
    """The complete new state of a contract: full line list and price."""

    total_transaction_price: Decimal
    effective_date: date
    lines: tuple[ObligationDraft, ...]
    reason: str
    ssp_book_id: UUID | None = None


def _add_months(start: date, months: int) -> date:
    """``start`` moved ``months`` ahead, clipped to the target month's end."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class ContractService(BaseService[RevenueContract]):
    """
    Service for contract creation, allocation and versioning.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT retry anything but VersionConflictError.
    """

    def __init__(
        self,
        session: Session,
        catalog: SSPCatalogService,
        scheduler: RecognitionScheduler,
        auditor: AuditorService,
        config: RevRecConfig,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._catalog = catalog
        self._scheduler = scheduler
        self._auditor = auditor
        self._config = config
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Creation and allocation
    # ------------------------------------------------------------------

    def create_contract(self, draft: ContractDraft, actor_id: UUID) -> ContractInfo:
        """
        Create version 1 of a contract in Draft with Unallocated obligations.

        Raises:
            ContractStateError: If the contract number is already in use.
            VersionConflictError: If a concurrent create won the race.
            ValueError: On an invalid draft.
        """
        with LogContext.bind(contract_number=draft.contract_number, actor_id=actor_id):
            currency = CurrencyRegistry.validate(draft.currency)
            self._validate_lines(draft.contract_number, draft.total_transaction_price, draft.lines)

            existing = self.session.execute(
                select(RevenueContract)
                .where(RevenueContract.contract_number == draft.contract_number)
                .order_by(RevenueContract.version_number.desc())
                .limit(1)
            ).scalar_one_or_none()
            if existing is not None:
                raise ContractStateError(draft.contract_number, existing.status.value, "create")

            try:
                with self.session.begin_nested():
                    contract = RevenueContract(
                        contract_number=draft.contract_number,
                        version_number=1,
                        customer_id=draft.customer_id,
                        ledger_id=draft.ledger_id,
                        legal_entity_id=draft.legal_entity_id,
                        org_id=draft.org_id,
                        status=ContractStatus.DRAFT,
                        currency=currency,
                        total_transaction_price=draft.total_transaction_price,
                        total_allocated_price=ZERO,
                        effective_date=draft.effective_date,
                        sign_date=draft.sign_date,
                        ssp_book_id=draft.ssp_book_id,
                        created_by_id=actor_id,
                    )
                    self.session.add(contract)
                    for line in draft.lines:
                        self._build_obligation(contract, line, draft.effective_date, actor_id)
                    self.session.flush()
            except IntegrityError as exc:
                logger.warning(
                    "contract_create_conflict",
                    extra={"contract_number": draft.contract_number},
                )
                raise VersionConflictError(draft.contract_number, 0, 1) from exc

            self._auditor.record_contract_version(
                contract_id=contract.id,
                action=AuditAction.CONTRACT_CREATED,
                actor_id=actor_id,
                contract_number=contract.contract_number,
                version_number=1,
                customer_id=contract.customer_id,
                total_transaction_price=contract.total_transaction_price,
                line_count=len(draft.lines),
            )
            logger.info(
                "contract_created",
                extra={
                    "contract_number": contract.contract_number,
                    "contract_id": str(contract.id),
                    "total_transaction_price": str(contract.total_transaction_price),
                    "line_count": len(draft.lines),
                },
            )
            return ContractInfo.from_model(contract)

    def allocate(self, contract_id: UUID, actor_id: UUID) -> ContractInfo:
        """
        Allocate a Draft contract and schedule its obligations.

        All-or-nothing: on any failure the savepoint is rolled back and the
        contract stays Draft with Unallocated obligations.
        """
        contract = self._get_contract_orm(contract_id)
        with LogContext.bind(contract_number=contract.contract_number, actor_id=actor_id):
            if contract.status != ContractStatus.DRAFT:
                raise ContractStateError(str(contract.id), contract.status.value, "allocate")

            with self.session.begin_nested():
                self._allocate_version(contract, actor_id, ContractStatus.ACTIVE)
                self._auditor.record_contract_version(
                    contract_id=contract.id,
                    action=AuditAction.CONTRACT_ALLOCATED,
                    actor_id=actor_id,
                    contract_number=contract.contract_number,
                    version_number=contract.version_number,
                    total_allocated_price=contract.total_allocated_price,
                    allocations=self._allocation_payload(contract),
                )
            return ContractInfo.from_model(contract)

    def _allocate_version(
        self,
        contract: RevenueContract,
        actor_id: UUID,
        final_status: ContractStatus,
    ) -> None:
        decimal_places = CurrencyRegistry.get_decimal_places(contract.currency)
        inputs: list[AllocationLineInput] = []
        unit_ssps: dict[int, Decimal] = {}
        ssp_line_ids: dict[int, UUID] = {}

        for pob in contract.obligations:
            if pob.observable_price is not None:
                inputs.append(
                    AllocationLineInput(
                        line_ref=pob.line_number,
                        quantity=pob.quantity,
                        observable_price=pob.observable_price,
                    )
                )
                unit_ssps[pob.line_number] = pob.observable_price
                continue

            try:
                resolution = self._catalog.resolve_ssp(
                    pob.item_id,
                    contract.effective_date,
                    book_id=contract.ssp_book_id,
                    quantity=pob.quantity,
                    region=pob.region,
                    currency=contract.currency,
                )
                unit_ssp = resolution.ssp_value
                ssp_line_ids[pob.line_number] = resolution.line_id
            except (SSPNotFoundError, SSPBookNotFoundError):
                if pob.list_price is None:
                    logger.warning(
                        "allocation_blocked_missing_ssp",
                        extra={
                            "contract_number": contract.contract_number,
                            "line_number": pob.line_number,
                            "item_id": pob.item_id,
                        },
                    )
                    raise
                unit_ssp = pob.list_price
                logger.info(
                    "ssp_list_price_fallback",
                    extra={
                        "contract_number": contract.contract_number,
                        "line_number": pob.line_number,
                        "item_id": pob.item_id,
                        "list_price": str(pob.list_price),
                    },
                )

            unit_ssps[pob.line_number] = unit_ssp
            inputs.append(
                AllocationLineInput(
                    line_ref=pob.line_number,
                    quantity=pob.quantity,
                    unit_ssp=unit_ssp,
                )
            )

        result = allocate_relative_ssp(
            total_transaction_price=contract.total_transaction_price,
            lines=inputs,
            decimal_places=decimal_places,
        )

        for pob in contract.obligations:
            allocated = result.for_line(pob.line_number)
            pob.standalone_selling_price = unit_ssps[pob.line_number]
            pob.estimated_standalone_value = allocated.estimated_standalone_value
            pob.allocated_price = allocated.allocated_price
            pob.ssp_line_id = ssp_line_ids.get(pob.line_number)
            pob.status = ObligationStatus.ALLOCATED
            pob.updated_by_id = actor_id

        contract.total_allocated_price = result.total_allocated
        tolerance = (
            CurrencyRegistry.get_minor_unit(contract.currency)
            * self._config.rounding.tolerance_minor_units
        )
        gap = abs(contract.total_allocated_price - contract.total_transaction_price)
        if gap > tolerance:
            logger.critical(
                "allocation_total_mismatch",
                extra={
                    "contract_number": contract.contract_number,
                    "total_transaction_price": str(contract.total_transaction_price),
                    "total_allocated_price": str(contract.total_allocated_price),
                },
            )
            raise AllocationDegenerateError(
                gap, reason="allocated prices do not add up to the transaction price"
            )

        contract.status = final_status
        contract.updated_by_id = actor_id
        self.session.flush()

        for pob in contract.obligations:
            self._scheduler.generate(pob.id, actor_id)

        logger.info(
            "contract_allocated",
            extra={
                "contract_number": contract.contract_number,
                "version_number": contract.version_number,
                "total_allocated_price": str(contract.total_allocated_price),
                "status": final_status.value,
            },
        )

    # ------------------------------------------------------------------
    # Versioning
    # ------------------------------------------------------------------

    def modify_contract(
        self,
        contract_number: str,
        expected_version: int,
        modification: ContractModification,
        actor_id: UUID,
        source_event_id: UUID | None = None,
    ) -> ContractInfo:
        """
        Apply a modification as version ``expected_version + 1``.

        The new version is re-allocated from scratch.  Each obligation is
        matched to its predecessor by line number and carries its posted
        history; dropped lines that had posted revenue stay on as zero-price
        obligations so that revenue is reversed.
        """
        self._validate_lines(
            contract_number, modification.total_transaction_price, modification.lines
        )
        return self._new_version(
            contract_number,
            expected_version,
            modification,
            actor_id,
            final_status=ContractStatus.ACTIVE,
            action=AuditAction.CONTRACT_MODIFIED,
            source_event_id=source_event_id,
        )

    def cancel_contract(
        self,
        contract_number: str,
        expected_version: int,
        reason: str,
        actor_id: UUID,
        effective_date: date | None = None,
        source_event_id: UUID | None = None,
    ) -> ContractInfo:
        """
        Cancel as a terminal version with zero transaction price.

        Every obligation carries on at a zero observable price, so the
        scheduler reverses whatever its predecessor had posted.
        """
        current = self._current_version_orm(contract_number)
        modification = ContractModification(
            total_transaction_price=ZERO,
            effective_date=effective_date or self._clock.today(),
            lines=tuple(
                ObligationDraft(
                    line_number=pob.line_number,
                    item_id=pob.item_id,
                    quantity=pob.quantity,
                    recognition_method=pob.recognition_method,
                    observable_price=ZERO,
                    recognition_start=pob.recognition_start,
                    recognition_end=pob.recognition_end,
                    usage_rate=pob.usage_rate,
                    region=pob.region,
                )
                for pob in current.obligations
            ),
            reason=reason,
        )
        return self._new_version(
            contract_number,
            expected_version,
            modification,
            actor_id,
            final_status=ContractStatus.CANCELLED,
            action=AuditAction.CONTRACT_CANCELLED,
            source_event_id=source_event_id,
        )

    def _new_version(
        self,
        contract_number: str,
        expected_version: int,
        modification: ContractModification,
        actor_id: UUID,
        final_status: ContractStatus,
        action: AuditAction,
        source_event_id: UUID | None,
    ) -> ContractInfo:
        with LogContext.bind(contract_number=contract_number, actor_id=actor_id):
            current = self._current_version_orm(contract_number)
            if current.version_number != expected_version:
                logger.warning(
                    "version_conflict_detected",
                    extra={
                        "contract_number": contract_number,
                        "expected_version": expected_version,
                        "actual_version": current.version_number,
                    },
                )
                raise VersionConflictError(
                    contract_number, expected_version, current.version_number
                )
            if current.status != ContractStatus.ACTIVE:
                raise ContractStateError(
                    str(current.id), current.status.value, f"apply {action.value} to"
                )

            try:
                with self.session.begin_nested():
                    superseded = self.session.execute(
                        update(RevenueContract)
                        .where(
                            RevenueContract.id == current.id,
                            RevenueContract.status == ContractStatus.ACTIVE,
                            RevenueContract.version_number == expected_version,
                        )
                        .values(status=ContractStatus.SUPERSEDED, updated_by_id=actor_id)
                    )
                    if superseded.rowcount == 0:
                        raise VersionConflictError(contract_number, expected_version, None)

                    new_version = self._insert_successor(current, modification, actor_id)
                    self._allocate_version(new_version, actor_id, final_status)
                    self._auditor.record_contract_version(
                        contract_id=new_version.id,
                        action=action,
                        actor_id=actor_id,
                        contract_number=contract_number,
                        version_number=new_version.version_number,
                        previous_version_id=current.id,
                        reason=modification.reason,
                        source_event_id=source_event_id,
                        total_transaction_price=new_version.total_transaction_price,
                        total_allocated_price=new_version.total_allocated_price,
                        allocations=self._allocation_payload(new_version),
                    )
            except IntegrityError as exc:
                logger.warning(
                    "version_conflict_detected",
                    extra={
                        "contract_number": contract_number,
                        "expected_version": expected_version,
                        "reason": "duplicate version number",
                    },
                )
                raise VersionConflictError(
                    contract_number, expected_version, expected_version + 1
                ) from exc

            logger.info(
                "contract_version_created",
                extra={
                    "contract_number": contract_number,
                    "version_number": new_version.version_number,
                    "status": new_version.status.value,
                    "reason": modification.reason,
                },
            )
            return ContractInfo.from_model(new_version)

    def _insert_successor(
        self,
        current: RevenueContract,
        modification: ContractModification,
        actor_id: UUID,
    ) -> RevenueContract:
        new_version = RevenueContract(
            contract_number=current.contract_number,
            version_number=current.version_number + 1,
            customer_id=current.customer_id,
            ledger_id=current.ledger_id,
            legal_entity_id=current.legal_entity_id,
            org_id=current.org_id,
            status=ContractStatus.DRAFT,
            currency=current.currency,
            total_transaction_price=modification.total_transaction_price,
            total_allocated_price=ZERO,
            effective_date=modification.effective_date,
            sign_date=current.sign_date,
            ssp_book_id=modification.ssp_book_id or current.ssp_book_id,
            previous_version_id=current.id,
            modification_reason=modification.reason,
            created_by_id=actor_id,
        )
        self.session.add(new_version)

        predecessors = {pob.line_number: pob for pob in current.obligations}
        kept_lines = set()
        for line in modification.lines:
            kept_lines.add(line.line_number)
            self._build_obligation(
                new_version,
                line,
                modification.effective_date,
                actor_id,
                predecessor=predecessors.get(line.line_number),
            )

        for line_number, predecessor in predecessors.items():
            if line_number in kept_lines or not self._has_posted_revenue(predecessor):
                continue
            logger.info(
                "dropped_line_reversed",
                extra={
                    "contract_number": current.contract_number,
                    "line_number": line_number,
                    "item_id": predecessor.item_id,
                },
            )
            self._build_obligation(
                new_version,
                ObligationDraft(
                    line_number=line_number,
                    item_id=predecessor.item_id,
                    quantity=predecessor.quantity,
                    observable_price=ZERO,
                ),
                modification.effective_date,
                actor_id,
                predecessor=predecessor,
            )

        self.session.flush()
        return new_version

    def _has_posted_revenue(self, obligation: PerformanceObligation) -> bool:
        posted = self.session.execute(
            select(RecognitionScheduleEntry.id)
            .where(
                RecognitionScheduleEntry.obligation_id == obligation.id,
                RecognitionScheduleEntry.status == EntryStatus.POSTED,
            )
            .limit(1)
        ).first()
        return posted is not None

    def apply_with_retry(
        self,
        contract_number: str,
        operation: Callable[[int], T],
    ) -> T:
        """
        Run ``operation(expected_version)`` against the current version,
        re-reading and retrying on VersionConflictError.

        Each attempt runs inside the operation's own savepoint, so a lost
        race leaves nothing behind.  Gives up after
        ``concurrency.version_conflict_max_retries`` retries and re-raises.
        """
        max_retries = self._config.concurrency.version_conflict_max_retries
        for attempt in range(max_retries + 1):
            expected_version = self._current_version_orm(contract_number).version_number
            try:
                return operation(expected_version)
            except VersionConflictError as exc:
                if attempt >= max_retries:
                    logger.error(
                        "version_conflict_retries_exhausted",
                        extra={"contract_number": contract_number, "attempts": attempt + 1},
                    )
                    raise
                logger.warning(
                    "version_conflict_retry",
                    extra={
                        "contract_number": contract_number,
                        "attempt": attempt + 1,
                        "expected_version": exc.expected_version,
                        "actual_version": exc.actual_version,
                    },
                )
        raise AssertionError("unreachable")

    def modify_with_retry(
        self,
        contract_number: str,
        modification: ContractModification,
        actor_id: UUID,
        source_event_id: UUID | None = None,
    ) -> ContractInfo:
        return self.apply_with_retry(
            contract_number,
            lambda version: self.modify_contract(
                contract_number, version, modification, actor_id, source_event_id
            ),
        )

    def cancel_with_retry(
        self,
        contract_number: str,
        reason: str,
        actor_id: UUID,
        effective_date: date | None = None,
        source_event_id: UUID | None = None,
    ) -> ContractInfo:
        return self.apply_with_retry(
            contract_number,
            lambda version: self.cancel_contract(
                contract_number, version, reason, actor_id, effective_date, source_event_id
            ),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def current_version(self, contract_number: str) -> ContractInfo:
        return ContractInfo.from_model(self._current_version_orm(contract_number))

    def version_history(self, contract_number: str) -> list[ContractInfo]:
        versions = self.session.execute(
            select(RevenueContract)
            .where(RevenueContract.contract_number == contract_number)
            .order_by(RevenueContract.version_number)
        ).scalars().all()
        if not versions:
            raise ContractNotFoundError(contract_number)
        return [ContractInfo.from_model(v) for v in versions]

    def get_contract(self, contract_id: UUID) -> ContractInfo:
        return ContractInfo.from_model(self._get_contract_orm(contract_id))

    def _current_version_orm(self, contract_number: str) -> RevenueContract:
        contract = self.session.execute(
            select(RevenueContract)
            .where(
                RevenueContract.contract_number == contract_number,
                RevenueContract.status != ContractStatus.SUPERSEDED,
            )
            .order_by(RevenueContract.version_number.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if contract is None:
            raise ContractNotFoundError(contract_number)
        return contract

    def _get_contract_orm(self, contract_id: UUID) -> RevenueContract:
        contract = self.session.get(RevenueContract, contract_id)
        if contract is None:
            raise ContractNotFoundError(str(contract_id))
        return contract

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _build_obligation(
        self,
        contract: RevenueContract,
        line: ObligationDraft,
        effective_date: date,
        actor_id: UUID,
        predecessor: PerformanceObligation | None = None,
    ) -> PerformanceObligation:
        rule = self._config.recognition.rule_for(line.item_id)

        if line.recognition_method is not None:
            method = RecognitionMethod(line.recognition_method)
        elif predecessor is not None:
            method = predecessor.recognition_method
        elif rule is not None:
            method = RecognitionMethod(rule.method)
        else:
            method = RecognitionMethod(self._config.recognition.default_method)

        milestones = self._milestone_plan(line, predecessor)
        start = line.recognition_start or (
            predecessor.recognition_start if predecessor is not None else effective_date
        )

        if method == RecognitionMethod.POINT_IN_TIME:
            end = start
        elif line.recognition_end is not None:
            end = line.recognition_end
        elif predecessor is not None and predecessor.recognition_method == method:
            end = predecessor.recognition_end
        elif method == RecognitionMethod.MILESTONE:
            end = max((m.planned_date for m in milestones), default=start)
        else:
            term = (rule.term_months if rule and rule.term_months else None) or (
                self._config.recognition.default_term_months
            )
            end = _add_months(start, term) - timedelta(days=1)

        if end < start:
            raise InvalidRecognitionPlanError(
                f"{contract.contract_number} line {line.line_number}",
                f"recognition ends {end} before it starts {start}",
            )
        if method == RecognitionMethod.MILESTONE and not milestones:
            raise InvalidRecognitionPlanError(
                f"{contract.contract_number} line {line.line_number}",
                "milestone recognition needs at least one milestone",
            )

        usage_rate = line.usage_rate
        if usage_rate is None and predecessor is not None:
            usage_rate = predecessor.usage_rate

        pob = PerformanceObligation(
            contract=contract,
            line_number=line.line_number,
            item_id=line.item_id,
            quantity=line.quantity,
            observable_price=line.observable_price,
            list_price=line.list_price,
            region=line.region,
            allocated_price=ZERO,
            recognition_method=method,
            recognition_start=start,
            recognition_end=end,
            usage_rate=usage_rate,
            predecessor_id=predecessor.id if predecessor is not None else None,
            status=ObligationStatus.UNALLOCATED,
            created_by_id=actor_id,
        )
        self.session.add(pob)

        for sequence, milestone in enumerate(milestones, start=1):
            self.session.add(
                ObligationMilestone(
                    obligation=pob,
                    sequence=sequence,
                    name=milestone.name,
                    percentage=milestone.percentage,
                    planned_date=milestone.planned_date,
                    completed_date=milestone.completed_date,
                    created_by_id=actor_id,
                )
            )
        return pob

    @staticmethod
    def _milestone_plan(
        line: ObligationDraft,
        predecessor: PerformanceObligation | None,
    ) -> list[MilestoneDraft]:
        """Milestones for a line; completions carry over from the predecessor."""
        previous = (
            sorted(predecessor.milestones, key=lambda m: m.sequence) if predecessor else []
        )
        if not line.milestones:
            return [
                MilestoneDraft(m.name, m.percentage, m.planned_date, m.completed_date)
                for m in previous
            ]

        completed = {m.sequence: m.completed_date for m in previous}
        return [
            MilestoneDraft(
                name=m.name,
                percentage=m.percentage,
                planned_date=m.planned_date,
                completed_date=m.completed_date or completed.get(sequence),
            )
            for sequence, m in enumerate(line.milestones, start=1)
        ]

    @staticmethod
    def _validate_lines(
        contract_number: str,
        total_transaction_price: Decimal,
        lines: Sequence[ObligationDraft],
    ) -> None:
        if total_transaction_price < ZERO:
            raise ValueError(
                f"Contract {contract_number}: transaction price cannot be negative"
            )
        if not lines:
            raise ValueError(f"Contract {contract_number}: at least one line is required")
        numbers = [line.line_number for line in lines]
        if len(numbers) != len(set(numbers)):
            raise ValueError(f"Contract {contract_number}: duplicate line numbers {numbers}")
        for line in lines:
            if line.quantity <= ZERO:
                raise ValueError(
                    f"Contract {contract_number} line {line.line_number}: quantity must be positive"
                )

    @staticmethod
    def _allocation_payload(contract: RevenueContract) -> list[dict]:
        return [
            {
                "line_number": pob.line_number,
                "item_id": pob.item_id,
                "estimated_standalone_value": str(pob.estimated_standalone_value),
                "allocated_price": str(pob.allocated_price),
                "ssp_line_id": str(pob.ssp_line_id) if pob.ssp_line_id else None,
            }
            for pob in contract.obligations
        ]

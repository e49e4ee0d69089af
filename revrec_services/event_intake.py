"""
EventIntakeService -- idempotent intake and processing of source events.

Responsibility:
    Validates and stores externally originated business facts (bookings,
    modifications, cancellations, usage, milestone completions, billings),
    routes each to the service that acts on it, and records the outcome on
    the source event.

Architecture position:
    Services -- the outer boundary of the engine.  Composes ContractService
    and RecognitionScheduler; everything downstream of a source event runs
    inside one savepoint per event.

Invariants enforced:
    - Idempotency on (source_system, source_id): a redelivery with the same
      payload hash is a Duplicate and does nothing; a different payload under
      the same key is Rejected.
    - A payload that fails shape validation is never stored.
    - Failure isolation: when processing fails the savepoint is rolled back,
      so nothing but the event's Error status and reason persists.
    - Errors are never retried in process; ``retry`` is an explicit call.

Failure modes:
    - SourceEventValidationError: shape validation failed (nothing stored).
    - SourceEventNotFoundError / RetryNotAllowedError from ``retry``.
    - Domain errors during processing are recorded on the event (status
      Error, ``error_message`` "<code>: <message>") and reported in the
      IntakeResult rather than raised.

Audit relevance:
    Ingestion and processing failures are written to the audit chain; a
    processed event links to the contract version it produced or touched.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from revrec_config import RevRecConfig
from revrec_kernel.domain.clock import Clock, SystemClock
from revrec_kernel.domain.currency import CurrencyRegistry
from revrec_kernel.exceptions import (
    InvalidRecognitionPlanError,
    RetryNotAllowedError,
    RevRecError,
    SourceEventNotFoundError,
    SourceEventValidationError,
)
from revrec_kernel.logging_config import LogContext, get_logger
from revrec_kernel.models.audit_event import AuditAction
from revrec_kernel.models.contract import PerformanceObligation
from revrec_kernel.models.source_event import ProcessingStatus, SourceEvent, SourceEventType
from revrec_kernel.services.auditor_service import AuditorService
from revrec_kernel.services.base import BaseService
from revrec_kernel.utils.hashing import hash_payload
from revrec_services.contract_service import (
    ContractDraft,
    ContractModification,
    ContractService,
    MilestoneDraft,
    ObligationDraft,
)
from revrec_services.recognition_scheduler import RecognitionScheduler

logger = get_logger("services.event_intake")

REQUIRED_FIELDS = ("sourceSystem", "sourceId", "eventType", "eventDate", "amount", "currency")

# Event types that act on an existing contract
REFERENCING_TYPES = (
    SourceEventType.MODIFICATION,
    SourceEventType.CANCELLATION,
    SourceEventType.USAGE,
    SourceEventType.MILESTONE,
    SourceEventType.BILLING,
)

# Failures recorded on the event instead of propagating
PROCESSING_ERRORS = (RevRecError, ValueError, KeyError, ArithmeticError)


class IntakeStatus(str, Enum):
    """Outcome reported for one ingest or retry call."""

    ALLOCATED = "Allocated"
    ERROR = "Error"
    DUPLICATE = "Duplicate"
    REJECTED = "Rejected"
    PENDING = "Pending"


@dataclass(frozen=True)
class IntakeResult:
    status: IntakeStatus
    event_id: UUID | None
    contract_id: UUID | None = None
    message: str = ""

    @property
    def is_success(self) -> bool:
        return self.status in (IntakeStatus.ALLOCATED, IntakeStatus.DUPLICATE)


# =============================================================================
# Payload parsing
# =============================================================================


def _to_decimal(value: Any, field_name: str, errors: list[str]) -> Decimal | None:
    if value is None:
        return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        result = None
    if result is None or not result.is_finite():
        errors.append(f"{field_name}: not a decimal number ({value!r})")
        return None
    return result


def _to_date(value: Any, field_name: str, errors: list[str]) -> date | None:
    if value is None:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        errors.append(f"{field_name}: not an ISO date ({value!r})")
        return None


def _validate_lines(lines: Any, errors: list[str]) -> None:
    if not isinstance(lines, list) or not lines:
        errors.append("lines: at least one line is required")
        return
    for index, line in enumerate(lines):
        prefix = f"lines[{index}]"
        if not isinstance(line, dict):
            errors.append(f"{prefix}: must be an object")
            continue
        line_number = line.get("lineNumber")
        if not isinstance(line_number, int) or isinstance(line_number, bool):
            errors.append(f"{prefix}.lineNumber: integer required")
        if not line.get("itemId"):
            errors.append(f"{prefix}.itemId: required")
        quantity = _to_decimal(line.get("quantity"), f"{prefix}.quantity", errors)
        if quantity is not None and quantity <= 0:
            errors.append(f"{prefix}.quantity: must be positive")
        for key in ("observablePrice", "listPrice", "usageRate"):
            _to_decimal(line.get(key), f"{prefix}.{key}", errors)
        for key in ("recognitionStart", "recognitionEnd"):
            _to_date(line.get(key), f"{prefix}.{key}", errors)
        milestones = line.get("milestones") or []
        if not isinstance(milestones, list):
            errors.append(f"{prefix}.milestones: must be a list")
            continue
        for m_index, milestone in enumerate(milestones):
            m_prefix = f"{prefix}.milestones[{m_index}]"
            if not isinstance(milestone, dict):
                errors.append(f"{m_prefix}: must be an object")
                continue
            if not milestone.get("name"):
                errors.append(f"{m_prefix}.name: required")
            if milestone.get("percentage") is None:
                errors.append(f"{m_prefix}.percentage: required")
            _to_decimal(milestone.get("percentage"), f"{m_prefix}.percentage", errors)
            if milestone.get("plannedDate") is None:
                errors.append(f"{m_prefix}.plannedDate: required")
            _to_date(milestone.get("plannedDate"), f"{m_prefix}.plannedDate", errors)


def validate_event_data(event_data: dict, allowed_types: tuple[str, ...]) -> list[str]:
    """Shape errors in an inbound event; empty when the event is acceptable."""
    if not isinstance(event_data, dict):
        return ["event must be an object"]

    errors = [f"{name}: required" for name in REQUIRED_FIELDS if event_data.get(name) in (None, "")]
    if errors:
        return errors

    event_type = event_data["eventType"]
    if event_type not in allowed_types:
        return [f"eventType: {event_type!r} is not accepted"]

    _to_date(event_data["eventDate"], "eventDate", errors)
    _to_decimal(event_data["amount"], "amount", errors)
    _to_decimal(event_data.get("quantity"), "quantity", errors)
    _to_date(event_data.get("effectiveDate"), "effectiveDate", errors)
    if not CurrencyRegistry.is_valid(event_data["currency"]):
        errors.append(f"currency: unknown ISO 4217 code {event_data['currency']!r}")

    event_type = SourceEventType(event_type)
    if event_type == SourceEventType.BOOKING:
        for name in ("customerId", "ledgerId"):
            if not event_data.get(name):
                errors.append(f"{name}: required for {event_type.value}")
        _validate_lines(event_data.get("lines"), errors)
    if event_type in REFERENCING_TYPES and not event_data.get("referenceNumber"):
        errors.append(f"referenceNumber: required for {event_type.value}")
    if event_type == SourceEventType.MODIFICATION:
        _validate_lines(event_data.get("lines"), errors)
    if event_type == SourceEventType.USAGE:
        if event_data.get("lineNumber") is None and not event_data.get("itemId"):
            errors.append("lineNumber or itemId: required for Usage")
    if event_type == SourceEventType.MILESTONE:
        if not event_data.get("milestoneName") and event_data.get("milestoneSequence") is None:
            errors.append("milestoneName or milestoneSequence: required for Milestone")
    return errors


def _obligation_drafts(lines: list[dict]) -> tuple[ObligationDraft, ...]:
    errors: list[str] = []
    drafts = []
    for line in lines:
        drafts.append(
            ObligationDraft(
                line_number=line["lineNumber"],
                item_id=line["itemId"],
                quantity=(
                    Decimal("1")
                    if line.get("quantity") is None
                    else _to_decimal(line["quantity"], "quantity", errors)
                ),
                recognition_method=line.get("recognitionMethod"),
                observable_price=_to_decimal(line.get("observablePrice"), "observablePrice", errors),
                list_price=_to_decimal(line.get("listPrice"), "listPrice", errors),
                recognition_start=_to_date(line.get("recognitionStart"), "recognitionStart", errors),
                recognition_end=_to_date(line.get("recognitionEnd"), "recognitionEnd", errors),
                usage_rate=_to_decimal(line.get("usageRate"), "usageRate", errors),
                region=line.get("region"),
                milestones=tuple(
                    MilestoneDraft(
                        name=m["name"],
                        percentage=_to_decimal(m["percentage"], "percentage", errors),
                        planned_date=_to_date(m["plannedDate"], "plannedDate", errors),
                        completed_date=_to_date(m.get("completedDate"), "completedDate", errors),
                    )
                    for m in line.get("milestones") or []
                ),
            )
        )
    return tuple(drafts)


# =============================================================================
# Service
# =============================================================================


class EventIntakeService(BaseService[SourceEvent]):
    """
    Service for source event intake, routing and retry.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT retry failed events on its own.
    """

    def __init__(
        self,
        session: Session,
        contract_service: ContractService,
        scheduler: RecognitionScheduler,
        auditor: AuditorService,
        config: RevRecConfig,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._contracts = contract_service
        self._scheduler = scheduler
        self._auditor = auditor
        self._config = config
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def ingest(self, event_data: dict, actor_id: UUID, process: bool = True) -> IntakeResult:
        """
        Validate, store and (by default) process one source event.

        Raises:
            SourceEventValidationError: If the payload shape is invalid.
        """
        errors = validate_event_data(event_data, self._config.intake.event_types)
        if errors:
            source_id = str(event_data.get("sourceId")) if isinstance(event_data, dict) else "?"
            logger.warning(
                "source_event_invalid",
                extra={"source_id": source_id, "errors": errors},
            )
            raise SourceEventValidationError(source_id, errors)

        source_system = event_data["sourceSystem"]
        source_id = str(event_data["sourceId"])
        payload_hash = hash_payload(event_data)

        existing = self._find(source_system, source_id)
        if existing is not None:
            return self._redelivery(existing, payload_hash)

        try:
            with self.session.begin_nested():
                event = self._store(event_data, payload_hash, actor_id)
        except IntegrityError:
            # Lost the insert race to a concurrent delivery of the same event
            existing = self._find(source_system, source_id)
            if existing is None:
                raise
            return self._redelivery(existing, payload_hash)

        self._auditor.record_source_event(
            event_id=event.id,
            action=AuditAction.SOURCE_EVENT_INGESTED,
            actor_id=actor_id,
            source_system=source_system,
            source_id=source_id,
            event_type=event.event_type.value,
            payload_hash=payload_hash,
        )
        logger.info(
            "source_event_ingested",
            extra={
                "source_event_id": str(event.id),
                "source_system": source_system,
                "source_id": source_id,
                "event_type": event.event_type.value,
            },
        )

        if not process:
            return IntakeResult(IntakeStatus.PENDING, event.id, message="stored")
        return self._process(event, actor_id)

    def _find(self, source_system: str, source_id: str) -> SourceEvent | None:
        return self.session.execute(
            select(SourceEvent).where(
                SourceEvent.source_system == source_system,
                SourceEvent.source_id == source_id,
            )
        ).scalar_one_or_none()

    def _redelivery(self, existing: SourceEvent, payload_hash: str) -> IntakeResult:
        if existing.payload_hash == payload_hash:
            logger.info(
                "source_event_duplicate",
                extra={"source_event_id": str(existing.id), "source_id": existing.source_id},
            )
            return IntakeResult(
                IntakeStatus.DUPLICATE,
                existing.id,
                existing.contract_id,
                message=f"already received ({existing.processing_status.value})",
            )

        logger.warning(
            "source_event_payload_mismatch",
            extra={
                "source_event_id": str(existing.id),
                "source_id": existing.source_id,
                "stored_hash": existing.payload_hash,
                "received_hash": payload_hash,
            },
        )
        return IntakeResult(
            IntakeStatus.REJECTED,
            existing.id,
            existing.contract_id,
            message="source id already used with a different payload",
        )

    def _store(self, event_data: dict, payload_hash: str, actor_id: UUID) -> SourceEvent:
        errors: list[str] = []
        event_type = SourceEventType(event_data["eventType"])
        reference_number = event_data.get("referenceNumber")
        if event_type == SourceEventType.BOOKING and not reference_number:
            reference_number = str(event_data["sourceId"])

        event = SourceEvent(
            source_system=event_data["sourceSystem"],
            source_id=str(event_data["sourceId"]),
            event_type=event_type,
            event_date=_to_date(event_data["eventDate"], "eventDate", errors),
            amount=_to_decimal(event_data["amount"], "amount", errors),
            currency=CurrencyRegistry.validate(event_data["currency"]),
            ledger_id=event_data.get("ledgerId"),
            customer_id=event_data.get("customerId"),
            item_id=event_data.get("itemId"),
            quantity=_to_decimal(event_data.get("quantity"), "quantity", errors),
            reference_number=reference_number,
            legal_entity_id=event_data.get("legalEntityId"),
            org_id=event_data.get("orgId"),
            payload=json.loads(json.dumps(event_data, default=str)),
            payload_hash=payload_hash,
            processing_status=ProcessingStatus.PENDING,
            attempt_count=0,
            created_by_id=actor_id,
        )
        self.session.add(event)
        self.session.flush()
        return event

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def retry(self, event_id: UUID, actor_id: UUID) -> IntakeResult:
        """
        Reprocess an event in Error status.

        Raises:
            SourceEventNotFoundError: Unknown event id.
            RetryNotAllowedError: Event not in Error, or attempts exhausted.
        """
        event = self.session.get(SourceEvent, event_id)
        if event is None:
            raise SourceEventNotFoundError(str(event_id))
        if (
            event.processing_status != ProcessingStatus.ERROR
            or event.attempt_count >= self._config.intake.max_attempts
        ):
            raise RetryNotAllowedError(
                event.source_id, event.processing_status.value, event.attempt_count
            )

        logger.info(
            "source_event_retry",
            extra={"source_event_id": str(event.id), "attempt": event.attempt_count + 1},
        )
        return self._process(event, actor_id)

    def process_pending(self, actor_id: UUID, limit: int | None = None) -> list[IntakeResult]:
        """Process Pending events oldest first, at most ``limit`` of them."""
        limit = limit or self._config.intake.batch_size
        pending = self.session.execute(
            select(SourceEvent)
            .where(SourceEvent.processing_status == ProcessingStatus.PENDING)
            .order_by(SourceEvent.created_at, SourceEvent.event_date, SourceEvent.source_id)
            .limit(limit)
        ).scalars().all()

        results = [self._process(event, actor_id) for event in pending]
        logger.info(
            "pending_events_processed",
            extra={
                "processed_count": len(results),
                "error_count": sum(1 for r in results if r.status == IntakeStatus.ERROR),
            },
        )
        return results

    def _process(self, event: SourceEvent, actor_id: UUID) -> IntakeResult:
        event.attempt_count = (event.attempt_count or 0) + 1
        event.updated_by_id = actor_id

        with LogContext.bind(source_event_id=str(event.id), actor_id=str(actor_id)):
            try:
                with self.session.begin_nested():
                    contract_id = self._route(event, actor_id)
            except PROCESSING_ERRORS as exc:
                return self._record_failure(event, exc, actor_id)

            event.processing_status = ProcessingStatus.ALLOCATED
            event.contract_id = contract_id
            event.error_message = None
            event.processed_at = self._clock.now()
            self.session.flush()

            logger.info(
                "source_event_processed",
                extra={
                    "event_type": event.event_type.value,
                    "contract_id": str(contract_id) if contract_id else None,
                    "attempt": event.attempt_count,
                },
            )
            return IntakeResult(IntakeStatus.ALLOCATED, event.id, contract_id, message="processed")

    def _record_failure(self, event: SourceEvent, exc: Exception, actor_id: UUID) -> IntakeResult:
        code = getattr(exc, "code", type(exc).__name__)
        reason = f"{code}: {exc}"

        event.processing_status = ProcessingStatus.ERROR
        event.error_message = reason
        self.session.flush()

        logger.error(
            "source_event_failed",
            extra={
                "event_type": event.event_type.value,
                "error_code": code,
                "attempt": event.attempt_count,
            },
            exc_info=exc,
        )
        self._auditor.record_source_event(
            event_id=event.id,
            action=AuditAction.SOURCE_EVENT_FAILED,
            actor_id=actor_id,
            source_system=event.source_system,
            source_id=event.source_id,
            error_code=code,
            attempt=event.attempt_count,
        )
        return IntakeResult(IntakeStatus.ERROR, event.id, message=reason)

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _route(self, event: SourceEvent, actor_id: UUID) -> UUID | None:
        handlers = {
            SourceEventType.BOOKING: self._handle_booking,
            SourceEventType.MODIFICATION: self._handle_modification,
            SourceEventType.CANCELLATION: self._handle_cancellation,
            SourceEventType.USAGE: self._handle_usage,
            SourceEventType.MILESTONE: self._handle_milestone,
            SourceEventType.BILLING: self._handle_billing,
        }
        return handlers[event.event_type](event, event.payload or {}, actor_id)

    def _handle_booking(self, event: SourceEvent, payload: dict, actor_id: UUID) -> UUID:
        errors: list[str] = []
        ssp_book_id = payload.get("sspBookId")
        draft = ContractDraft(
            contract_number=event.reference_number,
            customer_id=event.customer_id,
            ledger_id=event.ledger_id,
            total_transaction_price=event.amount,
            effective_date=_to_date(payload.get("effectiveDate"), "effectiveDate", errors)
            or event.event_date,
            lines=_obligation_drafts(payload["lines"]),
            currency=event.currency,
            legal_entity_id=event.legal_entity_id,
            org_id=event.org_id,
            sign_date=_to_date(payload.get("signDate"), "signDate", errors),
            ssp_book_id=UUID(ssp_book_id) if ssp_book_id else None,
        )
        contract = self._contracts.create_contract(draft, actor_id)
        allocated = self._contracts.allocate(contract.id, actor_id)
        return allocated.id

    def _handle_modification(self, event: SourceEvent, payload: dict, actor_id: UUID) -> UUID:
        errors: list[str] = []
        ssp_book_id = payload.get("sspBookId")
        modification = ContractModification(
            total_transaction_price=event.amount,
            effective_date=_to_date(payload.get("effectiveDate"), "effectiveDate", errors)
            or event.event_date,
            lines=_obligation_drafts(payload["lines"]),
            reason=payload.get("reason") or f"{event.source_system}/{event.source_id}",
            ssp_book_id=UUID(ssp_book_id) if ssp_book_id else None,
        )
        contract = self._contracts.modify_with_retry(
            event.reference_number, modification, actor_id, source_event_id=event.id
        )
        return contract.id

    def _handle_cancellation(self, event: SourceEvent, payload: dict, actor_id: UUID) -> UUID:
        contract = self._contracts.cancel_with_retry(
            event.reference_number,
            payload.get("reason") or f"{event.source_system}/{event.source_id}",
            actor_id,
            effective_date=event.event_date,
            source_event_id=event.id,
        )
        return contract.id

    def _handle_usage(self, event: SourceEvent, payload: dict, actor_id: UUID) -> UUID:
        contract = self._contracts.current_version(event.reference_number)
        obligation = self._find_obligation(contract.id, payload, event)
        self._scheduler.record_usage(
            obligation.id,
            event.event_date,
            actor_id,
            quantity=event.quantity,
            amount=event.amount,
            source_event_id=event.id,
        )
        return contract.id

    def _handle_milestone(self, event: SourceEvent, payload: dict, actor_id: UUID) -> UUID:
        errors: list[str] = []
        contract = self._contracts.current_version(event.reference_number)
        name = payload.get("milestoneName")
        sequence = payload.get("milestoneSequence")

        if payload.get("lineNumber") is not None or payload.get("itemId"):
            candidates = [self._find_obligation(contract.id, payload, event)]
        else:
            candidates = self.session.execute(
                select(PerformanceObligation).where(
                    PerformanceObligation.contract_id == contract.id
                )
            ).scalars().all()

        matches = [
            m
            for pob in candidates
            for m in pob.milestones
            if (name is not None and m.name == name)
            or (name is None and m.sequence == sequence)
        ]
        if len(matches) != 1:
            raise InvalidRecognitionPlanError(
                f"{event.reference_number}",
                f"milestone {name or sequence} matched {len(matches)} milestones",
            )

        completed_on = (
            _to_date(payload.get("completedDate"), "completedDate", errors) or event.event_date
        )
        self._scheduler.complete_milestone(
            matches[0].id, completed_on, actor_id, source_event_id=event.id
        )
        return contract.id

    def _handle_billing(self, event: SourceEvent, payload: dict, actor_id: UUID) -> UUID:
        contract = self._contracts.current_version(event.reference_number)
        logger.info(
            "billing_linked",
            extra={
                "contract_number": contract.contract_number,
                "version_number": contract.version_number,
                "amount": str(event.amount),
            },
        )
        return contract.id

    def _find_obligation(
        self,
        contract_id: UUID,
        payload: dict,
        event: SourceEvent,
    ) -> PerformanceObligation:
        query = select(PerformanceObligation).where(
            PerformanceObligation.contract_id == contract_id
        )
        line_number = payload.get("lineNumber")
        if line_number is not None:
            query = query.where(PerformanceObligation.line_number == int(line_number))
        else:
            query = query.where(PerformanceObligation.item_id == (event.item_id or payload.get("itemId")))

        obligations = self.session.execute(query.order_by(PerformanceObligation.line_number)).scalars().all()
        if not obligations:
            raise InvalidRecognitionPlanError(
                f"{event.reference_number}",
                f"no obligation for line {line_number!r} / item {event.item_id!r}",
            )
        return obligations[0]

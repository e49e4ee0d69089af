"""
Typed Exception Hierarchy for the revenue recognition engine.

Every error has a typed class (catch by type, never by message), a ``code``
class attribute (machine-readable, API-safe) and structured attributes
carrying the context an operator needs to triage it.

    RevRecError (base)
    |
    +-- CatalogError
    |   +-- SSPNotFoundError
    |   +-- SSPBookNotFoundError
    |   +-- SSPLineImmutableError
    |
    +-- AllocationError
    |   +-- AllocationDegenerateError
    |   +-- ObservablePriceExceedsTotalError
    |
    +-- ContractError
    |   +-- ContractNotFoundError
    |   +-- ContractStateError
    |
    +-- ScheduleError
    |   +-- InvalidRecognitionPlanError
    |   +-- ScheduleImmutableViolation
    |
    +-- PeriodError
    |   +-- PeriodNotFoundError
    |   +-- PeriodOverlapError
    |   +-- PeriodTransitionError
    |   +-- PeriodNotOpenError
    |   +-- PeriodImmutableError
    |   +-- PeriodNotReadyError
    |
    +-- SourceEventError
    |   +-- SourceEventValidationError
    |   +-- SourceEventNotFoundError
    |   +-- RetryNotAllowedError
    |
    +-- ConcurrencyError
    |   +-- VersionConflictError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

Category        | Code                          | When Raised
----------------|-------------------------------|--------------------------------------
Catalog         | SSP_NOT_FOUND                 | No eligible SSP line for item/date
                | SSP_BOOK_NOT_FOUND            | Book id (or default book) missing
                | SSP_LINE_IMMUTABLE            | Editing a line used by an allocation
Allocation      | ALLOCATION_DEGENERATE         | Zero-sum SSP pool
                | OBSERVABLE_PRICE_EXCEEDS_TOTAL| Fixed prices exceed contract price
Contract        | CONTRACT_NOT_FOUND            | Unknown contract id / number
                | CONTRACT_STATE                | Operation not valid in this status
Schedule        | INVALID_RECOGNITION_PLAN      | Bad window, milestones, usage input
                | SCHEDULE_IMMUTABLE            | Altering a Posted entry
Period          | PERIOD_NOT_FOUND              | No period covers a date
                | PERIOD_OVERLAP                | Date range conflicts in a ledger
                | PERIOD_TRANSITION_INVALID     | Illegal lifecycle transition
                | PERIOD_NOT_OPEN               | Sweep against a non-Open period
                | PERIOD_IMMUTABLE              | Touching a PermanentlyClosed period
                | PERIOD_NOT_READY              | Close blocked by exceptions
Source event    | SOURCE_EVENT_ERROR            | Processing failed (retryable)
                | SOURCE_EVENT_INVALID          | Payload shape rejected
                | SOURCE_EVENT_NOT_FOUND        | Unknown source event
                | RETRY_NOT_ALLOWED             | Retry of a non-Error / exhausted event
Concurrency     | VERSION_CONFLICT              | Contract version changed underneath
Audit           | AUDIT_CHAIN_BROKEN            | Hash chain validation failed
Immutability    | IMMUTABILITY_VIOLATION        | Modifying an append-only record

``VersionConflictError`` is the only error retried in process; everything
else propagates to the caller with its structured context.
"""

from decimal import Decimal
from typing import Any


class RevRecError(Exception):
    """
    Base exception for all revenue recognition errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "REVREC_ERROR"


# Catalog-related exceptions


class CatalogError(RevRecError):
    """Base exception for SSP catalog errors."""

    code: str = "CATALOG_ERROR"


class SSPNotFoundError(CatalogError):
    """No eligible standalone selling price line exists."""

    code: str = "SSP_NOT_FOUND"

    def __init__(self, item_id: str, as_of_date: Any, book_id: str | None = None):
        self.item_id = item_id
        self.as_of_date = str(as_of_date)
        self.book_id = book_id
        super().__init__(
            f"No SSP for item {item_id} as of {as_of_date}"
            + (f" in book {book_id}" if book_id else "")
        )


class SSPBookNotFoundError(CatalogError):
    """The requested SSP book (or the default book) does not exist."""

    code: str = "SSP_BOOK_NOT_FOUND"

    def __init__(self, book_id: str | None):
        self.book_id = book_id
        super().__init__(
            f"SSP book not found: {book_id}" if book_id else "No default SSP book designated"
        )


class SSPLineImmutableError(CatalogError):
    """An SSP line referenced by an allocation cannot be edited."""

    code: str = "SSP_LINE_IMMUTABLE"

    def __init__(self, line_id: str):
        self.line_id = line_id
        super().__init__(
            f"SSP line {line_id} is referenced by an allocation; "
            "add a new effective-dated line instead"
        )


# Allocation-related exceptions


class AllocationError(RevRecError):
    """Base exception for allocation errors."""

    code: str = "ALLOCATION_ERROR"


class AllocationDegenerateError(AllocationError):
    """The proportional pool has no standalone value to divide by."""

    code: str = "ALLOCATION_DEGENERATE"

    def __init__(self, remainder: Decimal, reason: str = "zero standalone selling price pool"):
        self.remainder = str(remainder)
        self.reason = reason
        super().__init__(f"Allocation degenerate: {reason} (remainder {remainder})")


class ObservablePriceExceedsTotalError(AllocationError):
    """Observable line prices exceed the contract's transaction price."""

    code: str = "OBSERVABLE_PRICE_EXCEEDS_TOTAL"

    def __init__(self, total_price: Decimal, observable_total: Decimal):
        self.total_price = str(total_price)
        self.observable_total = str(observable_total)
        super().__init__(
            f"Observable prices {observable_total} exceed transaction price {total_price}"
        )


# Contract-related exceptions


class ContractError(RevRecError):
    """Base exception for contract errors."""

    code: str = "CONTRACT_ERROR"


class ContractNotFoundError(ContractError):
    """Contract with the given id or number was not found."""

    code: str = "CONTRACT_NOT_FOUND"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Contract not found: {reference}")


class ContractStateError(ContractError):
    """The contract's status does not permit the requested operation."""

    code: str = "CONTRACT_STATE"

    def __init__(self, contract_id: str, status: str, operation: str):
        self.contract_id = contract_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} contract {contract_id} in status {status}")


# Schedule-related exceptions


class ScheduleError(RevRecError):
    """Base exception for recognition schedule errors."""

    code: str = "SCHEDULE_ERROR"


class InvalidRecognitionPlanError(ScheduleError):
    """An obligation's recognition parameters cannot produce a schedule."""

    code: str = "INVALID_RECOGNITION_PLAN"

    def __init__(self, obligation_ref: str, reason: str):
        self.obligation_ref = obligation_ref
        self.reason = reason
        super().__init__(f"Invalid recognition plan for {obligation_ref}: {reason}")


class ScheduleImmutableViolation(ScheduleError):
    """Attempt to alter a Posted recognition schedule entry."""

    code: str = "SCHEDULE_IMMUTABLE"

    def __init__(self, entry_id: str, reason: str):
        self.entry_id = entry_id
        self.reason = reason
        super().__init__(f"Posted schedule entry {entry_id} is immutable: {reason}")


# Period-related exceptions


class PeriodError(RevRecError):
    """Base exception for period errors."""

    code: str = "PERIOD_ERROR"


class PeriodNotFoundError(PeriodError):
    """No period covers the given date, or the period id is unknown."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, reference: str, ledger_id: str | None = None):
        self.reference = reference
        self.ledger_id = ledger_id
        super().__init__(
            f"No period found for {reference}"
            + (f" in ledger {ledger_id}" if ledger_id else "")
        )


class PeriodOverlapError(PeriodError):
    """New period's date range overlaps an existing period in the ledger."""

    code: str = "PERIOD_OVERLAP"

    def __init__(self, period_name: str, existing_period_name: str):
        self.period_name = period_name
        self.existing_period_name = existing_period_name
        super().__init__(
            f"Period {period_name} overlaps with existing period {existing_period_name}"
        )


class PeriodTransitionError(PeriodError):
    """Requested lifecycle transition is not allowed."""

    code: str = "PERIOD_TRANSITION_INVALID"

    def __init__(self, period_name: str, from_status: str, to_status: str):
        self.period_name = period_name
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Period {period_name} cannot transition from {from_status} to {to_status}"
        )


class PeriodNotOpenError(PeriodError):
    """Postings are only permitted while a period is Open."""

    code: str = "PERIOD_NOT_OPEN"

    def __init__(self, period_name: str, status: str):
        self.period_name = period_name
        self.status = status
        super().__init__(f"Period {period_name} is {status}, not Open")


class PeriodImmutableError(PeriodError):
    """A PermanentlyClosed period cannot be changed."""

    code: str = "PERIOD_IMMUTABLE"

    def __init__(self, period_name: str, operation: str):
        self.period_name = period_name
        self.operation = operation
        super().__init__(
            f"Cannot {operation} permanently closed period {period_name}"
        )


class PeriodNotReadyError(PeriodError):
    """Close is blocked; ``exceptions`` enumerates what must be resolved."""

    code: str = "PERIOD_NOT_READY"

    def __init__(self, period_name: str, exceptions: tuple):
        self.period_name = period_name
        self.exceptions = tuple(exceptions)
        super().__init__(
            f"Period {period_name} cannot close: {len(self.exceptions)} outstanding exception(s)"
        )


# Source-event-related exceptions


class SourceEventError(RevRecError):
    """Source event processing failed; the event remains retryable."""

    code: str = "SOURCE_EVENT_ERROR"

    def __init__(self, source_id: str, reason: str):
        self.source_id = source_id
        self.reason = reason
        super().__init__(f"Source event {source_id} failed: {reason}")


class SourceEventValidationError(SourceEventError):
    """Source event payload failed shape validation and was not stored."""

    code: str = "SOURCE_EVENT_INVALID"

    def __init__(self, source_id: str, errors: list[str]):
        self.errors = list(errors)
        super().__init__(source_id, "; ".join(errors))


class SourceEventNotFoundError(SourceEventError):
    """Source event with the given id was not found."""

    code: str = "SOURCE_EVENT_NOT_FOUND"

    def __init__(self, event_id: str):
        super().__init__(event_id, "not found")


class RetryNotAllowedError(SourceEventError):
    """The event is not in Error status or has exhausted its attempts."""

    code: str = "RETRY_NOT_ALLOWED"

    def __init__(self, source_id: str, status: str, attempts: int):
        self.status = status
        self.attempts = attempts
        super().__init__(
            source_id, f"retry not allowed (status={status}, attempts={attempts})"
        )


# Concurrency-related exceptions


class ConcurrencyError(RevRecError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class VersionConflictError(ConcurrencyError):
    """The contract version changed between read and write."""

    code: str = "VERSION_CONFLICT"

    def __init__(
        self,
        contract_number: str,
        expected_version: int,
        actual_version: int | None,
    ):
        self.contract_number = contract_number
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Version conflict on contract {contract_number}: expected "
            f"v{expected_version}, found v{actual_version}"
        )


# Audit-related exceptions


class AuditError(RevRecError):
    """Base exception for audit errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {audit_event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


# Immutability-related exceptions


class ImmutabilityError(RevRecError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )

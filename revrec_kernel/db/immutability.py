"""
ORM-Level Immutability Enforcement.

Revenue history must be tamper-proof: a posted recognition entry is never
edited, only offset by a later Catchup/Adjustment/Reversal entry, and a
superseded contract version stays exactly as it was when it was replaced.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below inspect attribute history and raise before
anything is written:

    session.flush()
         |
         v
    [before_update / before_delete / before_insert]
         |--> _check_*() --> ScheduleImmutableViolation / ImmutabilityViolationError
         v
    SQL sent to database (only if checks pass)

Entity                    | When Immutable                         | Error
--------------------------|----------------------------------------|---------------------------
RecognitionScheduleEntry  | status Posted or Reversed              | ScheduleImmutableViolation
AuditEvent                | always                                 | ImmutabilityViolationError
PostableEntry             | always                                 | ImmutabilityViolationError
RevenueContract           | Superseded/Cancelled: every field;     | ImmutabilityViolationError
                          | Active: financial fields               |
PerformanceObligation     | financial fields once allocated        | ImmutabilityViolationError
SSPLine                   | price fields once used by allocation   | SSPLineImmutableError
Period                    | PermanentlyClosed                      | PeriodImmutableError

updated_at / updated_by_id are audit metadata and may always change.
"""

from sqlalchemy import event, inspect, text
from sqlalchemy.orm.attributes import get_history

from revrec_kernel.db.base import AUDIT_METADATA_FIELDS
from revrec_kernel.exceptions import (
    ImmutabilityViolationError,
    PeriodImmutableError,
    ScheduleImmutableViolation,
    SSPLineImmutableError,
)
from revrec_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _previous_value(target, attr: str):
    """Value of ``attr`` as it stood before the pending change, if known."""
    history = get_history(target, attr)
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return getattr(target, attr)


def _changed_fields(target, fields: frozenset[str] | None = None) -> list[str]:
    """Names of attributes with pending changes, ignoring audit metadata."""
    changed = []
    for attr in inspect(target).attrs:
        if attr.key in AUDIT_METADATA_FIELDS:
            continue
        if fields is not None and attr.key not in fields:
            continue
        if attr.history.has_changes():
            changed.append(attr.key)
    return changed


def _log_blocked(entity_type: str, entity_id, operation: str, fields=None) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "fields": fields,
        },
    )


# =============================================================================
# Recognition schedule entries
# =============================================================================


def _check_schedule_entry_immutability(mapper, connection, target):
    """
    Posted and Reversed entries are frozen.

    Scheduled -> Posted (the sweep) and Scheduled -> Reversed (a replaced
    future entry) are allowed because the previous status was Scheduled.
    """
    from revrec_kernel.models.schedule import EntryStatus

    previous_status = _previous_value(target, "status")
    if previous_status == EntryStatus.SCHEDULED:
        return

    changed = _changed_fields(target)
    if changed:
        _log_blocked("RecognitionScheduleEntry", target.id, "UPDATE", changed)
        raise ScheduleImmutableViolation(
            entry_id=str(target.id),
            reason=f"cannot modify {', '.join(changed)} on a {previous_status.value} entry",
        )


def _check_schedule_entry_delete(mapper, connection, target):
    from revrec_kernel.models.schedule import EntryStatus

    if target.status != EntryStatus.SCHEDULED:
        _log_blocked("RecognitionScheduleEntry", target.id, "DELETE")
        raise ScheduleImmutableViolation(
            entry_id=str(target.id),
            reason=f"{target.status.value} entries cannot be deleted",
        )


def _check_schedule_entry_insert(mapper, connection, target):
    """
    No new entry may be bucketed into a PermanentlyClosed period.

    Entries carried onto a successor obligation restate history that was
    already posted there, so they are exempt.
    """
    if target.carried_from_id is not None:
        return
    status = connection.execute(
        text("SELECT status FROM periods WHERE id = :period_id"),
        {"period_id": str(target.period_id)},
    ).scalar()
    if status == "PermanentlyClosed":
        _log_blocked("RecognitionScheduleEntry", target.id, "INSERT")
        raise ImmutabilityViolationError(
            entity_type="RecognitionScheduleEntry",
            entity_id=str(target.id),
            reason="period is permanently closed",
        )


# =============================================================================
# Append-only records
# =============================================================================


def _always_immutable(entity_type: str):
    def _check_update(mapper, connection, target):
        changed = _changed_fields(target)
        if changed:
            _log_blocked(entity_type, target.id, "UPDATE", changed)
            raise ImmutabilityViolationError(
                entity_type=entity_type,
                entity_id=str(target.id),
                reason=f"{entity_type} records are append-only",
            )

    def _check_delete(mapper, connection, target):
        _log_blocked(entity_type, target.id, "DELETE")
        raise ImmutabilityViolationError(
            entity_type=entity_type,
            entity_id=str(target.id),
            reason=f"{entity_type} records cannot be deleted",
        )

    return _check_update, _check_delete


_check_audit_event_update, _check_audit_event_delete = _always_immutable("AuditEvent")
_check_postable_entry_update, _check_postable_entry_delete = _always_immutable("PostableEntry")


# =============================================================================
# Contracts and obligations
# =============================================================================

CONTRACT_FINANCIAL_FIELDS = frozenset({
    "contract_number",
    "version_number",
    "customer_id",
    "ledger_id",
    "currency",
    "total_transaction_price",
    "total_allocated_price",
    "effective_date",
    "previous_version_id",
})

OBLIGATION_FINANCIAL_FIELDS = frozenset({
    "contract_id",
    "line_number",
    "item_id",
    "quantity",
    "observable_price",
    "list_price",
    "standalone_selling_price",
    "estimated_standalone_value",
    "allocated_price",
    "recognition_method",
    "recognition_start",
    "recognition_end",
    "usage_rate",
    "ssp_line_id",
    "predecessor_id",
})


def _check_contract_immutability(mapper, connection, target):
    """
    Superseded and Cancelled versions are frozen; Active versions keep their
    financial fields but may move to Superseded.
    """
    from revrec_kernel.models.contract import ContractStatus

    previous_status = _previous_value(target, "status")

    if previous_status in (ContractStatus.SUPERSEDED, ContractStatus.CANCELLED):
        changed = _changed_fields(target)
    elif previous_status == ContractStatus.ACTIVE:
        changed = _changed_fields(target, CONTRACT_FINANCIAL_FIELDS)
    else:
        return

    if changed:
        _log_blocked("RevenueContract", target.id, "UPDATE", changed)
        raise ImmutabilityViolationError(
            entity_type="RevenueContract",
            entity_id=str(target.id),
            reason=(
                f"cannot modify {', '.join(changed)} on a {previous_status.value} "
                "contract version; create a new version instead"
            ),
        )


def _check_obligation_immutability(mapper, connection, target):
    from revrec_kernel.models.contract import ObligationStatus

    if _previous_value(target, "status") == ObligationStatus.UNALLOCATED:
        return

    changed = _changed_fields(target, OBLIGATION_FINANCIAL_FIELDS)
    if changed:
        _log_blocked("PerformanceObligation", target.id, "UPDATE", changed)
        raise ImmutabilityViolationError(
            entity_type="PerformanceObligation",
            entity_id=str(target.id),
            reason=f"cannot modify {', '.join(changed)} on an allocated obligation",
        )


# =============================================================================
# SSP lines
# =============================================================================

SSP_LINE_PRICE_FIELDS = frozenset({
    "book_id",
    "item_id",
    "ssp_value",
    "effective_from",
    "min_quantity",
    "max_quantity",
    "region",
})


def _ssp_line_is_referenced(connection, line_id: str) -> bool:
    result = connection.execute(
        text("""
            SELECT EXISTS (
                SELECT 1 FROM performance_obligations
                WHERE ssp_line_id = :line_id
                AND status <> 'Unallocated'
            )
        """),
        {"line_id": line_id},
    )
    return bool(result.scalar())


def _check_ssp_line_immutability(mapper, connection, target):
    changed = _changed_fields(target, SSP_LINE_PRICE_FIELDS)
    if changed and _ssp_line_is_referenced(connection, str(target.id)):
        _log_blocked("SSPLine", target.id, "UPDATE", changed)
        raise SSPLineImmutableError(line_id=str(target.id))


# =============================================================================
# Periods
# =============================================================================


def _check_period_immutability(mapper, connection, target):
    from revrec_kernel.models.period import PeriodStatus

    if _previous_value(target, "status") != PeriodStatus.PERMANENTLY_CLOSED:
        return
    changed = _changed_fields(target)
    if changed:
        _log_blocked("Period", target.id, "UPDATE", changed)
        raise PeriodImmutableError(period_name=target.period_name, operation="modify")


def _check_period_delete(mapper, connection, target):
    from revrec_kernel.models.period import PeriodStatus

    if target.status != PeriodStatus.NEVER_OPENED:
        _log_blocked("Period", target.id, "DELETE")
        raise ImmutabilityViolationError(
            entity_type="Period",
            entity_id=str(target.id),
            reason=f"{target.status.value} periods cannot be deleted",
        )


# =============================================================================
# Registration
# =============================================================================


def _listener_table():
    from revrec_kernel.models.audit_event import AuditEvent
    from revrec_kernel.models.contract import PerformanceObligation, RevenueContract
    from revrec_kernel.models.period import Period
    from revrec_kernel.models.postable_entry import PostableEntry
    from revrec_kernel.models.schedule import RecognitionScheduleEntry
    from revrec_kernel.models.ssp import SSPLine

    return (
        (RecognitionScheduleEntry, "before_update", _check_schedule_entry_immutability),
        (RecognitionScheduleEntry, "before_delete", _check_schedule_entry_delete),
        (RecognitionScheduleEntry, "before_insert", _check_schedule_entry_insert),
        (AuditEvent, "before_update", _check_audit_event_update),
        (AuditEvent, "before_delete", _check_audit_event_delete),
        (PostableEntry, "before_update", _check_postable_entry_update),
        (PostableEntry, "before_delete", _check_postable_entry_delete),
        (RevenueContract, "before_update", _check_contract_immutability),
        (PerformanceObligation, "before_update", _check_obligation_immutability),
        (SSPLine, "before_update", _check_ssp_line_immutability),
        (Period, "before_update", _check_period_immutability),
        (Period, "before_delete", _check_period_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call once during application start-up, after models are importable and
    before any database work begins.  Safe to call more than once.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that must violate the rules on purpose.
    """
    for target, event_name, listener_fn in _listener_table():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)

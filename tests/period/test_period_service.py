"""
Period lifecycle tests.

Verifies:
- Periods in a ledger never overlap
- Forward transitions NeverOpened -> Future -> Open -> Closed -> PermanentlyClosed
- The audited reopen (Closed -> Open) and its guards
- PermanentlyClosed periods are immutable, even through the ORM
"""

from datetime import date
from uuid import uuid4

import pytest

from revrec_kernel.exceptions import (
    ImmutabilityViolationError,
    PeriodImmutableError,
    PeriodNotFoundError,
    PeriodOverlapError,
    PeriodTransitionError,
)
from revrec_kernel.models.audit_event import AuditAction
from revrec_kernel.models.period import Period, PeriodStatus

LEDGER = "LEDGER-US"


@pytest.fixture
def january(period_service, test_actor_id):
    return period_service.create_period(
        LEDGER, "2024-01", date(2024, 1, 1), date(2024, 1, 31), test_actor_id
    )


def walk_to_closed(period_service, period_id, actor_id):
    period_service.mark_future(period_id, actor_id)
    period_service.open_period(period_id, actor_id)
    return period_service.mark_closed(period_id, actor_id)


class TestCreation:
    def test_new_period_never_opened(self, january):
        assert january.status == PeriodStatus.NEVER_OPENED.value
        assert january.reopen_count == 0

    def test_monthly_periods(self, period_service, test_actor_id):
        periods = period_service.create_monthly_periods(LEDGER, 2024, test_actor_id)

        assert [p.period_name for p in periods][:3] == ["2024-01", "2024-02", "2024-03"]
        assert len(periods) == 12
        assert periods[1].end_date == date(2024, 2, 29)
        assert periods[-1].end_date == date(2024, 12, 31)

    def test_overlap_rejected(self, period_service, january, test_actor_id):
        with pytest.raises(PeriodOverlapError) as exc_info:
            period_service.create_period(
                LEDGER, "2024-01b", date(2024, 1, 15), date(2024, 2, 14), test_actor_id
            )

        assert exc_info.value.code == "PERIOD_OVERLAP"

    def test_same_dates_in_another_ledger(self, period_service, january, test_actor_id):
        other = period_service.create_period(
            "LEDGER-UK", "2024-01", date(2024, 1, 1), date(2024, 1, 31), test_actor_id
        )

        assert other.ledger_id == "LEDGER-UK"

    def test_inverted_range_rejected(self, period_service, test_actor_id):
        with pytest.raises(ValueError):
            period_service.create_period(
                LEDGER, "bad", date(2024, 2, 1), date(2024, 1, 1), test_actor_id
            )

    def test_cannot_create_closed(self, period_service, test_actor_id):
        with pytest.raises(ValueError):
            period_service.create_period(
                LEDGER, "2024-01", date(2024, 1, 1), date(2024, 1, 31), test_actor_id,
                status=PeriodStatus.CLOSED,
            )


class TestTransitions:
    def test_forward_lifecycle(self, period_service, january, test_actor_id, deterministic_clock):
        closed = walk_to_closed(period_service, january.id, test_actor_id)

        assert closed.status == PeriodStatus.CLOSED.value
        assert closed.closed_by_id == test_actor_id
        assert closed.closed_at == deterministic_clock.now()

        final = period_service.permanently_close(january.id, test_actor_id)
        assert final.status == PeriodStatus.PERMANENTLY_CLOSED.value

    def test_skipping_a_state_rejected(self, period_service, january, test_actor_id):
        with pytest.raises(PeriodTransitionError):
            period_service.open_period(january.id, test_actor_id)

    def test_permanently_closed_is_terminal(self, period_service, january, test_actor_id):
        walk_to_closed(period_service, january.id, test_actor_id)
        period_service.permanently_close(january.id, test_actor_id)

        with pytest.raises(PeriodImmutableError):
            period_service.mark_closed(january.id, test_actor_id)
        with pytest.raises(PeriodImmutableError):
            period_service.reopen(january.id, test_actor_id, reason="audit adjustment")

    def test_transitions_are_audited(self, period_service, auditor_service, january, test_actor_id):
        walk_to_closed(period_service, january.id, test_actor_id)

        trace = auditor_service.get_trace("Period", january.id)
        assert trace.actions == (
            AuditAction.PERIOD_CREATED,
            AuditAction.PERIOD_TRANSITIONED,
            AuditAction.PERIOD_TRANSITIONED,
            AuditAction.PERIOD_TRANSITIONED,
        )
        assert trace.entries[-1].payload["to_status"] == PeriodStatus.CLOSED.value


class TestReopen:
    def test_reopen_closed_period(self, period_service, auditor_service, january, test_actor_id):
        walk_to_closed(period_service, january.id, test_actor_id)

        reopened = period_service.reopen(january.id, test_actor_id, reason="late invoice")

        assert reopened.status == PeriodStatus.OPEN.value
        assert reopened.reopen_count == 1
        assert reopened.closed_at is None
        trace = auditor_service.get_trace("Period", january.id)
        assert trace.actions[-1] == AuditAction.PERIOD_REOPENED
        assert trace.entries[-1].payload["reason"] == "late invoice"

    def test_reopen_requires_reason(self, period_service, january, test_actor_id):
        walk_to_closed(period_service, january.id, test_actor_id)

        with pytest.raises(ValueError):
            period_service.reopen(january.id, test_actor_id, reason="  ")

    def test_reopen_open_period_rejected(self, period_service, january, test_actor_id):
        period_service.mark_future(january.id, test_actor_id)
        period_service.open_period(january.id, test_actor_id)

        with pytest.raises(PeriodTransitionError):
            period_service.reopen(january.id, test_actor_id, reason="no-op")


class TestImmutability:
    def test_permanently_closed_row_cannot_be_edited(
        self, session, period_service, january, test_actor_id
    ):
        walk_to_closed(period_service, january.id, test_actor_id)
        period_service.permanently_close(january.id, test_actor_id)

        period = session.get(Period, january.id)
        period.end_date = date(2024, 2, 15)
        with pytest.raises(PeriodImmutableError):
            session.flush()

    def test_used_period_cannot_be_deleted(self, session, period_service, january, test_actor_id):
        period_service.mark_future(january.id, test_actor_id)
        period = session.get(Period, january.id)
        session.delete(period)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestReads:
    def test_period_for_date(self, period_service, test_actor_id):
        period_service.create_monthly_periods(LEDGER, 2024, test_actor_id)

        found = period_service.get_period_for_date(LEDGER, date(2024, 2, 29))
        missing = period_service.get_period_for_date(LEDGER, date(2025, 1, 1))

        assert found.period_name == "2024-02"
        assert missing is None

    def test_list_by_status(self, period_service, test_actor_id):
        periods = period_service.create_monthly_periods(LEDGER, 2024, test_actor_id)
        period_service.mark_future(periods[0].id, test_actor_id)

        future = period_service.list_periods(LEDGER, status=PeriodStatus.FUTURE)

        assert [p.period_name for p in future] == ["2024-01"]
        assert len(period_service.list_periods(LEDGER)) == 12

    def test_unknown_period(self, period_service):
        with pytest.raises(PeriodNotFoundError):
            period_service.get_period(uuid4())

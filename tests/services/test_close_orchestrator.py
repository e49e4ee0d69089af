"""
Tests for CloseOrchestrator.

Covers:
- Sweep posting, postable entry emission and idempotency
- Billed amount and unbilled accrual
- Superseded contract versions are never swept
- Close readiness: every exception type blocks the close
- Close transitions and audit
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from revrec_config.schema import SweepConfig
from revrec_kernel.exceptions import PeriodNotOpenError, PeriodNotReadyError
from revrec_kernel.models.audit_event import AuditAction
from revrec_kernel.models.period import PeriodStatus
from revrec_services._close_types import CloseExceptionType
from revrec_services.close_orchestrator import CloseOrchestrator
from revrec_services.contract_service import ContractModification, ObligationDraft

LICENSE = Decimal("50000.00")
# 70,000 over 366 days, 31 of them in January
SUBSCRIPTION_JANUARY = Decimal("5928.96")


@pytest.fixture
def booked(make_contract, default_book, monthly_periods):
    """Open 2024 periods and one allocated licence + subscription contract."""
    periods = monthly_periods(2024)
    contract = make_contract(
        "120000.00",
        [ObligationDraft(1, "LIC-CORE"), ObligationDraft(2, "SUB-CLOUD")],
    )
    return periods, contract


class TestSweep:
    def test_posts_due_entries(self, booked, close_orchestrator, test_actor_id):
        periods, contract = booked

        result = close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)

        assert result.period_name == "2024-01"
        assert result.posted_count == 2
        assert result.posted_amount == LICENSE + SUBSCRIPTION_JANUARY
        assert result.total_recognized == result.posted_amount
        assert {record["contractId"] for record in result.postable_entries} == {str(contract.id)}

    def test_sweep_is_idempotent(self, booked, close_orchestrator, test_actor_id):
        periods, _ = booked
        first = close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)

        second = close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)

        assert second.posted_count == 0
        assert second.postable_entries == ()
        assert second.total_recognized == first.total_recognized
        assert len(close_orchestrator.pending_postable_entries(periods["2024-01"].id)) == 2

    def test_later_entries_stay_scheduled(self, booked, close_orchestrator, scheduler, test_actor_id):
        periods, contract = booked

        close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)

        entries = scheduler.entries_for_obligation(contract.obligation_for_line(2).id)
        posted = [e for e in entries if e.status == "Posted"]
        assert [e.schedule_date for e in posted] == [date(2024, 1, 31)]
        assert posted[0].posted_period_id == periods["2024-01"].id

    def test_sweep_catches_up_earlier_open_periods(self, booked, close_orchestrator, test_actor_id):
        periods, _ = booked

        result = close_orchestrator.sweep(periods["2024-03"].id, test_actor_id)

        # Licence plus January, February and March of the subscription
        assert result.posted_count == 4

    def test_small_batches(
        self,
        booked,
        session,
        period_service,
        auditor_service,
        revrec_config,
        deterministic_clock,
        test_actor_id,
    ):
        periods, _ = booked
        orchestrator = CloseOrchestrator(
            session,
            period_service,
            auditor_service,
            replace(revrec_config, sweep=SweepConfig(batch_size=1)),
            deterministic_clock,
        )

        result = orchestrator.sweep(periods["2024-03"].id, test_actor_id)

        assert result.posted_count == 4

    def test_billing_and_unbilled_accrual(
        self, booked, intake_service, close_orchestrator, source_event, test_actor_id
    ):
        periods, contract = booked
        billed = intake_service.ingest(
            source_event(
                "Billing",
                "INV-1001",
                amount="60000.00",
                eventDate="2024-01-20",
                referenceNumber=contract.contract_number,
            ),
            test_actor_id,
        )
        assert billed.is_success

        result = close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)

        assert result.billed_amount == Decimal("60000.00")
        assert result.unbilled_accrual == LICENSE + SUBSCRIPTION_JANUARY - Decimal("60000.00")

    def test_superseded_versions_not_swept(
        self, booked, contract_service, close_orchestrator, test_actor_id
    ):
        periods, v1 = booked
        v2 = contract_service.modify_contract(
            v1.contract_number,
            1,
            ContractModification(
                total_transaction_price=Decimal("110000.00"),
                effective_date=date(2024, 1, 1),
                lines=(ObligationDraft(1, "LIC-CORE"), ObligationDraft(2, "SUB-CLOUD")),
                reason="Discount before go-live",
            ),
            test_actor_id,
        )

        result = close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)

        assert result.posted_count == 2
        assert {record["contractId"] for record in result.postable_entries} == {str(v2.id)}

    def test_sweep_requires_open_period(self, period_service, close_orchestrator, test_actor_id):
        period = period_service.create_period(
            "LEDGER-US", "2024-01", date(2024, 1, 1), date(2024, 1, 31), test_actor_id
        )

        with pytest.raises(PeriodNotOpenError):
            close_orchestrator.sweep(period.id, test_actor_id)

    def test_sweep_is_audited(self, booked, close_orchestrator, auditor_service, test_actor_id):
        periods, _ = booked

        close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)

        trace = auditor_service.get_trace("Period", periods["2024-01"].id)
        assert trace.actions[-1] == AuditAction.PERIOD_SWEPT
        assert trace.entries[-1].payload["posted_count"] == 2


class TestCanClose:
    def test_unswept_entries_block(self, booked, close_orchestrator):
        periods, _ = booked

        check = close_orchestrator.can_close(periods["2024-01"].id)

        assert not check.allowed
        unswept = check.of_type(CloseExceptionType.UNSWEPT_ENTRY)
        assert len(unswept) == 2
        assert sum(e.amount for e in unswept) == LICENSE + SUBSCRIPTION_JANUARY

    def test_clean_after_sweep(self, booked, close_orchestrator, test_actor_id):
        periods, _ = booked
        close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)

        check = close_orchestrator.can_close(periods["2024-01"].id)

        assert check.allowed
        assert check.exceptions == ()

    def test_draft_contract_blocks(self, booked, make_contract, close_orchestrator, test_actor_id):
        periods, _ = booked
        close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)
        draft = make_contract(
            "50000.00", [ObligationDraft(1, "LIC-CORE")], effective_date=date(2024, 1, 10),
            allocate=False,
        )

        check = close_orchestrator.can_close(periods["2024-01"].id)

        [blocking] = check.of_type(CloseExceptionType.INCOMPLETE_ALLOCATION)
        assert blocking.reference_id == draft.contract_number
        assert blocking.amount == Decimal("50000.00")

    def test_pending_and_failed_events_block(
        self, booked, intake_service, close_orchestrator, source_event, test_actor_id
    ):
        periods, contract = booked
        close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)
        intake_service.ingest(
            source_event(
                "Booking",
                "SO-2001",
                amount="50000.00",
                eventDate="2024-01-15",
                lines=[{"lineNumber": 1, "itemId": "LIC-CORE"}],
            ),
            test_actor_id,
            process=False,
        )
        failed = intake_service.ingest(
            source_event(
                "Usage",
                "USE-1",
                amount="10.00",
                eventDate="2024-01-20",
                referenceNumber=contract.contract_number,
                lineNumber=1,
            ),
            test_actor_id,
        )
        assert failed.status.value == "Error"

        check = close_orchestrator.can_close(periods["2024-01"].id)

        [pending] = check.of_type(CloseExceptionType.SOURCE_EVENT_PENDING)
        [errored] = check.of_type(CloseExceptionType.SOURCE_EVENT_ERROR)
        assert pending.reference_id == "CRM/SO-2001"
        assert errored.reference_id == "CRM/USE-1"
        assert errored.detail.startswith("INVALID_RECOGNITION_PLAN")

    def test_events_after_period_end_do_not_block(
        self, booked, intake_service, close_orchestrator, source_event, test_actor_id
    ):
        periods, _ = booked
        close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)
        intake_service.ingest(
            source_event(
                "Booking",
                "SO-3001",
                amount="50000.00",
                eventDate="2024-02-03",
                lines=[{"lineNumber": 1, "itemId": "LIC-CORE"}],
            ),
            test_actor_id,
            process=False,
        )

        assert close_orchestrator.can_close(periods["2024-01"].id).allowed

    def test_period_not_open(self, period_service, close_orchestrator, test_actor_id):
        period = period_service.create_period(
            "LEDGER-US", "2024-01", date(2024, 1, 1), date(2024, 1, 31), test_actor_id
        )

        check = close_orchestrator.can_close(period.id)

        assert [e.exception_type for e in check.exceptions] == [
            CloseExceptionType.PERIOD_NOT_OPEN
        ]


class TestClose:
    def test_close_after_sweep(
        self, booked, close_orchestrator, auditor_service, deterministic_clock, test_actor_id
    ):
        periods, _ = booked
        close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)

        result = close_orchestrator.close(periods["2024-01"].id, test_actor_id)

        assert result.status == PeriodStatus.CLOSED.value
        assert result.closed_by_id == test_actor_id
        assert result.closed_at == deterministic_clock.now()
        trace = auditor_service.get_trace("Period", periods["2024-01"].id)
        assert trace.actions[-3:] == (
            AuditAction.PERIOD_SWEPT,
            AuditAction.PERIOD_TRANSITIONED,
            AuditAction.PERIOD_CLOSED,
        )

    def test_close_blocked_with_exceptions(
        self, booked, close_orchestrator, period_service, test_actor_id
    ):
        periods, _ = booked

        with pytest.raises(PeriodNotReadyError) as exc_info:
            close_orchestrator.close(periods["2024-01"].id, test_actor_id)

        assert exc_info.value.code == "PERIOD_NOT_READY"
        assert len(exc_info.value.exceptions) == 2
        assert period_service.get_period(periods["2024-01"].id).status == PeriodStatus.OPEN.value

    def test_closed_period_cannot_be_swept(self, booked, close_orchestrator, test_actor_id):
        periods, _ = booked
        close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)
        close_orchestrator.close(periods["2024-01"].id, test_actor_id)

        with pytest.raises(PeriodNotOpenError):
            close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)

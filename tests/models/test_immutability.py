"""
ORM immutability tests.

Verifies:
- Posted schedule entries are frozen and cannot be deleted
- Superseded contract versions are frozen; Active versions keep their
  financial fields
- Allocated obligations, used SSP lines and postable entries are frozen
- No new entry can land in a PermanentlyClosed period
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from revrec_kernel.exceptions import (
    ImmutabilityViolationError,
    ScheduleImmutableViolation,
    SSPLineImmutableError,
)
from revrec_kernel.models.contract import PerformanceObligation, RevenueContract
from revrec_kernel.models.postable_entry import PostableEntry
from revrec_kernel.models.schedule import EntryStatus, RecognitionScheduleEntry
from revrec_kernel.models.ssp import SSPLine
from revrec_services.contract_service import ObligationDraft


@pytest.fixture
def periods(monthly_periods, default_book):
    return monthly_periods(2024)


@pytest.fixture
def swept(periods, make_contract, close_orchestrator, test_actor_id):
    """A licence contract whose single entry has been posted in January."""
    contract = make_contract("50000.00", [ObligationDraft(1, "LIC-CORE")])
    close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)
    return contract


def _entries(session, contract_id, status=None):
    query = select(RecognitionScheduleEntry).where(
        RecognitionScheduleEntry.contract_id == contract_id
    )
    if status is not None:
        query = query.where(RecognitionScheduleEntry.status == status)
    return session.execute(query).scalars().all()


class TestScheduleEntries:
    def test_posted_entry_cannot_be_edited(self, session, swept):
        [entry] = _entries(session, swept.id, EntryStatus.POSTED)
        entry.amount = Decimal("1.00")

        with pytest.raises(ScheduleImmutableViolation) as exc_info:
            session.flush()

        assert "amount" in str(exc_info.value)

    def test_posted_entry_cannot_be_deleted(self, session, swept):
        [entry] = _entries(session, swept.id, EntryStatus.POSTED)
        session.delete(entry)

        with pytest.raises(ScheduleImmutableViolation):
            session.flush()

    def test_scheduled_entry_can_change(self, session, periods, make_contract):
        contract = make_contract("12000.00", [ObligationDraft(1, "SUPPORT-STD")])
        entry = _entries(session, contract.id, EntryStatus.SCHEDULED)[0]

        entry.description = "re-described"
        session.flush()

        assert entry.description == "re-described"

    def test_no_inserts_into_permanently_closed_period(
        self, session, period_service, make_contract, default_book, test_actor_id
    ):
        period = period_service.create_period(
            "LEDGER-US", "2023-12", date(2023, 12, 1), date(2023, 12, 31), test_actor_id
        )
        period_service.mark_future(period.id, test_actor_id)
        period_service.open_period(period.id, test_actor_id)
        period_service.mark_closed(period.id, test_actor_id)
        period_service.permanently_close(period.id, test_actor_id)
        contract = make_contract(
            "50000.00", [ObligationDraft(1, "LIC-CORE")], allocate=False
        )

        session.add(
            RecognitionScheduleEntry(
                obligation_id=contract.obligation_for_line(1).id,
                contract_id=contract.id,
                period_id=period.id,
                schedule_date=date(2023, 12, 15),
                amount=Decimal("100.00"),
                created_by_id=test_actor_id,
            )
        )

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestContracts:
    def test_superseded_version_frozen(self, session, swept, contract_service, test_actor_id):
        contract_service.cancel_contract(swept.contract_number, 1, "Void", test_actor_id)
        superseded = session.get(RevenueContract, swept.id)

        superseded.customer_id = "CUST-999"

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "RevenueContract"

    def test_active_financial_fields_frozen(self, session, swept):
        active = session.get(RevenueContract, swept.id)
        active.total_transaction_price = Decimal("1.00")

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_active_non_financial_field_allowed(self, session, swept):
        active = session.get(RevenueContract, swept.id)
        active.sign_date = date(2023, 12, 20)

        session.flush()

        assert active.sign_date == date(2023, 12, 20)

    def test_draft_is_editable(self, session, periods, make_contract):
        draft = make_contract("50000.00", [ObligationDraft(1, "LIC-CORE")], allocate=False)
        row = session.get(RevenueContract, draft.id)

        row.total_transaction_price = Decimal("45000.00")
        session.flush()

        assert row.total_transaction_price == Decimal("45000.00")


class TestObligationsAndCatalog:
    def test_allocated_price_frozen(self, session, swept):
        obligation = session.get(PerformanceObligation, swept.obligation_for_line(1).id)
        obligation.allocated_price = Decimal("1.00")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "PerformanceObligation"

    def test_used_ssp_line_frozen(self, session, swept):
        obligation = session.get(PerformanceObligation, swept.obligation_for_line(1).id)
        line = session.get(SSPLine, obligation.ssp_line_id)
        line.ssp_value = Decimal("1.00")

        with pytest.raises(SSPLineImmutableError):
            session.flush()


class TestPostableEntries:
    def test_postable_entry_frozen(self, session, swept):
        record = session.execute(
            select(PostableEntry).where(PostableEntry.contract_id == swept.id)
        ).scalar_one()
        record.amount = Decimal("1.00")

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_postable_entry_cannot_be_deleted(self, session, swept):
        record = session.execute(
            select(PostableEntry).where(PostableEntry.contract_id == swept.id)
        ).scalar_one()
        session.delete(record)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

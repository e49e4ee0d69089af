"""
Deferred revenue, waterfall and contract read tests.

Verifies:
- Deferred revenue = total allocated - recognized to date, per contract and
  in total, counting only live contract versions.
- The waterfall splits each period into still-scheduled and posted revenue.
- Contract detail and list reads honour version and status filters.
"""

from datetime import date
from decimal import Decimal

import pytest

from revrec_kernel.models.contract import ContractStatus
from revrec_services.contract_service import ContractModification, ObligationDraft

JANUARY = Decimal("55928.96")
FEBRUARY_SUBSCRIPTION = Decimal("5546.45")
MARCH_SUBSCRIPTION = Decimal("5928.96")


@pytest.fixture
def periods(monthly_periods, default_book):
    return monthly_periods(2024)


@pytest.fixture
def contract(periods, make_contract):
    return make_contract(
        "120000.00",
        [ObligationDraft(1, "LIC-CORE"), ObligationDraft(2, "SUB-CLOUD")],
    )


class TestDeferredRevenue:
    def test_nothing_recognized_before_sweep(self, contract, revenue_selector):
        balance = revenue_selector.deferred_revenue(date(2024, 1, 31))

        assert balance.total_allocated == Decimal("120000.00")
        assert balance.recognized_to_date == Decimal("0")
        assert balance.deferred == Decimal("120000.00")

    def test_recognized_after_sweep(
        self, contract, periods, close_orchestrator, revenue_selector, test_actor_id
    ):
        close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)

        balance = revenue_selector.deferred_revenue(date(2024, 1, 31), ledger_id="LEDGER-US")

        [row] = balance.contracts
        assert row.contract_number == contract.contract_number
        assert row.recognized_to_date == JANUARY
        assert row.deferred == Decimal("120000.00") - JANUARY
        assert balance.deferred == row.deferred

    def test_as_of_date_excludes_later_contracts_and_entries(
        self, contract, periods, make_contract, close_orchestrator, revenue_selector, test_actor_id
    ):
        make_contract(
            "50000.00", [ObligationDraft(1, "LIC-CORE")], effective_date=date(2024, 3, 1)
        )
        close_orchestrator.sweep(periods["2024-03"].id, test_actor_id)

        january = revenue_selector.deferred_revenue(date(2024, 1, 31))
        march = revenue_selector.deferred_revenue(date(2024, 3, 31))

        assert [c.contract_number for c in january.contracts] == [contract.contract_number]
        assert january.recognized_to_date == JANUARY
        assert len(march.contracts) == 2
        assert march.recognized_to_date == (
            JANUARY + FEBRUARY_SUBSCRIPTION + MARCH_SUBSCRIPTION + Decimal("50000.00")
        )

    def test_only_current_version_counts(
        self,
        contract,
        periods,
        contract_service,
        close_orchestrator,
        revenue_selector,
        test_actor_id,
    ):
        close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)
        contract_service.modify_contract(
            contract.contract_number,
            1,
            ContractModification(
                total_transaction_price=Decimal("110000.00"),
                effective_date=date(2024, 2, 1),
                lines=(ObligationDraft(1, "LIC-CORE"), ObligationDraft(2, "SUB-CLOUD")),
                reason="Renegotiated",
            ),
            test_actor_id,
        )

        balance = revenue_selector.deferred_revenue(date(2024, 2, 29))

        [row] = balance.contracts
        assert row.version_number == 2
        assert row.total_allocated == Decimal("110000.00")
        # Posted history was carried onto version 2; the catch-up is not yet posted
        assert row.recognized_to_date == JANUARY

    def test_contract_kept_between_original_and_modification_dates(
        self,
        contract,
        periods,
        contract_service,
        close_orchestrator,
        revenue_selector,
        test_actor_id,
    ):
        close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)
        contract_service.modify_contract(
            contract.contract_number,
            1,
            ContractModification(
                total_transaction_price=Decimal("120000.00"),
                effective_date=date(2024, 7, 1),
                lines=(ObligationDraft(1, "LIC-CORE"), ObligationDraft(2, "SUB-CLOUD")),
                reason="Mid-year amendment",
            ),
            test_actor_id,
        )

        balance = revenue_selector.deferred_revenue(date(2024, 3, 31))

        [row] = balance.contracts
        assert row.contract_number == contract.contract_number
        assert row.version_number == 2
        assert row.recognized_to_date == JANUARY
        assert revenue_selector.deferred_revenue(date(2023, 12, 31)).contracts == ()

    def test_other_ledger_filtered(self, contract, revenue_selector):
        assert revenue_selector.deferred_revenue(date(2024, 1, 31), ledger_id="LEDGER-UK").contracts == ()


class TestWaterfall:
    def test_scheduled_by_period(self, contract, revenue_selector):
        rows = revenue_selector.revenue_waterfall("LEDGER-US", date(2024, 1, 1), date(2024, 3, 31))

        assert [r.period_name for r in rows] == ["2024-01", "2024-02", "2024-03"]
        assert [r.scheduled_amount for r in rows] == [
            JANUARY, FEBRUARY_SUBSCRIPTION, MARCH_SUBSCRIPTION
        ]
        assert all(r.posted_amount == Decimal("0") for r in rows)

    def test_posted_moves_out_of_scheduled(
        self, contract, periods, close_orchestrator, revenue_selector, test_actor_id
    ):
        close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)

        [january] = revenue_selector.revenue_waterfall(
            "LEDGER-US", date(2024, 1, 1), date(2024, 1, 31)
        )

        assert january.scheduled_amount == Decimal("0")
        assert january.posted_amount == JANUARY
        assert january.total_amount == JANUARY
        assert january.status == "Open"

    def test_full_year_sums_to_contract(self, contract, revenue_selector):
        rows = revenue_selector.revenue_waterfall("LEDGER-US", date(2024, 1, 1), date(2024, 12, 31))

        assert len(rows) == 12
        assert sum(r.total_amount for r in rows) == Decimal("120000.00")

    def test_no_periods(self, revenue_selector):
        assert revenue_selector.revenue_waterfall("LEDGER-US", date(2030, 1, 1), date(2030, 12, 31)) == []


class TestContractReads:
    def test_detail(self, contract, periods, close_orchestrator, revenue_selector, test_actor_id):
        close_orchestrator.sweep(periods["2024-01"].id, test_actor_id)

        detail = revenue_selector.contract_detail(contract.contract_number)

        assert detail.contract.id == contract.id
        assert len(detail.entries) == 13
        assert detail.recognized_to_date == JANUARY
        assert detail.scheduled_remaining == Decimal("120000.00") - JANUARY
        assert detail.deferred == Decimal("120000.00") - JANUARY

    def test_detail_unknown_contract(self, revenue_selector):
        assert revenue_selector.contract_detail("RC-NOPE") is None

    def test_detail_specific_version(
        self, contract, contract_service, revenue_selector, test_actor_id
    ):
        contract_service.cancel_contract(contract.contract_number, 1, "Void", test_actor_id)

        latest = revenue_selector.contract_detail(contract.contract_number)
        first = revenue_selector.contract_detail(contract.contract_number, version_number=1)

        assert latest.contract.version_number == 2
        assert latest.contract.status == ContractStatus.CANCELLED.value
        assert first.contract.status == ContractStatus.SUPERSEDED.value

    def test_list_contracts(self, contract, make_contract, contract_service, revenue_selector, test_actor_id):
        make_contract("50000.00", [ObligationDraft(1, "LIC-CORE")], allocate=False)
        contract_service.cancel_contract(contract.contract_number, 1, "Void", test_actor_id)

        current = revenue_selector.list_contracts()
        everything = revenue_selector.list_contracts(include_superseded=True)
        drafts = revenue_selector.list_contracts(status=ContractStatus.DRAFT)

        assert [(c.contract_number, c.version_number) for c in current] == [
            (contract.contract_number, 2),
            ("RC-0002", 1),
        ]
        assert len(everything) == 3
        assert [c.status for c in drafts] == [ContractStatus.DRAFT.value]

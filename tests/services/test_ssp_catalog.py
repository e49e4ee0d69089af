"""
Tests for SSPCatalogService.

Covers:
- Effective-dated resolution (latest line on or before the date)
- Quantity breakpoints and region-specific lines
- Default book selection (one per currency) and archived/inactive books
- Immutability of lines referenced by an allocation
"""

from datetime import date
from decimal import Decimal

import pytest

from revrec_kernel.exceptions import (
    SSPBookNotFoundError,
    SSPLineImmutableError,
    SSPNotFoundError,
)
from revrec_kernel.models.ssp import SSPBookStatus
from revrec_services.contract_service import ObligationDraft


class TestResolution:
    def test_latest_effective_line_wins(self, ssp_catalog, default_book, test_actor_id):
        line = ssp_catalog.list_lines(default_book.id, item_id="LIC-CORE")[0]
        ssp_catalog.supersede_line(
            line.id, Decimal("55000.00"), date(2024, 7, 1), test_actor_id
        )

        before = ssp_catalog.resolve_ssp("LIC-CORE", date(2024, 6, 30))
        after = ssp_catalog.resolve_ssp("LIC-CORE", date(2024, 7, 1))

        assert before.ssp_value == Decimal("50000.00")
        assert before.line_id == line.id
        assert after.ssp_value == Decimal("55000.00")
        assert after.line_id != line.id

    def test_date_before_any_line(self, ssp_catalog, default_book, test_actor_id):
        ssp_catalog.add_line(
            default_book.id, "NEW-ITEM", Decimal("10"), date(2024, 5, 1), test_actor_id
        )

        with pytest.raises(SSPNotFoundError) as exc_info:
            ssp_catalog.resolve_ssp("NEW-ITEM", date(2024, 4, 30))

        assert exc_info.value.code == "SSP_NOT_FOUND"

    def test_unknown_item(self, ssp_catalog, default_book):
        with pytest.raises(SSPNotFoundError):
            ssp_catalog.resolve_ssp("NO-SUCH-ITEM", date(2024, 3, 1))

    def test_quantity_breakpoints(self, ssp_catalog, default_book, test_actor_id):
        ssp_catalog.add_line(
            default_book.id, "SEAT", Decimal("100"), date(2024, 1, 1), test_actor_id,
            min_quantity=Decimal("0"), max_quantity=Decimal("99"),
        )
        ssp_catalog.add_line(
            default_book.id, "SEAT", Decimal("80"), date(2024, 1, 1), test_actor_id,
            min_quantity=Decimal("100"),
        )

        small = ssp_catalog.resolve_ssp("SEAT", date(2024, 2, 1), quantity=Decimal("10"))
        large = ssp_catalog.resolve_ssp("SEAT", date(2024, 2, 1), quantity=Decimal("250"))

        assert small.ssp_value == Decimal("100")
        assert large.ssp_value == Decimal("80")

    def test_region_line_preferred_for_matching_region(
        self, ssp_catalog, default_book, test_actor_id
    ):
        ssp_catalog.add_line(
            default_book.id, "LIC-CORE", Decimal("45000.00"), date(2024, 1, 1),
            test_actor_id, region="EMEA",
        )

        emea = ssp_catalog.resolve_ssp("LIC-CORE", date(2024, 2, 1), region="EMEA")
        apac = ssp_catalog.resolve_ssp("LIC-CORE", date(2024, 2, 1), region="APAC")

        assert emea.ssp_value == Decimal("45000.00")
        assert apac.ssp_value == Decimal("50000.00")

    def test_explicit_book(self, ssp_catalog, default_book, test_actor_id):
        partner = ssp_catalog.create_book(
            "Partner Book", "USD", date(2024, 1, 1), test_actor_id
        )
        ssp_catalog.add_line(
            partner.id, "LIC-CORE", Decimal("40000.00"), date(2024, 1, 1), test_actor_id
        )

        resolution = ssp_catalog.resolve_ssp("LIC-CORE", date(2024, 2, 1), book_id=partner.id)

        assert resolution.ssp_value == Decimal("40000.00")
        assert resolution.book_id == partner.id

    def test_book_in_another_currency_resolves_nothing(self, ssp_catalog, default_book):
        with pytest.raises(SSPNotFoundError):
            ssp_catalog.resolve_ssp(
                "LIC-CORE", date(2024, 2, 1), book_id=default_book.id, currency="EUR"
            )

        resolution = ssp_catalog.resolve_ssp("LIC-CORE", date(2024, 2, 1), currency="USD")
        assert resolution.currency == "USD"


class TestBooks:
    def test_only_one_default(self, ssp_catalog, default_book, test_actor_id):
        second = ssp_catalog.create_book(
            "2025 Price Book", "USD", date(2025, 1, 1), test_actor_id, is_default=True
        )

        assert ssp_catalog.get_default_book().id == second.id
        assert ssp_catalog.get_book(default_book.id).is_default is False

    def test_no_default_book(self, ssp_catalog):
        with pytest.raises(SSPBookNotFoundError):
            ssp_catalog.resolve_ssp("LIC-CORE", date(2024, 2, 1))

    def test_one_default_per_currency(self, ssp_catalog, default_book, test_actor_id):
        euro = ssp_catalog.create_book(
            "2024 EUR Price Book", "EUR", date(2024, 1, 1), test_actor_id, is_default=True
        )
        ssp_catalog.add_line(euro.id, "LIC-CORE", Decimal("46000.00"), date(2024, 1, 1), test_actor_id)

        assert ssp_catalog.get_book(default_book.id).is_default is True
        assert ssp_catalog.get_default_book("USD").id == default_book.id
        assert ssp_catalog.get_default_book("EUR").id == euro.id
        resolution = ssp_catalog.resolve_ssp("LIC-CORE", date(2024, 2, 1), currency="EUR")
        assert resolution.book_id == euro.id
        assert resolution.ssp_value == Decimal("46000.00")

    def test_no_default_book_for_currency(self, ssp_catalog, default_book):
        with pytest.raises(SSPBookNotFoundError):
            ssp_catalog.resolve_ssp("LIC-CORE", date(2024, 2, 1), currency="GBP")

    def test_archived_book_stops_resolving(self, ssp_catalog, default_book, test_actor_id):
        ssp_catalog.archive_book(default_book.id, test_actor_id)

        with pytest.raises(SSPNotFoundError):
            ssp_catalog.resolve_ssp("LIC-CORE", date(2024, 2, 1), book_id=default_book.id)

    def test_draft_book_resolves_after_activation(self, ssp_catalog, test_actor_id):
        book = ssp_catalog.create_book(
            "Draft Book", "USD", date(2024, 1, 1), test_actor_id, status=SSPBookStatus.DRAFT
        )
        ssp_catalog.add_line(book.id, "X", Decimal("5"), date(2024, 1, 1), test_actor_id)

        with pytest.raises(SSPNotFoundError):
            ssp_catalog.resolve_ssp("X", date(2024, 2, 1), book_id=book.id)

        ssp_catalog.activate_book(book.id, test_actor_id)
        assert ssp_catalog.resolve_ssp("X", date(2024, 2, 1), book_id=book.id).ssp_value == Decimal("5")

    def test_book_effective_window(self, ssp_catalog, test_actor_id):
        book = ssp_catalog.create_book(
            "H1 Book", "USD", date(2024, 1, 1), test_actor_id, effective_to=date(2024, 6, 30)
        )
        ssp_catalog.add_line(book.id, "X", Decimal("5"), date(2024, 1, 1), test_actor_id)

        with pytest.raises(SSPNotFoundError):
            ssp_catalog.resolve_ssp("X", date(2024, 7, 1), book_id=book.id)

    def test_inverted_book_window_rejected(self, ssp_catalog, test_actor_id):
        with pytest.raises(ValueError):
            ssp_catalog.create_book(
                "Bad", "USD", date(2024, 6, 1), test_actor_id, effective_to=date(2024, 1, 1)
            )


class TestLineMaintenance:
    def test_supersede_must_move_forward(self, ssp_catalog, default_book, test_actor_id):
        line = ssp_catalog.list_lines(default_book.id, item_id="LIC-CORE")[0]

        with pytest.raises(ValueError):
            ssp_catalog.supersede_line(line.id, Decimal("1"), date(2024, 1, 1), test_actor_id)

    def test_negative_price_rejected(self, ssp_catalog, default_book, test_actor_id):
        with pytest.raises(ValueError):
            ssp_catalog.add_line(
                default_book.id, "X", Decimal("-1"), date(2024, 1, 1), test_actor_id
            )

    def test_unreferenced_line_can_be_edited(self, ssp_catalog, default_book, test_actor_id):
        line = ssp_catalog.list_lines(default_book.id, item_id="SUPPORT-STD")[0]

        updated = ssp_catalog.update_line(line.id, test_actor_id, ssp_value=Decimal("13000.00"))

        assert updated.ssp_value == Decimal("13000.00")

    def test_referenced_line_is_immutable(
        self, ssp_catalog, default_book, monthly_periods, make_contract, test_actor_id
    ):
        monthly_periods(2024)
        make_contract(
            "50000.00",
            [ObligationDraft(line_number=1, item_id="LIC-CORE", recognition_method="PointInTime")],
            effective_date=date(2024, 2, 1),
        )
        line = ssp_catalog.list_lines(default_book.id, item_id="LIC-CORE")[0]

        assert ssp_catalog.is_line_referenced(line.id)
        with pytest.raises(SSPLineImmutableError):
            ssp_catalog.update_line(line.id, test_actor_id, ssp_value=Decimal("1.00"))

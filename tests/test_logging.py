"""
Structured logging tests.

- Each record is a JSON line carrying level, logger, message and extras.
- Engine exceptions contribute their code and context attributes.
- LogContext fields are scoped, stringified and restored on exit.
- Services bind the contract, event and period they are working on.
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from revrec_kernel.exceptions import VersionConflictError
from revrec_kernel.logging_config import (
    CONTEXT_FIELDS,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from revrec_kernel.models.contract import ContractStatus
from revrec_services.contract_service import ContractModification, ObligationDraft


@pytest.fixture
def log_stream():
    """A fresh ``revrec`` configuration writing JSON lines to a buffer."""
    reset_logging()
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    configure_logging(handler=handler)

    def _records() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    yield _records
    reset_logging()
    configure_logging(level=logging.DEBUG)


class TestStructuredFormatter:
    def test_core_keys(self, log_stream):
        get_logger("close").info("period_closed")

        [record] = log_stream()
        assert record["level"] == "INFO"
        assert record["logger"] == "revrec.close"
        assert record["message"] == "period_closed"
        assert record["ts"].endswith("+00:00")

    def test_debug_suppressed_at_default_level(self, log_stream):
        logger = get_logger("close")
        logger.debug("sweep_candidate")
        logger.warning("sweep_blocked", extra={"reason": "missing period"})

        assert [r["message"] for r in log_stream()] == ["sweep_blocked"]

    def test_domain_values_serialized(self, log_stream):
        entry_id = uuid4()
        get_logger("scheduler").info(
            "entry_posted",
            extra={
                "entry_id": entry_id,
                "amount": Decimal("5928.96"),
                "schedule_date": date(2024, 1, 31),
                "status": ContractStatus.ACTIVE,
            },
        )

        [record] = log_stream()
        assert record["entry_id"] == str(entry_id)
        assert record["amount"] == "5928.96"
        assert record["schedule_date"] == "2024-01-31"
        assert record["status"] == "Active"

    def test_exception_context_flattened(self, log_stream):
        try:
            raise VersionConflictError("RC-0001", 1, 2)
        except VersionConflictError:
            get_logger("contracts").error("modification_failed", exc_info=True)

        [record] = log_stream()
        assert record["exc_type"] == "VersionConflictError"
        assert record["exc_code"] == "VERSION_CONFLICT"
        assert record["exc_contract_number"] == "RC-0001"
        assert record["exc_expected_version"] == 1
        assert record["exc_actual_version"] == 2
        assert "Traceback" in record["traceback"]

    def test_plain_exception_has_no_code(self, log_stream):
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("contracts").error("failed", exc_info=True)

        [record] = log_stream()
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record

    def test_configure_is_idempotent(self, log_stream):
        configure_logging(handler=logging.StreamHandler(StringIO()))

        assert len(logging.getLogger("revrec").handlers) == 1


class TestLogContext:
    def test_fields(self):
        assert CONTEXT_FIELDS == ("source_event_id", "actor_id", "contract_number", "period_id")

    def test_set_merges(self):
        LogContext.set(contract_number="RC-0001")
        LogContext.set(period_id="p-1")

        assert LogContext.get_all() == {"contract_number": "RC-0001", "period_id": "p-1"}

    def test_bind_restores_previous_value(self):
        LogContext.set(period_id="outer")
        with LogContext.bind(period_id="inner", contract_number="RC-0002"):
            assert LogContext.get_all() == {"period_id": "inner", "contract_number": "RC-0002"}

        assert LogContext.get_all() == {"period_id": "outer"}

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(contract_number="RC-0003"):
                raise RuntimeError("allocation failed")

        assert LogContext.get_all() == {}

    def test_bind_stringifies_and_ignores_unknown(self):
        actor = uuid4()
        with LogContext.bind(actor_id=actor, ledger_id="LEDGER-US", period_id=None):
            assert LogContext.get_all() == {"actor_id": str(actor)}

    def test_context_lands_in_records(self, log_stream):
        with LogContext.bind(contract_number="RC-0004"):
            get_logger("contracts").info("contract_allocated")
        get_logger("contracts").info("after")

        inside, outside = log_stream()
        assert inside["contract_number"] == "RC-0004"
        assert "contract_number" not in outside


class TestServiceContext:
    def test_contract_operations_tag_records(
        self, make_contract, contract_service, default_book, monthly_periods,
        captured_logs, test_actor_id
    ):
        monthly_periods(2024)
        contract = make_contract(
            "120000.00",
            [ObligationDraft(1, "LIC-CORE"), ObligationDraft(2, "SUB-CLOUD")],
            contract_number="RC-LOG",
        )
        contract_service.modify_contract(
            "RC-LOG",
            contract.version_number,
            ContractModification(
                total_transaction_price=Decimal("110000.00"),
                effective_date=date(2024, 3, 1),
                lines=(ObligationDraft(1, "LIC-CORE"), ObligationDraft(2, "SUB-CLOUD")),
                reason="Discount",
            ),
            test_actor_id,
        )

        traces = [r for r in captured_logs() if r["message"] == "REVREC_ENGINE_TRACE"]
        allocations = [r for r in traces if r["engine_name"] == "allocation"]
        assert len(allocations) == 2
        assert all(r["contract_number"] == "RC-LOG" for r in traces)
        assert all(r["actor_id"] == str(test_actor_id) for r in traces)
        assert LogContext.get_all() == {}

    def test_intake_failure_tagged_with_event(
        self, intake_service, default_book, monthly_periods, source_event,
        captured_logs, test_actor_id
    ):
        monthly_periods(2024)
        result = intake_service.ingest(
            source_event(
                "Booking", "SO-LOG", amount="1000.00",
                lines=[{"lineNumber": 1, "itemId": "HW-ROUTER"}],
            ),
            test_actor_id,
        )

        records = captured_logs()
        [blocked] = [r for r in records if r["message"] == "allocation_blocked_missing_ssp"]
        [failure] = [r for r in records if r["message"] == "source_event_failed"]
        assert blocked["source_event_id"] == str(result.event_id)
        assert blocked["contract_number"] == "SO-LOG"
        assert failure["source_event_id"] == str(result.event_id)
        assert "contract_number" not in failure

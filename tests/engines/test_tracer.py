"""Tests for the engine trace decorator and input fingerprints."""

from datetime import date
from decimal import Decimal

from revrec_engines.allocation import AllocationLineInput, allocate_relative_ssp
from revrec_engines.tracer import compute_input_fingerprint, traced_engine


class TestFingerprint:
    def test_deterministic(self):
        kwargs = {"amount": Decimal("100.00"), "start": date(2024, 1, 1)}

        assert compute_input_fingerprint(("amount", "start"), kwargs) == compute_input_fingerprint(
            ("amount", "start"), dict(reversed(list(kwargs.items())))
        )

    def test_decimal_scale_ignored(self):
        assert compute_input_fingerprint(("amount",), {"amount": Decimal("100")}) == (
            compute_input_fingerprint(("amount",), {"amount": Decimal("100.00")})
        )

    def test_only_selected_fields(self):
        base = compute_input_fingerprint(("amount",), {"amount": 1, "noise": "a"})

        assert base == compute_input_fingerprint(("amount",), {"amount": 1, "noise": "b"})
        assert len(base) == 16

    def test_missing_field_is_null(self):
        assert compute_input_fingerprint(("amount",), {}) == compute_input_fingerprint(
            ("amount",), {"amount": None}
        )

    def test_dict_keys_sorted(self):
        assert compute_input_fingerprint(("m",), {"m": {"b": 1, "a": 2}}) == (
            compute_input_fingerprint(("m",), {"m": {"a": 2, "b": 1}})
        )


class TestTracedEngine:
    def test_trace_emitted(self, captured_logs):
        @traced_engine("sample", "2.1", fingerprint_fields=("x",))
        def double(*, x):
            return x * 2

        assert double(x=21) == 42

        [trace] = [r for r in captured_logs() if r["message"] == "REVREC_ENGINE_TRACE"]
        assert trace["engine_name"] == "sample"
        assert trace["engine_version"] == "2.1"
        assert trace["input_fingerprint"] == compute_input_fingerprint(("x",), {"x": 21})
        assert trace["duration_ms"] >= 0

    def test_allocation_is_traced(self, captured_logs):
        allocate_relative_ssp(
            total_transaction_price=Decimal("1000.00"),
            lines=[AllocationLineInput(line_ref=1, unit_ssp=Decimal("1000.00"))],
        )

        traces = [r for r in captured_logs() if r["message"] == "REVREC_ENGINE_TRACE"]
        assert [t["engine_name"] for t in traces] == ["allocation"]

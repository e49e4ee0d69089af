"""
Module: revrec_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the import surface for revrec_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import revrec_kernel exceptions and logging only.
    MUST NOT import revrec_services or revrec_config.

Invariants enforced:
    - Purity: engines never read the clock; dates are explicit parameters.
    - Decimal-only arithmetic for every monetary amount.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every traced engine invocation emits a REVREC_ENGINE_TRACE log record
    with engine name, version, input fingerprint and duration.
"""

from revrec_engines.allocation import (
    AllocatedLine,
    AllocationLineInput,
    AllocationResult,
    allocate_relative_ssp,
)
from revrec_engines.recognition import (
    ACTUAL_ACTUAL,
    DAY_COUNT_CONVENTIONS,
    THIRTY_360,
    MilestoneInput,
    ModificationSplit,
    PeriodWindow,
    PlannedEntry,
    cap_entries,
    capped_usage_amount,
    day_count,
    days_30_360,
    find_uncovered_date,
    milestone_schedule,
    point_in_time_schedule,
    ratable_schedule,
    split_for_modification,
)
from revrec_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "ACTUAL_ACTUAL",
    "DAY_COUNT_CONVENTIONS",
    "THIRTY_360",
    "AllocatedLine",
    "AllocationLineInput",
    "AllocationResult",
    "MilestoneInput",
    "ModificationSplit",
    "PeriodWindow",
    "PlannedEntry",
    "allocate_relative_ssp",
    "cap_entries",
    "capped_usage_amount",
    "compute_input_fingerprint",
    "day_count",
    "days_30_360",
    "find_uncovered_date",
    "milestone_schedule",
    "point_in_time_schedule",
    "ratable_schedule",
    "split_for_modification",
    "traced_engine",
]

"""
Module: revrec_engines.allocation
Responsibility:
    Distribute a contract's transaction price across its performance
    obligations with the relative standalone selling price method.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  SSP resolution happens in
    the contract service; this module only sees resolved unit prices.

Invariants enforced:
    - Sum exactness: the allocated prices sum to the transaction price
      exactly.  Observable lines take their own value; proportional lines
      take the difference between successive half-up rounded running
      totals, and the last proportional line takes the exact remainder.
    - Non-negativity: no allocated price is ever below zero.
    - Never divides by zero: an empty standalone value pool is an error,
      not a silent even split.
    - Purity: no clock access, no I/O.

Failure modes:
    - ObservablePriceExceedsTotalError when observable line values exceed
      the transaction price (remainder R < 0).
    - AllocationDegenerateError when the proportional pool's standalone
      values sum to zero, or when R != 0 but there is no proportional line
      to absorb it.
    - ValueError on negative quantities or prices, or a proportional line
      without a unit SSP.

Audit relevance:
    Every allocated line records its estimated standalone value next to its
    allocated price so the ratio behind each allocation can be recomputed.

Usage:
    from revrec_engines.allocation import AllocationLineInput, allocate_relative_ssp

    result = allocate_relative_ssp(
        total_transaction_price=Decimal("100000.00"),
        lines=[
            AllocationLineInput(line_ref=1, unit_ssp=Decimal("33333.33")),
            AllocationLineInput(line_ref=2, unit_ssp=Decimal("33333.34")),
        ],
        decimal_places=2,
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from revrec_engines.tracer import traced_engine
from revrec_kernel.exceptions import (
    AllocationDegenerateError,
    ObservablePriceExceedsTotalError,
)
from revrec_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")

ZERO = Decimal("0")


def _quantize(amount: Decimal, decimal_places: int) -> Decimal:
    return amount.quantize(Decimal(1).scaleb(-decimal_places), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class AllocationLineInput:
    """
    One contract line as seen by the allocator.

    Prices are unit prices; the engine multiplies by ``quantity``.  A line
    with ``observable_price`` set is excluded from the proportional pool.
    """

    line_ref: Any
    quantity: Decimal = Decimal("1")
    unit_ssp: Decimal | None = None
    observable_price: Decimal | None = None

    def __post_init__(self) -> None:
        if self.quantity < ZERO:
            raise ValueError(f"Line {self.line_ref}: quantity cannot be negative")
        if self.observable_price is not None and self.observable_price < ZERO:
            raise ValueError(f"Line {self.line_ref}: observable price cannot be negative")
        if self.unit_ssp is not None and self.unit_ssp < ZERO:
            raise ValueError(f"Line {self.line_ref}: SSP cannot be negative")
        if self.observable_price is None and self.unit_ssp is None:
            raise ValueError(
                f"Line {self.line_ref}: needs a unit SSP or an observable price"
            )

    @property
    def is_observable(self) -> bool:
        return self.observable_price is not None


@dataclass(frozen=True)
class AllocatedLine:
    """Allocation outcome for one line."""

    line_ref: Any
    estimated_standalone_value: Decimal
    allocated_price: Decimal
    is_observable: bool


@dataclass(frozen=True)
class AllocationResult:
    """
    Complete allocation result.

    Guarantees:
        - ``sum(line.allocated_price) == total_transaction_price``.
        - ``rounding_adjustment`` is the difference between the last
          proportional line's exact remainder and its rounded share.
    """

    total_transaction_price: Decimal
    lines: tuple[AllocatedLine, ...]
    observable_total: Decimal
    remainder_pool: Decimal
    rounding_adjustment: Decimal

    @property
    def total_allocated(self) -> Decimal:
        return sum((line.allocated_price for line in self.lines), ZERO)

    def for_line(self, line_ref: Any) -> AllocatedLine:
        for line in self.lines:
            if line.line_ref == line_ref:
                return line
        raise KeyError(line_ref)


@traced_engine(
    "allocation",
    "1.0",
    fingerprint_fields=("total_transaction_price", "lines", "decimal_places"),
)
def allocate_relative_ssp(
    *,
    total_transaction_price: Decimal,
    lines: Sequence[AllocationLineInput],
    decimal_places: int = 2,
) -> AllocationResult:
    """
    Allocate ``total_transaction_price`` across ``lines``.

    Lines come back in input order.  The "last" proportional line, which
    absorbs the rounding remainder, is the last non-observable line in input
    order.
    """
    logger.info(
        "allocation_started",
        extra={
            "total_transaction_price": str(total_transaction_price),
            "line_count": len(lines),
        },
    )

    observable_values: dict[int, Decimal] = {}
    standalone_values: dict[int, Decimal] = {}
    for index, line in enumerate(lines):
        if line.is_observable:
            observable_values[index] = _quantize(
                line.observable_price * line.quantity, decimal_places
            )
        else:
            standalone_values[index] = line.unit_ssp * line.quantity

    observable_total = sum(observable_values.values(), ZERO)
    remainder = total_transaction_price - observable_total

    if remainder < ZERO:
        logger.warning(
            "allocation_observable_exceeds_total",
            extra={
                "total_transaction_price": str(total_transaction_price),
                "observable_total": str(observable_total),
            },
        )
        raise ObservablePriceExceedsTotalError(total_transaction_price, observable_total)

    if not standalone_values and remainder != ZERO:
        raise AllocationDegenerateError(
            remainder, reason="no proportional line to absorb the remaining price"
        )

    pool = sum(standalone_values.values(), ZERO)
    if standalone_values and pool == ZERO:
        logger.warning(
            "allocation_degenerate",
            extra={"remainder": str(remainder), "line_count": len(standalone_values)},
        )
        raise AllocationDegenerateError(remainder)

    allocated: dict[int, Decimal] = dict(observable_values)
    rounding_adjustment = ZERO
    proportional_indexes = list(standalone_values)
    # Round the running total, not each share
    cumulative_value = ZERO
    assigned = ZERO
    for position, index in enumerate(proportional_indexes):
        cumulative_value += standalone_values[index]
        exact_share = remainder * standalone_values[index] / pool
        if position == len(proportional_indexes) - 1:
            allocated[index] = remainder - assigned
            rounding_adjustment = allocated[index] - _quantize(exact_share, decimal_places)
        else:
            running = _quantize(remainder * cumulative_value / pool, decimal_places)
            allocated[index] = running - assigned
            assigned = running

    result_lines = tuple(
        AllocatedLine(
            line_ref=line.line_ref,
            estimated_standalone_value=(
                observable_values[index] if line.is_observable else standalone_values[index]
            ),
            allocated_price=allocated[index],
            is_observable=line.is_observable,
        )
        for index, line in enumerate(lines)
    )

    result = AllocationResult(
        total_transaction_price=total_transaction_price,
        lines=result_lines,
        observable_total=observable_total,
        remainder_pool=remainder,
        rounding_adjustment=rounding_adjustment,
    )

    logger.info(
        "allocation_completed",
        extra={
            "total_allocated": str(result.total_allocated),
            "observable_total": str(observable_total),
            "rounding_adjustment": str(rounding_adjustment),
        },
    )
    return result

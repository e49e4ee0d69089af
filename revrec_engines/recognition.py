"""
Module: revrec_engines.recognition
Responsibility:
    Turn an obligation's allocated price into dated recognition amounts:
    ratable day-count proration, milestone percentages, a single
    point-in-time amount, capped usage amounts, and the catch-up split
    applied when a contract modification changes an in-flight obligation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The recognition scheduler
    service maps the dated amounts produced here onto Period rows and
    persists them.

Invariants enforced:
    - Schedule exactness: every schedule function returns amounts summing
      to exactly the requested total; the final amount absorbs rounding.
    - Monotone recognition: amounts are rounded on the running total, so
      cumulative recognition never overshoots and no entry flips sign.
    - Usage never overshoots: a capped usage amount never takes cumulative
      recognition past the allocated price.
    - Purity: no clock access, no I/O.

Failure modes:
    - InvalidRecognitionPlanError for an inverted window, milestone
      percentages that do not sum to 100, or an unknown day-count
      convention.

Day-count conventions:
    actual/actual  -- calendar days in the segment, inclusive.
    30/360         -- US 30/360 day count between the segment start and the
                      day after its end.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from revrec_engines.tracer import traced_engine
from revrec_kernel.exceptions import InvalidRecognitionPlanError
from revrec_kernel.logging_config import get_logger

logger = get_logger("engines.recognition")

ZERO = Decimal("0")
HUNDRED = Decimal("100")

ACTUAL_ACTUAL = "actual/actual"
THIRTY_360 = "30/360"
DAY_COUNT_CONVENTIONS = (ACTUAL_ACTUAL, THIRTY_360)


def _quantize(amount: Decimal, decimal_places: int) -> Decimal:
    return amount.quantize(Decimal(1).scaleb(-decimal_places), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PeriodWindow:
    """Date range of one accounting period, as the engine sees it."""

    period_ref: Any
    start_date: date
    end_date: date


@dataclass(frozen=True)
class MilestoneInput:
    """A milestone's share of the price and the date it triggers."""

    milestone_ref: Any
    percentage: Decimal
    trigger_date: date


@dataclass(frozen=True)
class PlannedEntry:
    """
    One dated recognition amount before it is bucketed into a period.

    ``ref`` is opaque to the engine: the milestone behind a milestone entry,
    or the source event behind a usage entry.
    """

    schedule_date: date
    amount: Decimal
    ref: Any = None


@dataclass(frozen=True)
class ModificationSplit:
    """
    How a successor obligation's schedule relates to history already posted.

    ``catch_up`` is the cumulative difference for the periods already
    posted; ``remaining`` are the entries still to be scheduled.
    """

    desired_to_date: Decimal
    posted_to_date: Decimal
    catch_up: Decimal
    remaining: tuple[PlannedEntry, ...]


# ---------------------------------------------------------------------------
# Day counts
# ---------------------------------------------------------------------------


def _is_last_day_of_february(value: date) -> bool:
    return value.month == 2 and (value + timedelta(days=1)).month == 3


def days_30_360(start: date, end_exclusive: date) -> int:
    """US 30/360 day count from ``start`` up to ``end_exclusive``."""
    d1, d2 = start.day, end_exclusive.day
    if _is_last_day_of_february(start):
        if _is_last_day_of_february(end_exclusive):
            d2 = 30
        d1 = 30
    if d2 == 31 and d1 >= 30:
        d2 = 30
    if d1 == 31:
        d1 = 30
    return (
        360 * (end_exclusive.year - start.year)
        + 30 * (end_exclusive.month - start.month)
        + (d2 - d1)
    )


def day_count(start: date, end: date, convention: str = ACTUAL_ACTUAL) -> int:
    """Days in the inclusive segment ``start..end`` under ``convention``."""
    if end < start:
        return 0
    if convention == ACTUAL_ACTUAL:
        return (end - start).days + 1
    if convention == THIRTY_360:
        return max(days_30_360(start, end + timedelta(days=1)), 0)
    raise InvalidRecognitionPlanError(
        "day_count", f"unknown day-count convention {convention!r}"
    )


def find_uncovered_date(
    start: date,
    end: date,
    periods: Sequence[PeriodWindow],
) -> date | None:
    """First date in ``start..end`` that no period covers, else None."""
    cursor = start
    for period in sorted(periods, key=lambda p: p.start_date):
        if period.end_date < cursor:
            continue
        if period.start_date > cursor:
            return cursor
        cursor = period.end_date + timedelta(days=1)
        if cursor > end:
            return None
    return cursor if cursor <= end else None


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


def _spread(
    total: Decimal,
    weighted_dates: Sequence[tuple[date, Decimal, Any]],
    decimal_places: int,
) -> tuple[PlannedEntry, ...]:
    """
    Split ``total`` by weight.

    Each amount is the step between successive rounded running totals, so
    no amount has the opposite sign of ``total``; the final entry takes the
    exact remainder.
    """
    weight_sum = sum((weight for _, weight, _ in weighted_dates), ZERO)
    entries: list[PlannedEntry] = []
    cumulative_weight = ZERO
    assigned = ZERO
    for position, (when, weight, ref) in enumerate(weighted_dates):
        cumulative_weight += weight
        if position == len(weighted_dates) - 1:
            amount = total - assigned
        else:
            running = _quantize(total * cumulative_weight / weight_sum, decimal_places)
            amount = running - assigned
            assigned = running
        entries.append(PlannedEntry(schedule_date=when, amount=amount, ref=ref))
    return tuple(entries)


@traced_engine(
    "recognition.ratable",
    "1.0",
    fingerprint_fields=("amount", "recognition_start", "recognition_end", "convention"),
)
def ratable_schedule(
    *,
    amount: Decimal,
    recognition_start: date,
    recognition_end: date,
    periods: Sequence[PeriodWindow],
    decimal_places: int = 2,
    convention: str = ACTUAL_ACTUAL,
) -> tuple[PlannedEntry, ...]:
    """
    One entry per period overlapping the window, weighted by day count.

    Each entry is dated at the last recognition day inside its period.
    ``periods`` must cover the window; see ``find_uncovered_date``.
    """
    if recognition_end < recognition_start:
        raise InvalidRecognitionPlanError(
            "ratable", f"window ends {recognition_end} before it starts {recognition_start}"
        )
    if amount == ZERO:
        return ()

    segments: list[tuple[date, Decimal, Any]] = []
    for period in sorted(periods, key=lambda p: p.start_date):
        seg_start = max(recognition_start, period.start_date)
        seg_end = min(recognition_end, period.end_date)
        if seg_end < seg_start:
            continue
        segments.append((seg_end, Decimal(day_count(seg_start, seg_end, convention)), period.period_ref))

    if not segments:
        raise InvalidRecognitionPlanError(
            "ratable", f"no period overlaps {recognition_start}..{recognition_end}"
        )

    total_weight = sum((weight for _, weight, _ in segments), ZERO)
    if total_weight == ZERO:
        # Single-day 30/360 windows can weigh nothing; recognize on the last day
        return (PlannedEntry(schedule_date=segments[-1][0], amount=amount),)

    entries = _spread(amount, [(when, weight, None) for when, weight, _ in segments], decimal_places)
    logger.debug(
        "ratable_schedule_built",
        extra={"entry_count": len(entries), "day_count_total": str(total_weight)},
    )
    return entries


@traced_engine("recognition.milestone", "1.0", fingerprint_fields=("amount",))
def milestone_schedule(
    *,
    amount: Decimal,
    milestones: Sequence[MilestoneInput],
    decimal_places: int = 2,
) -> tuple[PlannedEntry, ...]:
    """One entry per milestone, in the given order; the last absorbs rounding."""
    if not milestones:
        raise InvalidRecognitionPlanError("milestone", "no milestones defined")
    if any(m.percentage < ZERO for m in milestones):
        raise InvalidRecognitionPlanError("milestone", "milestone percentage cannot be negative")
    total_pct = sum((m.percentage for m in milestones), ZERO)
    if total_pct != HUNDRED:
        raise InvalidRecognitionPlanError(
            "milestone", f"milestone percentages sum to {total_pct}, not 100"
        )
    return _spread(
        amount,
        [(m.trigger_date, m.percentage, m.milestone_ref) for m in milestones],
        decimal_places,
    )


def point_in_time_schedule(*, amount: Decimal, trigger_date: date) -> tuple[PlannedEntry, ...]:
    """The full amount on the trigger date."""
    return (PlannedEntry(schedule_date=trigger_date, amount=amount),)


def capped_usage_amount(
    *,
    quantity: Decimal | None,
    usage_rate: Decimal | None,
    event_amount: Decimal | None,
    allocated_price: Decimal,
    recognized_to_date: Decimal,
    decimal_places: int = 2,
) -> Decimal:
    """
    Amount one usage fact may recognize.

    ``quantity * usage_rate`` when the obligation has a rate, otherwise the
    event's own amount; truncated so cumulative recognition never exceeds
    ``allocated_price``.
    """
    if usage_rate is not None and quantity is not None:
        raw = quantity * usage_rate
    elif event_amount is not None:
        raw = event_amount
    else:
        raise InvalidRecognitionPlanError(
            "usage", "usage fact needs a quantity with a rate, or an amount"
        )
    if raw < ZERO:
        raise InvalidRecognitionPlanError("usage", "usage amount cannot be negative")

    headroom = max(allocated_price - recognized_to_date, ZERO)
    return min(_quantize(raw, decimal_places), headroom)


def cap_entries(entries: Sequence[PlannedEntry], limit: Decimal) -> tuple[PlannedEntry, ...]:
    """Keep entries in order until ``limit`` is reached, truncating the last."""
    kept: list[PlannedEntry] = []
    running = ZERO
    for entry in entries:
        if running >= limit:
            break
        amount = min(entry.amount, limit - running)
        kept.append(PlannedEntry(entry.schedule_date, amount, entry.ref))
        running += amount
    return tuple(kept)


@traced_engine(
    "recognition.modification",
    "1.0",
    fingerprint_fields=("posted_to_date", "posted_through"),
)
def split_for_modification(
    *,
    desired: Sequence[PlannedEntry],
    posted_to_date: Decimal,
    posted_through: date | None,
) -> ModificationSplit:
    """
    Compare a successor's full desired schedule with what was already posted.

    Entries dated on or before ``posted_through`` belong to periods that have
    already been swept: their total is compared with ``posted_to_date`` and
    the difference becomes a single catch-up amount.  Later entries are
    returned unchanged.
    """
    if posted_through is None:
        return ModificationSplit(
            desired_to_date=ZERO,
            posted_to_date=posted_to_date,
            catch_up=-posted_to_date,
            remaining=tuple(desired),
        )

    to_date = [e for e in desired if e.schedule_date <= posted_through]
    remaining = tuple(e for e in desired if e.schedule_date > posted_through)
    desired_to_date = sum((e.amount for e in to_date), ZERO)
    return ModificationSplit(
        desired_to_date=desired_to_date,
        posted_to_date=posted_to_date,
        catch_up=desired_to_date - posted_to_date,
        remaining=remaining,
    )

"""
revrec_services._close_types -- DTOs for the sweep and close orchestrator.

Responsibility:
    Define the frozen results handed back by ``sweep``, ``can_close`` and
    ``close``: close exceptions an operator can triage without re-deriving
    them, the close check, the sweep totals and the close result.

Architecture position:
    Services.  These types live here because the orchestrator that produces
    them lives here; they have no kernel dependency.

Invariants enforced:
    - All DTOs are frozen dataclasses.
    - Every CloseException carries a type, a reference id and an amount.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class CloseExceptionType(str, Enum):
    """Why a period cannot close."""

    PERIOD_NOT_OPEN = "PERIOD_NOT_OPEN"
    UNSWEPT_ENTRY = "UNSWEPT_ENTRY"
    SOURCE_EVENT_PENDING = "SOURCE_EVENT_PENDING"
    SOURCE_EVENT_ERROR = "SOURCE_EVENT_ERROR"
    INCOMPLETE_ALLOCATION = "INCOMPLETE_ALLOCATION"


@dataclass(frozen=True)
class CloseException:
    """Structured blocking item for close diagnostics."""

    exception_type: CloseExceptionType
    reference_id: str
    amount: Decimal
    detail: str

    def to_dict(self) -> dict[str, str]:
        return {
            "exception_type": self.exception_type.value,
            "reference_id": self.reference_id,
            "amount": str(self.amount),
            "detail": self.detail,
        }


@dataclass(frozen=True)
class CloseCheck:
    """Result of ``can_close``."""

    period_id: UUID
    period_name: str
    allowed: bool
    exceptions: tuple[CloseException, ...]

    def of_type(self, exception_type: CloseExceptionType) -> tuple[CloseException, ...]:
        return tuple(e for e in self.exceptions if e.exception_type == exception_type)


@dataclass(frozen=True)
class SweepResult:
    """
    Result of one sweep call.

    ``posted_count``/``posted_amount``/``postable_entries`` describe what this
    call posted.  ``total_recognized``, ``billed_amount`` and
    ``unbilled_accrual`` are recomputed from state, so a repeated sweep
    reports the same values.
    """

    period_id: UUID
    period_name: str
    posted_count: int
    posted_amount: Decimal
    total_recognized: Decimal
    billed_amount: Decimal
    unbilled_accrual: Decimal
    postable_entries: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class CloseResult:
    """Result of a successful close."""

    period_id: UUID
    period_name: str
    status: str
    closed_at: datetime
    closed_by_id: UUID

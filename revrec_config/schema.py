"""
RevRecConfig schema.

Typed, frozen view of the revenue recognition runtime configuration.  YAML
is parsed into these types by the loader; services receive a
``RevRecConfig`` and never read files themselves.
"""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field

ALL_EVENT_TYPES = (
    "Booking",
    "Modification",
    "Cancellation",
    "Usage",
    "Milestone",
    "Billing",
)

RECOGNITION_METHODS = ("PointInTime", "Ratable", "Milestone", "Usage")


@dataclass(frozen=True)
class RoundingConfig:
    """Tolerance for contract-level allocation totals."""

    tolerance_minor_units: int = 1


@dataclass(frozen=True)
class ObligationRule:
    """Default recognition for intake lines whose item matches a pattern."""

    item_pattern: str
    method: str
    term_months: int | None = None

    def matches(self, item_id: str) -> bool:
        return fnmatch.fnmatchcase(item_id, self.item_pattern)


@dataclass(frozen=True)
class RecognitionConfig:
    """How obligations are scheduled when a line does not say."""

    day_count_convention: str = "actual/actual"
    default_method: str = "Ratable"
    default_term_months: int = 12
    pob_rules: tuple[ObligationRule, ...] = ()

    def rule_for(self, item_id: str) -> ObligationRule | None:
        """First rule whose pattern matches, in declaration order."""
        for rule in self.pob_rules:
            if rule.matches(item_id):
                return rule
        return None


@dataclass(frozen=True)
class ConcurrencyConfig:
    version_conflict_max_retries: int = 3


@dataclass(frozen=True)
class IntakeConfig:
    max_attempts: int = 5
    event_types: tuple[str, ...] = ALL_EVENT_TYPES
    batch_size: int = 100


@dataclass(frozen=True)
class SweepConfig:
    batch_size: int = 500


@dataclass(frozen=True)
class RevRecConfig:
    """
    Root configuration object.

    ``checksum`` is the SHA-256 of the parsed source document and identifies
    the exact configuration a run used.
    """

    config_id: str = "revrec-default"
    version: int = 1
    rounding: RoundingConfig = field(default_factory=RoundingConfig)
    recognition: RecognitionConfig = field(default_factory=RecognitionConfig)
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    intake: IntakeConfig = field(default_factory=IntakeConfig)
    sweep: SweepConfig = field(default_factory=SweepConfig)
    checksum: str = ""

"""
Configuration validation.

Checks a parsed ``RevRecConfig`` for values the services cannot act on.
Returns every problem at once so a bad file can be fixed in one pass.
"""

from __future__ import annotations

from dataclasses import dataclass

from revrec_config.schema import ALL_EVENT_TYPES, RECOGNITION_METHODS, RevRecConfig

DAY_COUNT_CONVENTIONS = ("actual/actual", "30/360")


@dataclass(frozen=True)
class ConfigValidationResult:
    errors: tuple[str, ...]

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_config(config: RevRecConfig) -> ConfigValidationResult:
    errors: list[str] = []

    if config.rounding.tolerance_minor_units < 0:
        errors.append("rounding.tolerance_minor_units must be >= 0")

    recognition = config.recognition
    if recognition.day_count_convention not in DAY_COUNT_CONVENTIONS:
        errors.append(
            f"recognition.day_count_convention must be one of {DAY_COUNT_CONVENTIONS}, "
            f"got {recognition.day_count_convention!r}"
        )
    if recognition.default_method not in RECOGNITION_METHODS:
        errors.append(f"recognition.default_method {recognition.default_method!r} is unknown")
    if recognition.default_term_months < 1:
        errors.append("recognition.default_term_months must be >= 1")
    for index, rule in enumerate(recognition.pob_rules):
        if rule.method not in RECOGNITION_METHODS:
            errors.append(f"recognition.pob_rules[{index}].method {rule.method!r} is unknown")
        if rule.term_months is not None and rule.term_months < 1:
            errors.append(f"recognition.pob_rules[{index}].term_months must be >= 1")

    if config.concurrency.version_conflict_max_retries < 0:
        errors.append("concurrency.version_conflict_max_retries must be >= 0")

    if config.intake.max_attempts < 1:
        errors.append("intake.max_attempts must be >= 1")
    if config.intake.batch_size < 1:
        errors.append("intake.batch_size must be >= 1")
    unknown = sorted(set(config.intake.event_types) - set(ALL_EVENT_TYPES))
    if unknown:
        errors.append(f"intake.event_types contains unknown types {unknown}")

    if config.sweep.batch_size < 1:
        errors.append("sweep.batch_size must be >= 1")

    return ConfigValidationResult(errors=tuple(errors))

"""
Configuration Loader (``revrec_config.loader``).

Responsibility
--------------
Loads the YAML configuration document and parses it into the frozen
``revrec_config.schema`` dataclasses.  This is internal tooling; the single
public entry point for runtime config is
``revrec_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Missing sections fall back to the schema defaults; present sections are
  parsed strictly (bad types raise ``ValueError``).
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys in a pob rule  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from revrec_config.schema import (
    ALL_EVENT_TYPES,
    ConcurrencyConfig,
    IntakeConfig,
    ObligationRule,
    RecognitionConfig,
    RevRecConfig,
    RoundingConfig,
    SweepConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    return value


def parse_rounding(data: dict[str, Any]) -> RoundingConfig:
    return RoundingConfig(
        tolerance_minor_units=_int(data, "tolerance_minor_units", 1),
    )


def parse_pob_rule(data: dict[str, Any]) -> ObligationRule:
    """Parse an ``ObligationRule``; ``item_pattern`` and ``method`` are required."""
    term = data.get("term_months")
    return ObligationRule(
        item_pattern=str(data["item_pattern"]),
        method=str(data["method"]),
        term_months=int(term) if term is not None else None,
    )


def parse_recognition(data: dict[str, Any]) -> RecognitionConfig:
    return RecognitionConfig(
        day_count_convention=str(data.get("day_count_convention", "actual/actual")),
        default_method=str(data.get("default_method", "Ratable")),
        default_term_months=_int(data, "default_term_months", 12),
        pob_rules=tuple(parse_pob_rule(r) for r in data.get("pob_rules") or ()),
    )


def parse_concurrency(data: dict[str, Any]) -> ConcurrencyConfig:
    return ConcurrencyConfig(
        version_conflict_max_retries=_int(data, "version_conflict_max_retries", 3),
    )


def parse_intake(data: dict[str, Any]) -> IntakeConfig:
    return IntakeConfig(
        max_attempts=_int(data, "max_attempts", 5),
        event_types=tuple(str(t) for t in data.get("event_types") or ALL_EVENT_TYPES),
        batch_size=_int(data, "batch_size", 100),
    )


def parse_sweep(data: dict[str, Any]) -> SweepConfig:
    return SweepConfig(batch_size=_int(data, "batch_size", 500))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 checksum of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any]) -> RevRecConfig:
    """Parse a whole configuration document into a ``RevRecConfig``."""
    return RevRecConfig(
        config_id=str(data.get("config_id", "revrec-default")),
        version=_int(data, "version", 1),
        rounding=parse_rounding(data.get("rounding") or {}),
        recognition=parse_recognition(data.get("recognition") or {}),
        concurrency=parse_concurrency(data.get("concurrency") or {}),
        intake=parse_intake(data.get("intake") or {}),
        sweep=parse_sweep(data.get("sweep") or {}),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> RevRecConfig:
    return parse_config(load_yaml_file(path))

"""
revrec_config -- single public entrypoint for revenue recognition configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the returned ``RevRecConfig``
    by injection and never read configuration files or environment
    variables themselves.

Architecture position:
    Configuration -- sits above ``revrec_kernel`` and below
    ``revrec_services``.  The kernel MUST NEVER import from
    ``revrec_config``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through
      ``get_active_config()``.
    - Validation: a configuration with any invalid value is refused.
    - Deterministic checksum: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- the file parses but fails validation.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``REVREC_CONFIG_TRACE`` log entry with config_id, version and checksum,
    tying every run back to the exact configuration that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from revrec_config.loader import load_config
from revrec_config.schema import (
    ConcurrencyConfig,
    IntakeConfig,
    ObligationRule,
    RecognitionConfig,
    RevRecConfig,
    RoundingConfig,
    SweepConfig,
)
from revrec_config.validator import validate_config

_logger = logging.getLogger("revrec.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "revrec.yaml"


def get_active_config(config_path: Path | None = None) -> RevRecConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a YAML configuration file.  Defaults
            to revrec_config/defaults/revrec.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If configuration validation fails.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = load_config(path)

    validation = validate_config(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )

    _logger.info(
        "REVREC_CONFIG_TRACE",
        extra={
            "trace_type": "REVREC_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "day_count_convention": config.recognition.day_count_convention,
            "pob_rule_count": len(config.recognition.pob_rules),
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ConcurrencyConfig",
    "IntakeConfig",
    "ObligationRule",
    "RecognitionConfig",
    "RevRecConfig",
    "RoundingConfig",
    "SweepConfig",
    "get_active_config",
]

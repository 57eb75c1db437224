"""
Fulfillment configuration.

Public API: ``get_active_config()`` is the single entry point for
runtime configuration.  It loads a named YAML set from
``fulfillment_config/sets/``, validates it, and returns a frozen
``FulfillmentConfig``.  Services receive what they need through
``fulfillment_config.bridges``; the kernel never imports this package.

Usage:
    from fulfillment_config import get_active_config

    config = get_active_config()
    numbers = build_sequence_service(session, config, clock)

Raises:
    FileNotFoundError: no set with that name.
    ValueError: the set failed validation.
"""

from __future__ import annotations

from pathlib import Path

from fulfillment_config.loader import load_config_set
from fulfillment_config.schema import FulfillmentConfig
from fulfillment_config.validator import validate_config
from fulfillment_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    name: str = "default",
    config_dir: Path | None = None,
) -> FulfillmentConfig:
    """Load, validate and return the named configuration set."""
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    path = Path(sets_dir) / f"{name}.yaml"
    if not path.exists():
        raise FileNotFoundError(f"No configuration set '{name}' in {sets_dir}")

    config = load_config_set(path)

    validation = validate_config(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning(
            "config_validation_warning",
            extra={"config_id": config.config_id, "warning": warning},
        )

    _logger.info(
        "FULFILLMENT_CONFIG_TRACE",
        extra={
            "trace_type": "FULFILLMENT_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "timezone": config.timezone,
            "rule_count": len(config.approval_rules),
        },
    )
    return config


__all__ = ["FulfillmentConfig", "get_active_config"]

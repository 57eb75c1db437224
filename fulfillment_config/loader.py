"""
Configuration Loader (``fulfillment_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen
``fulfillment_config.schema`` dataclasses.  Runtime code goes through
``fulfillment_config.get_active_config()`` instead of calling this
directly.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Non-numeric amounts  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from fulfillment_config.schema import (
    ApprovalLevelDef,
    ApprovalRuleDef,
    DocumentTypeDef,
    FulfillmentConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its mapping (empty files give ``{}``)."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def parse_amount(value: Any, field_name: str) -> Decimal | None:
    """Parse a monetary amount; ``None`` stays ``None`` (unbounded)."""
    if value is None:
        return None
    try:
        # str() first so YAML floats do not carry binary noise
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{field_name}: not a number: {value!r}") from exc


def parse_document_types(data: dict[str, Any]) -> tuple[DocumentTypeDef, ...]:
    """Parse the ``document_types`` mapping of type -> prefix (or dict)."""
    parsed: list[DocumentTypeDef] = []
    for document_type, spec in data.items():
        if isinstance(spec, dict):
            parsed.append(DocumentTypeDef(
                document_type=str(document_type),
                prefix=str(spec["prefix"]),
                description=spec.get("description", ""),
            ))
        else:
            parsed.append(DocumentTypeDef(
                document_type=str(document_type), prefix=str(spec),
            ))
    return tuple(parsed)


def parse_approval_level(data: dict[str, Any]) -> ApprovalLevelDef:
    return ApprovalLevelDef(
        name=data["name"],
        level_order=int(data["level_order"]),
        role=data["role"],
        min_amount=parse_amount(data.get("min_amount", 0), "min_amount"),
        max_amount=parse_amount(data.get("max_amount"), "max_amount"),
        is_active=bool(data.get("is_active", True)),
    )


def parse_approval_rule(data: dict[str, Any]) -> ApprovalRuleDef:
    """
    Parse an ``ApprovalRuleDef`` from a dict.

    Raises:
        KeyError: if ``name``, ``document_type`` or ``levels`` is missing.
    """
    return ApprovalRuleDef(
        name=data["name"],
        document_type=data["document_type"],
        min_amount=parse_amount(data.get("min_amount", 0), "min_amount"),
        max_amount=parse_amount(data.get("max_amount"), "max_amount"),
        levels=tuple(data["levels"]),
        is_active=bool(data.get("is_active", True)),
        description=data.get("description", ""),
    )


def load_config_set(path: Path) -> FulfillmentConfig:
    """Load and parse one configuration set file."""
    data = load_yaml_file(path)
    approvals = data.get("approvals", {})
    return FulfillmentConfig(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        timezone=data.get("timezone", "UTC"),
        general_code=data.get("general_code", "GEN"),
        document_types=parse_document_types(data.get("document_types", {})),
        override_roles=tuple(approvals.get("override_roles", ())),
        approval_levels=tuple(
            parse_approval_level(item) for item in approvals.get("levels", ())
        ),
        approval_rules=tuple(
            parse_approval_rule(item) for item in approvals.get("rules", ())
        ),
        checksum=compute_checksum(data),
        metadata={"source": str(path)},
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()

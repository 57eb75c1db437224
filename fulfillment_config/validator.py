"""
Configuration validator.

Checks a parsed ``FulfillmentConfig`` before any service sees it.  A
configuration with errors must not be activated.

Checks:
    - Business timezone is a known IANA zone.
    - Prefixes are two uppercase letters and unique across document types.
    - Approval level names and orders are unique; roles are present.
    - Rules reference existing levels, have a sane band, and no two active
      rules for one document type share the same band (ambiguous selection).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import NAMESPACE_URL, uuid5
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fulfillment_config.schema import FulfillmentConfig
from fulfillment_engines.approval import find_ambiguous_rules
from fulfillment_kernel.domain.approval import ApprovalRuleSpec
from fulfillment_kernel.domain.numbering import DEFAULT_PREFIXES, validate_prefix
from fulfillment_kernel.exceptions import ValidationError


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` is True only when ``errors`` is empty.  Warnings do not
    block activation but should be reviewed.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_config(config: FulfillmentConfig) -> ConfigValidationResult:
    """Validate a configuration set and collect every problem found."""
    result = ConfigValidationResult()

    _validate_timezone(config, result)
    _validate_prefixes(config, result)
    _validate_levels(config, result)
    _validate_rules(config, result)

    return result


def _validate_timezone(config: FulfillmentConfig, result: ConfigValidationResult) -> None:
    try:
        ZoneInfo(config.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        result.add_error(f"Unknown timezone '{config.timezone}'")


def _validate_prefixes(config: FulfillmentConfig, result: ConfigValidationResult) -> None:
    """Prefixes are two letters and map 1:1 to document types."""
    merged = {**DEFAULT_PREFIXES, **config.prefixes}
    seen_types: set[str] = set()
    for definition in config.document_types:
        if definition.document_type in seen_types:
            result.add_error(
                f"Document type '{definition.document_type}' declared more than once"
            )
        seen_types.add(definition.document_type)
        try:
            validate_prefix(definition.prefix)
        except ValidationError as exc:
            result.add_error(f"Document type '{definition.document_type}': {exc.message}")

    by_prefix: dict[str, list[str]] = {}
    for document_type, prefix in merged.items():
        by_prefix.setdefault(prefix, []).append(document_type)
    for prefix, types in sorted(by_prefix.items()):
        if len(types) > 1:
            result.add_error(
                f"Prefix '{prefix}' is shared by {', '.join(sorted(types))}"
            )


def _validate_levels(config: FulfillmentConfig, result: ConfigValidationResult) -> None:
    names: set[str] = set()
    orders: set[int] = set()
    for level in config.approval_levels:
        if level.name in names:
            result.add_error(f"Duplicate approval level '{level.name}'")
        names.add(level.name)
        if level.level_order < 1:
            result.add_error(f"Approval level '{level.name}': level_order must be >= 1")
        if level.level_order in orders:
            result.add_warning(
                f"Approval level '{level.name}' shares level_order {level.level_order}"
            )
        orders.add(level.level_order)
        if not level.role:
            result.add_error(f"Approval level '{level.name}' has no role")
        if level.max_amount is not None and level.max_amount <= level.min_amount:
            result.add_error(f"Approval level '{level.name}': empty amount band")


def _validate_rules(config: FulfillmentConfig, result: ConfigValidationResult) -> None:
    level_names = {level.name for level in config.approval_levels}
    known_types = set(DEFAULT_PREFIXES) | set(config.prefixes)
    rule_names: set[str] = set()
    specs: list[ApprovalRuleSpec] = []

    for rule in config.approval_rules:
        if rule.name in rule_names:
            result.add_error(f"Duplicate approval rule '{rule.name}'")
        rule_names.add(rule.name)

        if rule.document_type not in known_types:
            result.add_error(
                f"Approval rule '{rule.name}': unknown document type '{rule.document_type}'"
            )
        if rule.min_amount < 0:
            result.add_error(f"Approval rule '{rule.name}': min_amount is negative")
        if rule.max_amount is not None and rule.max_amount <= rule.min_amount:
            result.add_error(f"Approval rule '{rule.name}': empty amount band")
        if not rule.levels:
            result.add_error(f"Approval rule '{rule.name}' lists no levels")
        for name in rule.levels:
            if name not in level_names:
                result.add_error(
                    f"Approval rule '{rule.name}' references unknown level '{name}'"
                )
        if len(set(rule.levels)) != len(rule.levels):
            result.add_error(f"Approval rule '{rule.name}' lists a level twice")

        specs.append(ApprovalRuleSpec(
            rule_id=uuid5(NAMESPACE_URL, f"approval-rule:{rule.name}"),
            name=rule.name,
            document_type=rule.document_type,
            min_amount=rule.min_amount,
            max_amount=rule.max_amount,
            level_ids=(),
            is_active=rule.is_active,
        ))

    for first, second in find_ambiguous_rules(specs):
        result.add_error(
            f"Approval rules '{first.name}' and '{second.name}' have the same "
            f"band for {first.document_type}"
        )

    _warn_on_gaps(config, result)


def _warn_on_gaps(config: FulfillmentConfig, result: ConfigValidationResult) -> None:
    """Bands that do not start at zero leave small documents unapproved."""
    by_type: dict[str, list] = {}
    for rule in config.approval_rules:
        if rule.is_active:
            by_type.setdefault(rule.document_type, []).append(rule)
    for document_type, rules in sorted(by_type.items()):
        if min(r.min_amount for r in rules) > 0:
            result.add_warning(
                f"{document_type}: amounts below the lowest band need no approval"
            )

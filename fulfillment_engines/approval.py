"""
fulfillment_engines.approval -- Pure approval chain resolution.

Responsibility:
    Given the configured rules and levels, a document type and an amount,
    pick the applicable rule and expand it into the ordered chain of levels
    the document must clear.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import fulfillment_kernel/domain/ types and exceptions.

Invariants enforced:
    - Half-open bands: a rule matches when ``min_amount <= amount < max_amount``.
    - Most specific rule wins: the narrowest band; an unbounded band is
      wider than any bounded one.  Between equally wide bands the one
      starting higher wins.
    - Two matching rules with the *same* band are ambiguous and raise
      ``AmbiguousApprovalRuleError`` instead of picking silently.
    - Chain order is the rule's level order; inactive levels are skipped.

Failure modes:
    - Returns None when no rule matches (the document needs no approval).
    - ConfigurationError when a rule references an unknown level or has no
      active levels left.
    - ValidationError for a negative amount.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Mapping
from uuid import UUID

from fulfillment_kernel.domain.approval import (
    ApprovalChain,
    ApprovalLevelSpec,
    ApprovalRuleSpec,
)
from fulfillment_kernel.exceptions import (
    AmbiguousApprovalRuleError,
    ConfigurationError,
    ValidationError,
)


def _specificity(rule: ApprovalRuleSpec) -> tuple:
    """Sort key: most specific rule first."""
    width = rule.band_width
    return (width is None, width if width is not None else Decimal(0), -rule.min_amount)


def select_rule(
    rules: Iterable[ApprovalRuleSpec],
    document_type: str,
    amount: Decimal,
) -> ApprovalRuleSpec | None:
    """Return the most specific active rule whose band contains ``amount``."""
    if amount < 0:
        raise ValidationError("amount", f"must not be negative, got {amount}")

    candidates = sorted(
        (r for r in rules if r.matches(document_type, amount)),
        key=_specificity,
    )
    if not candidates:
        return None

    best = candidates[0]
    tied = [r for r in candidates if _specificity(r) == _specificity(best)]
    if len(tied) > 1:
        raise AmbiguousApprovalRuleError(
            document_type, str(amount), sorted(r.name for r in tied),
        )
    return best


def build_chain(
    rule: ApprovalRuleSpec,
    levels_by_id: Mapping[UUID, ApprovalLevelSpec],
) -> ApprovalChain:
    """Expand ``rule`` into its ordered, active levels."""
    levels: list[ApprovalLevelSpec] = []
    for level_id in rule.level_ids:
        level = levels_by_id.get(level_id)
        if level is None:
            raise ConfigurationError(
                f"Approval rule '{rule.name}' references unknown level {level_id}"
            )
        if level.is_active:
            levels.append(level)
    if not levels:
        raise ConfigurationError(
            f"Approval rule '{rule.name}' has no active approval levels"
        )
    return ApprovalChain(rule=rule, levels=tuple(levels))


def resolve_chain(
    rules: Iterable[ApprovalRuleSpec],
    levels: Iterable[ApprovalLevelSpec],
    document_type: str,
    amount: Decimal,
) -> ApprovalChain | None:
    """Select the rule for ``(document_type, amount)`` and expand it.

    Returns:
        The ordered chain, or None when the document needs no approval.
    """
    rule = select_rule(rules, document_type, amount)
    if rule is None:
        return None
    return build_chain(rule, {level.level_id: level for level in levels})


def find_ambiguous_rules(
    rules: Iterable[ApprovalRuleSpec],
) -> list[tuple[ApprovalRuleSpec, ApprovalRuleSpec]]:
    """Pairs of active rules for the same document type with identical bands."""
    by_band: dict[tuple, list[ApprovalRuleSpec]] = {}
    for rule in rules:
        if not rule.is_active:
            continue
        key = (rule.document_type, rule.min_amount, rule.max_amount)
        by_band.setdefault(key, []).append(rule)

    pairs: list[tuple[ApprovalRuleSpec, ApprovalRuleSpec]] = []
    for group in by_band.values():
        for i, first in enumerate(group):
            for second in group[i + 1:]:
                pairs.append((first, second))
    return pairs

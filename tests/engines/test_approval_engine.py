"""
Tests for the pure approval chain engine (``fulfillment_engines.approval``).

Tests cover:
- select_rule: half-open bands, narrowest band wins, ambiguity
- build_chain: rule order kept, inactive levels skipped, unknown levels
- resolve_chain: no matching rule means no approval
- find_ambiguous_rules: identical bands for the same document type
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from fulfillment_engines.approval import (
    build_chain,
    find_ambiguous_rules,
    resolve_chain,
    select_rule,
)
from fulfillment_kernel.domain.approval import ApprovalLevelSpec, ApprovalRuleSpec
from fulfillment_kernel.exceptions import (
    AmbiguousApprovalRuleError,
    ConfigurationError,
    ValidationError,
)


# =========================================================================
# Factory helpers
# =========================================================================


def make_level(name: str, order: int, role: str | None = None, is_active: bool = True) -> ApprovalLevelSpec:
    return ApprovalLevelSpec(
        level_id=uuid4(),
        name=name,
        level_order=order,
        role=role or name.upper(),
        is_active=is_active,
    )


def make_rule(
    name: str,
    min_amount: str,
    max_amount: str | None,
    levels: tuple[ApprovalLevelSpec, ...] = (),
    document_type: str = "QUOTATION",
    is_active: bool = True,
) -> ApprovalRuleSpec:
    return ApprovalRuleSpec(
        rule_id=uuid4(),
        name=name,
        document_type=document_type,
        min_amount=Decimal(min_amount),
        max_amount=None if max_amount is None else Decimal(max_amount),
        level_ids=tuple(level.level_id for level in levels),
        is_active=is_active,
    )


MANAGER = make_level("Manager", 1)
DIRECTOR = make_level("Director", 2)
CEO = make_level("CEO", 3)
LEVELS = (MANAGER, DIRECTOR, CEO)


# =========================================================================
# select_rule
# =========================================================================


class TestSelectRule:

    def test_band_is_half_open(self):
        low = make_rule("low", "0", "50000000", (MANAGER,))
        high = make_rule("high", "50000000", None, (MANAGER, DIRECTOR))
        assert select_rule([low, high], "QUOTATION", Decimal("49999999.99")) is low
        assert select_rule([low, high], "QUOTATION", Decimal("50000000")) is high

    def test_narrowest_band_wins(self):
        broad = make_rule("broad", "0", "1000000000", (MANAGER,))
        narrow = make_rule("narrow", "100000000", "200000000", (MANAGER, DIRECTOR))
        assert select_rule([broad, narrow], "QUOTATION", Decimal("150000000")) is narrow

    def test_bounded_band_beats_unbounded(self):
        unbounded = make_rule("unbounded", "10000000", None, (MANAGER,))
        bounded = make_rule("bounded", "0", "900000000", (MANAGER, DIRECTOR))
        assert select_rule([unbounded, bounded], "QUOTATION", Decimal("20000000")) is bounded

    def test_equal_width_prefers_higher_start(self):
        first = make_rule("first", "0", "100", (MANAGER,))
        second = make_rule("second", "50", "150", (MANAGER, DIRECTOR))
        assert select_rule([first, second], "QUOTATION", Decimal("75")) is second

    def test_identical_bands_are_ambiguous(self):
        one = make_rule("one", "0", "100", (MANAGER,))
        two = make_rule("two", "0", "100", (DIRECTOR,))
        with pytest.raises(AmbiguousApprovalRuleError) as exc_info:
            select_rule([one, two], "QUOTATION", Decimal("10"))
        assert exc_info.value.rule_names == ["one", "two"]

    def test_other_document_types_ignored(self):
        po = make_rule("po", "0", None, (MANAGER,), document_type="PURCHASE_ORDER")
        assert select_rule([po], "QUOTATION", Decimal("10")) is None

    def test_inactive_rules_ignored(self):
        off = make_rule("off", "0", None, (MANAGER,), is_active=False)
        assert select_rule([off], "QUOTATION", Decimal("10")) is None

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationError):
            select_rule([], "QUOTATION", Decimal("-1"))


# =========================================================================
# build_chain / resolve_chain
# =========================================================================


class TestChain:

    def test_chain_keeps_rule_order(self):
        rule = make_rule("r", "0", None, (MANAGER, DIRECTOR, CEO))
        chain = build_chain(rule, {lv.level_id: lv for lv in LEVELS})
        assert [lv.name for lv in chain.levels] == ["Manager", "Director", "CEO"]
        assert len(chain) == 3
        assert chain.level_ids == rule.level_ids

    def test_inactive_level_skipped(self):
        retired = make_level("Retired", 2, is_active=False)
        rule = make_rule("r", "0", None, (MANAGER, retired))
        levels = {lv.level_id: lv for lv in (MANAGER, retired)}
        assert [lv.name for lv in build_chain(rule, levels).levels] == ["Manager"]

    def test_no_active_levels(self):
        retired = make_level("Retired", 1, is_active=False)
        rule = make_rule("r", "0", None, (retired,))
        with pytest.raises(ConfigurationError):
            build_chain(rule, {retired.level_id: retired})

    def test_unknown_level(self):
        rule = make_rule("r", "0", None, (MANAGER,))
        with pytest.raises(ConfigurationError):
            build_chain(rule, {})

    def test_resolve_none_without_rule(self):
        assert resolve_chain([], LEVELS, "QUOTATION", Decimal("10")) is None

    def test_resolve_two_level_chain(self):
        rules = [
            make_rule("low", "0", "50000000", (MANAGER,)),
            make_rule("medium", "50000000", "200000000", (MANAGER, DIRECTOR)),
            make_rule("high", "200000000", None, (MANAGER, DIRECTOR, CEO)),
        ]
        chain = resolve_chain(rules, LEVELS, "QUOTATION", Decimal("75000000"))
        assert chain.rule.name == "medium"
        assert [lv.role for lv in chain.levels] == ["MANAGER", "DIRECTOR"]


class TestFindAmbiguousRules:

    def test_identical_bands_reported(self):
        one = make_rule("one", "0", "100", (MANAGER,))
        two = make_rule("two", "0", "100", (DIRECTOR,))
        three = make_rule("three", "100", None, (DIRECTOR,))
        assert find_ambiguous_rules([one, two, three]) == [(one, two)]

    def test_same_band_different_types_fine(self):
        quote = make_rule("quote", "0", "100", (MANAGER,))
        po = make_rule("po", "0", "100", (MANAGER,), document_type="PURCHASE_ORDER")
        assert find_ambiguous_rules([quote, po]) == []

    def test_inactive_duplicates_fine(self):
        one = make_rule("one", "0", "100", (MANAGER,))
        off = make_rule("off", "0", "100", (MANAGER,), is_active=False)
        assert find_ambiguous_rules([one, off]) == []

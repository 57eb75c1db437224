"""
FulfillmentConfig schema.

Defines the human-authored, reviewable configuration for document
numbering and approvals.  YAML sets are parsed into these types by the
loader, checked by the validator, and handed to services through the
bridges.  The kernel never imports this package.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentTypeDef:
    """A document type and the two-letter prefix its numbers carry."""

    document_type: str
    prefix: str
    description: str = ""


# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalLevelDef:
    """One step of an approval chain, satisfied by a role."""

    name: str
    level_order: int
    role: str
    min_amount: Decimal = Decimal("0")
    max_amount: Decimal | None = None
    is_active: bool = True


@dataclass(frozen=True)
class ApprovalRuleDef:
    """
    Maps (document_type, [min_amount, max_amount)) to an ordered chain.

    ``levels`` holds level *names*; the bridge resolves them to the
    persisted level ids.
    """

    name: str
    document_type: str
    min_amount: Decimal
    max_amount: Decimal | None
    levels: tuple[str, ...]
    is_active: bool = True
    description: str = ""


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FulfillmentConfig:
    """A complete, validated configuration set."""

    config_id: str
    version: int
    timezone: str
    general_code: str = "GEN"
    document_types: tuple[DocumentTypeDef, ...] = ()
    override_roles: tuple[str, ...] = ()
    approval_levels: tuple[ApprovalLevelDef, ...] = ()
    approval_rules: tuple[ApprovalRuleDef, ...] = ()
    checksum: str = ""
    metadata: dict = field(default_factory=dict, hash=False, compare=False)

    @property
    def prefixes(self) -> dict[str, str]:
        """Document type -> prefix map, as ``SequenceService`` expects."""
        return {d.document_type: d.prefix for d in self.document_types}

    def level(self, name: str) -> ApprovalLevelDef | None:
        for level in self.approval_levels:
            if level.name == name:
                return level
        return None

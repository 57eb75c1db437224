"""
Approval domain types (``fulfillment_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for multi-level approval chains: level and rule
definitions, the resolved chain for one document, the per-level approval
record, and the statuses of both the level and the overall workflow.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* Amount bands are half-open: ``min_amount <= amount < max_amount``;
  ``max_amount=None`` means unbounded.
* ``WORKFLOW_TRANSITIONS`` defines the only legal workflow status changes;
  terminal statuses have no outgoing edges.
* A level is decided exactly once: PENDING -> APPROVED | REJECTED.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol
from uuid import UUID


class ApprovalStatus(str, Enum):
    """Status of one level's approval row."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class WorkflowStatus(str, Enum):
    """Status of the whole chain for a document."""

    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


WORKFLOW_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.IN_PROGRESS: frozenset({
        WorkflowStatus.APPROVED,
        WorkflowStatus.REJECTED,
        WorkflowStatus.CANCELLED,
    }),
    WorkflowStatus.APPROVED: frozenset(),
    WorkflowStatus.REJECTED: frozenset(),
    WorkflowStatus.CANCELLED: frozenset(),
}

TERMINAL_WORKFLOW_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.APPROVED,
    WorkflowStatus.REJECTED,
    WorkflowStatus.CANCELLED,
})


class ApprovalDecision(str, Enum):
    """Decisions an approver can make on a level."""

    APPROVE = "APPROVE"
    REJECT = "REJECT"


def band_contains(
    min_amount: Decimal,
    max_amount: Decimal | None,
    amount: Decimal,
) -> bool:
    """Half-open band membership: ``[min_amount, max_amount)``."""
    if amount < min_amount:
        return False
    return max_amount is None or amount < max_amount


# =========================================================================
# Level and rule definitions
# =========================================================================


@dataclass(frozen=True)
class ApprovalLevelSpec:
    """One approving step: who (role) and, optionally, for which amounts."""

    level_id: UUID
    name: str
    level_order: int
    role: str
    min_amount: Decimal = Decimal("0")
    max_amount: Decimal | None = None
    is_active: bool = True

    def covers(self, amount: Decimal) -> bool:
        return band_contains(self.min_amount, self.max_amount, amount)


@dataclass(frozen=True)
class ApprovalRuleSpec:
    """Maps a document type and amount band to an ordered list of levels."""

    rule_id: UUID
    name: str
    document_type: str
    min_amount: Decimal
    max_amount: Decimal | None
    level_ids: tuple[UUID, ...]
    is_active: bool = True

    def matches(self, document_type: str, amount: Decimal) -> bool:
        return (
            self.is_active
            and self.document_type == document_type
            and band_contains(self.min_amount, self.max_amount, amount)
        )

    @property
    def band_width(self) -> Decimal | None:
        """Width of the band; None when unbounded."""
        if self.max_amount is None:
            return None
        return self.max_amount - self.min_amount


@dataclass(frozen=True)
class ApprovalChain:
    """The resolved, ordered levels a document has to clear."""

    rule: ApprovalRuleSpec
    levels: tuple[ApprovalLevelSpec, ...]

    @property
    def level_ids(self) -> tuple[UUID, ...]:
        return tuple(level.level_id for level in self.levels)

    def __len__(self) -> int:
        return len(self.levels)


# =========================================================================
# Documents and records
# =========================================================================


@dataclass(frozen=True)
class ApprovableDocument:
    """The document a chain is attached to."""

    document_type: str
    document_id: UUID
    amount: Decimal
    requested_by: UUID
    document_number: str | None = None


@dataclass(frozen=True)
class ApprovalRecord:
    """Read-side view of one approval row (one level of one workflow)."""

    approval_id: UUID
    workflow_id: UUID
    document_type: str
    document_id: UUID
    document_number: str | None
    amount: Decimal
    rule_name: str
    approval_level_id: UUID
    level_order: int
    required_role: str
    approval_chain: tuple[UUID, ...]
    status: ApprovalStatus
    workflow_status: WorkflowStatus
    requested_by: UUID
    approver_id: UUID | None
    next_approver_id: UUID | None
    notes: str | None
    requested_at: datetime
    approved_at: datetime | None
    final_approval_at: datetime | None

    @property
    def is_final_level(self) -> bool:
        return self.level_order >= len(self.approval_chain)

    @property
    def is_resolved(self) -> bool:
        return self.workflow_status in TERMINAL_WORKFLOW_STATUSES


class ApproverDirectory(Protocol):
    """Resolves the user who should act on a level with ``role``."""

    def __call__(self, role: str, document: ApprovableDocument) -> UUID | None:
        ...


def no_directory(role: str, document: ApprovableDocument) -> UUID | None:
    """Directory used when the application does not route approvals."""
    return None

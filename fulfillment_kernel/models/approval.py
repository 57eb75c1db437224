"""
Module: fulfillment_kernel.models.approval
Responsibility: ORM persistence for approval levels, approval rules (with
    their ordered level list) and per-level approval rows.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/approval.py only.

Invariants enforced:
    - Valid status / workflow_status values (check constraints).
    - At most one PENDING, IN_PROGRESS row per document (partial unique index).
    - (workflow_id, level_order) is unique: level_order strictly increases
      as a chain advances.
    - Rule level lists are ordered by ``position``, unique per rule.
    - Decided rows are immutable (ORM listener in db/immutability.py).

Failure modes:
    - IntegrityError on a second pending row for the same document.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment_kernel.db.base import Base, TrackedBase, UUIDString
from fulfillment_kernel.domain.approval import (
    ApprovalLevelSpec,
    ApprovalRecord,
    ApprovalRuleSpec,
    ApprovalStatus,
    WorkflowStatus,
)

_PENDING_ROW = "status = 'PENDING' AND workflow_status = 'IN_PROGRESS'"


class ApprovalLevelModel(TrackedBase):
    """An approving step bound to a role."""

    __tablename__ = "approval_levels"

    __table_args__ = (
        CheckConstraint("level_order >= 1", name="ck_approval_levels_order"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    level_order: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    min_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    max_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_spec(self) -> ApprovalLevelSpec:
        return ApprovalLevelSpec(
            level_id=self.id,
            name=self.name,
            level_order=self.level_order,
            role=self.role,
            min_amount=Decimal(self.min_amount),
            max_amount=None if self.max_amount is None else Decimal(self.max_amount),
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<ApprovalLevel {self.name} role={self.role}>"


class ApprovalRuleLevelModel(Base):
    """Position of one level inside one rule's chain."""

    __tablename__ = "approval_rule_levels"

    __table_args__ = (
        UniqueConstraint("rule_id", "position", name="uq_approval_rule_levels_position"),
        UniqueConstraint("rule_id", "level_id", name="uq_approval_rule_levels_level"),
    )

    rule_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_rules.id", ondelete="CASCADE"), nullable=False,
    )
    level_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_levels.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)


class ApprovalRuleModel(TrackedBase):
    """(document_type, [min_amount, max_amount)) -> ordered levels."""

    __tablename__ = "approval_rules"

    __table_args__ = (
        CheckConstraint("min_amount >= 0", name="ck_approval_rules_min"),
        CheckConstraint(
            "max_amount IS NULL OR max_amount > min_amount",
            name="ck_approval_rules_band",
        ),
        Index("idx_approval_rules_document_type", "document_type", "is_active"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    document_type: Mapped[str] = mapped_column(String(50), nullable=False)
    min_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    max_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    level_links: Mapped[list[ApprovalRuleLevelModel]] = relationship(
        ApprovalRuleLevelModel,
        order_by=ApprovalRuleLevelModel.position,
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_spec(self) -> ApprovalRuleSpec:
        return ApprovalRuleSpec(
            rule_id=self.id,
            name=self.name,
            document_type=self.document_type,
            min_amount=Decimal(self.min_amount),
            max_amount=None if self.max_amount is None else Decimal(self.max_amount),
            level_ids=tuple(link.level_id for link in self.level_links),
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<ApprovalRule {self.name} {self.document_type}>"


class ApprovalModel(Base):
    """One level of one approval workflow for one document."""

    __tablename__ = "approvals"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED')",
            name="ck_approvals_status",
        ),
        CheckConstraint(
            "workflow_status IN ('IN_PROGRESS', 'APPROVED', 'REJECTED', 'CANCELLED')",
            name="ck_approvals_workflow_status",
        ),
        CheckConstraint("level_order >= 1", name="ck_approvals_level_order"),
        UniqueConstraint("workflow_id", "level_order", name="uq_approvals_workflow_level"),
        Index(
            "ux_approvals_one_pending",
            "document_type", "document_id",
            unique=True,
            postgresql_where=text(_PENDING_ROW),
            sqlite_where=text(_PENDING_ROW),
        ),
        Index("idx_approvals_document", "document_type", "document_id", "requested_at"),
    )

    workflow_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    document_type: Mapped[str] = mapped_column(String(50), nullable=False)
    document_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    document_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    rule_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_rules.id"), nullable=False,
    )
    rule_name: Mapped[str] = mapped_column(String(100), nullable=False)
    approval_level_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_levels.id"), nullable=False,
    )
    level_order: Mapped[int] = mapped_column(Integer, nullable=False)
    required_role: Mapped[str] = mapped_column(String(50), nullable=False)
    # Snapshot of the chain's level ids at submission time
    approval_chain: Mapped[list] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ApprovalStatus.PENDING.value,
    )
    workflow_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WorkflowStatus.IN_PROGRESS.value,
    )

    requested_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    next_approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    final_approval_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def to_record(self) -> ApprovalRecord:
        return ApprovalRecord(
            approval_id=self.id,
            workflow_id=self.workflow_id,
            document_type=self.document_type,
            document_id=self.document_id,
            document_number=self.document_number,
            amount=Decimal(self.amount),
            rule_name=self.rule_name,
            approval_level_id=self.approval_level_id,
            level_order=self.level_order,
            required_role=self.required_role,
            approval_chain=tuple(UUID(v) for v in self.approval_chain),
            status=ApprovalStatus(self.status),
            workflow_status=WorkflowStatus(self.workflow_status),
            requested_by=self.requested_by_id,
            approver_id=self.approver_id,
            next_approver_id=self.next_approver_id,
            notes=self.notes,
            requested_at=self.requested_at,
            approved_at=self.approved_at,
            final_approval_at=self.final_approval_at,
        )

    def __repr__(self) -> str:
        return (
            f"<Approval {self.document_type}:{self.document_id} "
            f"L{self.level_order} {self.status}/{self.workflow_status}>"
        )

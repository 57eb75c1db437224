"""
fulfillment_kernel.services.approval_service -- Approval chain lifecycle.

Responsibility:
    Resolves the approval chain for a document, opens the first level,
    advances the chain level by level on approval, stops it on rejection,
    and cancels it on request.  Rule selection is delegated to the pure
    engine in ``fulfillment_engines.approval``.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/, and the
    pure engines.

Invariants enforced:
    - At most one PENDING level per document (service check + partial
      unique index).
    - level_order strictly increases within a workflow: 1, 2, ... n.
    - The workflow becomes terminal only when a level rejects (REJECTED),
      the final level approves (APPROVED), or it is cancelled (CANCELLED).
      Rejection never opens the next level.
    - A rejection needs a non-empty reason.
    - Only the level's role (or a configured override role) may decide it.

Failure modes:
    - ApprovalNotFoundError if the approval id is unknown.
    - AlreadyResolvedError when deciding a level that is not pending or a
      workflow that is already terminal.
    - DuplicateApprovalRequestError when the document already has a chain
      in progress.
    - UnauthorizedActorError for an actor without the level's role.
    - ValidationError for a missing rejection reason.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment_engines.approval import resolve_chain
from fulfillment_kernel.domain.approval import (
    TERMINAL_WORKFLOW_STATUSES,
    WORKFLOW_TRANSITIONS,
    ApprovableDocument,
    ApprovalChain,
    ApprovalDecision,
    ApprovalLevelSpec,
    ApprovalRecord,
    ApprovalStatus,
    ApproverDirectory,
    WorkflowStatus,
    no_directory,
)
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.exceptions import (
    AlreadyResolvedError,
    ApprovalNotFoundError,
    ConfigurationError,
    DuplicateApprovalRequestError,
    UnauthorizedActorError,
    ValidationError,
)
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.models.approval import (
    ApprovalLevelModel,
    ApprovalModel,
    ApprovalRuleModel,
)

logger = get_logger("services.approval")


class ApprovalService:
    """
    Persists and advances approval chains.

    Contract:
        Never commits; the caller owns the transaction.

    Usage:
        service = ApprovalService(session, clock, directory=lookup_user_by_role)
        first = service.submit(ApprovableDocument(
            document_type="QUOTATION", document_id=quote.id,
            amount=Decimal("12500000"), requested_by=sales_rep_id,
        ))
        if first is not None:
            service.advance(first.approval_id, ApprovalDecision.APPROVE,
                            actor_id=manager_id, actor_role="Manager")
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        directory: ApproverDirectory | None = None,
        override_roles: frozenset[str] = frozenset(),
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._directory = directory or no_directory
        self._override_roles = frozenset(override_roles)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_chain(
        self, document_type: str, amount: Decimal,
    ) -> ApprovalChain | None:
        """The ordered levels ``(document_type, amount)`` must clear, or None."""
        rules = self._session.execute(
            select(ApprovalRuleModel).where(
                ApprovalRuleModel.document_type == document_type,
                ApprovalRuleModel.is_active.is_(True),
            )
        ).scalars().all()
        if not rules:
            return None
        levels = self._session.execute(select(ApprovalLevelModel)).scalars().all()
        return resolve_chain(
            [r.to_spec() for r in rules],
            [lv.to_spec() for lv in levels],
            document_type,
            Decimal(amount),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def submit(self, document: ApprovableDocument) -> ApprovalRecord | None:
        """
        Open the first level of the document's chain.

        Returns:
            The PENDING level-1 approval, or None when no rule applies and
            the document needs no approval.
        """
        pending = self._pending_row(document.document_type, document.document_id)
        if pending is not None:
            raise DuplicateApprovalRequestError(
                document.document_type, str(document.document_id), str(pending.id),
            )

        chain = self.resolve_chain(document.document_type, document.amount)
        if chain is None:
            logger.info(
                "approval_not_required",
                extra={
                    "document_type": document.document_type,
                    "document_id": document.document_id,
                    "amount": document.amount,
                },
            )
            return None

        now = self._clock.now_utc()
        first = chain.levels[0]
        row = ApprovalModel(
            workflow_id=uuid4(),
            document_type=document.document_type,
            document_id=document.document_id,
            document_number=document.document_number,
            amount=document.amount,
            rule_id=chain.rule.rule_id,
            rule_name=chain.rule.name,
            approval_level_id=first.level_id,
            level_order=1,
            required_role=first.role,
            approval_chain=[str(level_id) for level_id in chain.level_ids],
            status=ApprovalStatus.PENDING.value,
            workflow_status=WorkflowStatus.IN_PROGRESS.value,
            requested_by_id=document.requested_by,
            next_approver_id=self._directory(first.role, document),
            requested_at=now,
        )
        self._session.add(row)
        self._session.flush()

        with LogContext.bind(document_number=document.document_number):
            logger.info(
                "approval_submitted",
                extra={
                    "approval_id": row.id,
                    "workflow_id": row.workflow_id,
                    "document_type": document.document_type,
                    "rule_name": chain.rule.name,
                    "chain_length": len(chain),
                    "required_role": first.role,
                },
            )
        return row.to_record()

    def advance(
        self,
        approval_id: UUID,
        decision: ApprovalDecision,
        *,
        actor_id: UUID,
        actor_role: str,
        notes: str | None = None,
    ) -> ApprovalRecord:
        """
        Decide the pending level ``approval_id``.

        APPROVE on a non-final level closes it and opens the next level;
        APPROVE on the final level completes the workflow as APPROVED;
        REJECT completes the workflow as REJECTED at once.

        Returns:
            The workflow's current row afterwards: the newly opened PENDING
            level, or the decided final row when the workflow is complete.
        """
        decision = ApprovalDecision(decision)
        if decision == ApprovalDecision.REJECT and (notes is None or not notes.strip()):
            raise ValidationError("notes", "a rejection reason is required")

        row = self._load_for_update(approval_id)
        self._require_open(row)

        if actor_role != row.required_role and actor_role not in self._override_roles:
            raise UnauthorizedActorError(
                str(actor_id), row.required_role, f"approval level {row.level_order}",
            )

        now = self._clock.now_utc()
        chain = [UUID(v) for v in row.approval_chain]
        is_final = row.level_order >= len(chain)

        row.approver_id = actor_id
        row.notes = notes
        row.approved_at = now

        if decision == ApprovalDecision.REJECT:
            row.status = ApprovalStatus.REJECTED.value
            self._finish(row, WorkflowStatus.REJECTED)
            self._session.flush()
            logger.info(
                "approval_rejected",
                extra={
                    "approval_id": row.id,
                    "workflow_id": row.workflow_id,
                    "level_order": row.level_order,
                    "actor_id": actor_id,
                },
            )
            return row.to_record()

        row.status = ApprovalStatus.APPROVED.value
        if is_final:
            self._finish(row, WorkflowStatus.APPROVED)
            row.final_approval_at = now
            self._session.flush()
            logger.info(
                "approval_completed",
                extra={
                    "approval_id": row.id,
                    "workflow_id": row.workflow_id,
                    "levels": len(chain),
                    "document_id": row.document_id,
                },
            )
            return row.to_record()

        # Close this level before opening the next one: the partial unique
        # index allows a single pending row per document.
        self._session.flush()
        next_level = self._level_spec(chain[row.level_order])
        document = ApprovableDocument(
            document_type=row.document_type,
            document_id=row.document_id,
            amount=Decimal(row.amount),
            requested_by=row.requested_by_id,
            document_number=row.document_number,
        )
        next_row = ApprovalModel(
            workflow_id=row.workflow_id,
            document_type=row.document_type,
            document_id=row.document_id,
            document_number=row.document_number,
            amount=row.amount,
            rule_id=row.rule_id,
            rule_name=row.rule_name,
            approval_level_id=next_level.level_id,
            level_order=row.level_order + 1,
            required_role=next_level.role,
            approval_chain=list(row.approval_chain),
            status=ApprovalStatus.PENDING.value,
            workflow_status=WorkflowStatus.IN_PROGRESS.value,
            requested_by_id=row.requested_by_id,
            next_approver_id=self._directory(next_level.role, document),
            requested_at=now,
        )
        self._session.add(next_row)
        self._session.flush()

        logger.info(
            "approval_advanced",
            extra={
                "workflow_id": row.workflow_id,
                "from_level": row.level_order,
                "to_level": next_row.level_order,
                "required_role": next_level.role,
                "actor_id": actor_id,
            },
        )
        return next_row.to_record()

    def cancel(
        self,
        document_type: str,
        document_id: UUID,
        *,
        actor_id: UUID,
        reason: str,
    ) -> ApprovalRecord:
        """Withdraw the document's chain in progress."""
        if reason is None or not reason.strip():
            raise ValidationError("reason", "a cancellation reason is required")
        row = self._pending_row(document_type, document_id, for_update=True)
        if row is None:
            latest = self._latest_row(document_type, document_id)
            if latest is None:
                raise ApprovalNotFoundError(f"{document_type}:{document_id}")
            raise AlreadyResolvedError(str(latest.id), latest.workflow_status)

        row.notes = reason
        self._finish(row, WorkflowStatus.CANCELLED)
        self._session.flush()
        logger.info(
            "approval_cancelled",
            extra={
                "approval_id": row.id,
                "workflow_id": row.workflow_id,
                "actor_id": actor_id,
            },
        )
        return row.to_record()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, approval_id: UUID) -> ApprovalRecord:
        row = self._session.get(ApprovalModel, approval_id)
        if row is None:
            raise ApprovalNotFoundError(str(approval_id))
        return row.to_record()

    def current_pending(self, document_type: str, document_id: UUID) -> ApprovalRecord | None:
        row = self._pending_row(document_type, document_id)
        return None if row is None else row.to_record()

    def history(self, document_type: str, document_id: UUID) -> list[ApprovalRecord]:
        """Every approval row for the document, oldest workflow first."""
        rows = self._session.execute(
            select(ApprovalModel)
            .where(
                ApprovalModel.document_type == document_type,
                ApprovalModel.document_id == document_id,
            )
            .order_by(ApprovalModel.requested_at, ApprovalModel.level_order)
        ).scalars().all()
        return [row.to_record() for row in rows]

    def workflow_status(self, document_type: str, document_id: UUID) -> WorkflowStatus | None:
        """Status of the document's latest workflow; None if never submitted."""
        row = self._latest_row(document_type, document_id)
        return None if row is None else WorkflowStatus(row.workflow_status)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finish(self, row: ApprovalModel, status: WorkflowStatus) -> None:
        current = WorkflowStatus(row.workflow_status)
        if status not in WORKFLOW_TRANSITIONS[current]:
            raise AlreadyResolvedError(str(row.id), row.workflow_status)
        row.workflow_status = status.value

    def _require_open(self, row: ApprovalModel) -> None:
        latest = self._latest_in_workflow(row.workflow_id)
        if WorkflowStatus(latest.workflow_status) in TERMINAL_WORKFLOW_STATUSES:
            raise AlreadyResolvedError(str(row.id), latest.workflow_status)
        if row.status != ApprovalStatus.PENDING.value:
            raise AlreadyResolvedError(str(row.id), row.workflow_status)

    def _load_for_update(self, approval_id: UUID) -> ApprovalModel:
        row = self._session.execute(
            select(ApprovalModel)
            .where(ApprovalModel.id == approval_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise ApprovalNotFoundError(str(approval_id))
        return row

    def _level_spec(self, level_id: UUID) -> ApprovalLevelSpec:
        level = self._session.get(ApprovalLevelModel, level_id)
        if level is None:
            raise ConfigurationError(f"Approval level {level_id} no longer exists")
        return level.to_spec()

    def _pending_row(
        self, document_type: str, document_id: UUID, for_update: bool = False,
    ) -> ApprovalModel | None:
        stmt = select(ApprovalModel).where(
            ApprovalModel.document_type == document_type,
            ApprovalModel.document_id == document_id,
            ApprovalModel.status == ApprovalStatus.PENDING.value,
            ApprovalModel.workflow_status == WorkflowStatus.IN_PROGRESS.value,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def _latest_row(self, document_type: str, document_id: UUID) -> ApprovalModel | None:
        return self._session.execute(
            select(ApprovalModel)
            .where(
                ApprovalModel.document_type == document_type,
                ApprovalModel.document_id == document_id,
            )
            .order_by(
                ApprovalModel.requested_at.desc(),
                ApprovalModel.level_order.desc(),
            )
            .limit(1)
        ).scalar_one_or_none()

    def _latest_in_workflow(self, workflow_id: UUID) -> ApprovalModel:
        return self._session.execute(
            select(ApprovalModel)
            .where(ApprovalModel.workflow_id == workflow_id)
            .order_by(ApprovalModel.level_order.desc())
            .limit(1)
        ).scalar_one()

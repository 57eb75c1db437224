"""
Tests for ApprovalService.

Scenario (default configuration):
    quotation_low     [0, 50M)    Manager
    quotation_medium  [50M, 200M) Manager -> Director
    quotation_high    [200M, oo)  Manager -> Director -> CEO

Invariants tested:
- Level N+1 opens only after level N approves; rejection opens nothing.
- At most one pending level per document.
- A decided level cannot be decided again.
- Only the level's role (or an override role) may decide.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from fulfillment_config import get_active_config
from fulfillment_config.bridges import seed_approval_configuration
from fulfillment_kernel.domain.approval import (
    ApprovableDocument,
    ApprovalDecision,
    ApprovalStatus,
    WorkflowStatus,
)
from fulfillment_kernel.exceptions import (
    AlreadyResolvedError,
    ApprovalNotFoundError,
    DuplicateApprovalRequestError,
    UnauthorizedActorError,
    ValidationError,
)
from fulfillment_kernel.services.approval_service import ApprovalService


@pytest.fixture
def approval_rules(session, test_actor_id):
    return seed_approval_configuration(session, get_active_config(), test_actor_id)


@pytest.fixture
def quotation(test_actor_id):
    """Factory for an approvable quotation of a given amount."""

    def _make(amount: str) -> ApprovableDocument:
        return ApprovableDocument(
            document_type="QUOTATION",
            document_id=uuid4(),
            amount=Decimal(amount),
            requested_by=test_actor_id,
            document_number="PQ-001/JKT/11-2025",
        )

    return _make


def approve(service, record, role, **kwargs):
    return service.advance(
        record.approval_id, ApprovalDecision.APPROVE,
        actor_id=uuid4(), actor_role=role, **kwargs,
    )


class TestResolution:

    @pytest.mark.parametrize("amount, rule, roles", [
        ("12500000", "quotation_low", ["MANAGER"]),
        ("75000000", "quotation_medium", ["MANAGER", "DIRECTOR"]),
        ("250000000", "quotation_high", ["MANAGER", "DIRECTOR", "CEO"]),
    ])
    def test_chain_by_amount(self, approval_service, approval_rules, amount, rule, roles):
        chain = approval_service.resolve_chain("QUOTATION", Decimal(amount))
        assert chain.rule.name == rule
        assert [level.role for level in chain.levels] == roles

    def test_amount_below_every_band_needs_no_approval(self, approval_service, approval_rules, test_actor_id):
        document = ApprovableDocument(
            document_type="PURCHASE_ORDER", document_id=uuid4(),
            amount=Decimal("5000000"), requested_by=test_actor_id,
        )
        assert approval_service.submit(document) is None
        assert approval_service.workflow_status("PURCHASE_ORDER", document.document_id) is None

    def test_document_type_without_rules(self, approval_service, approval_rules):
        assert approval_service.resolve_chain("INVOICE", Decimal("1")) is None


class TestTwoLevelChain:

    def test_submit_opens_level_one(self, approval_service, approval_rules, quotation):
        record = approval_service.submit(quotation("75000000"))
        assert record.level_order == 1
        assert record.required_role == "MANAGER"
        assert record.status == ApprovalStatus.PENDING
        assert record.workflow_status == WorkflowStatus.IN_PROGRESS
        assert len(record.approval_chain) == 2
        assert record.rule_name == "quotation_medium"

    def test_level_two_opens_after_level_one(self, approval_service, approval_rules, quotation):
        document = quotation("75000000")
        first = approval_service.submit(document)

        second = approve(approval_service, first, "MANAGER")
        assert second.level_order == 2
        assert second.required_role == "DIRECTOR"
        assert second.status == ApprovalStatus.PENDING
        assert second.workflow_id == first.workflow_id
        assert approval_service.get(first.approval_id).status == ApprovalStatus.APPROVED

        final = approve(approval_service, second, "DIRECTOR", notes="OK")
        assert final.status == ApprovalStatus.APPROVED
        assert final.workflow_status == WorkflowStatus.APPROVED
        assert final.final_approval_at is not None
        assert approval_service.current_pending("QUOTATION", document.document_id) is None
        assert approval_service.workflow_status(
            "QUOTATION", document.document_id,
        ) == WorkflowStatus.APPROVED

    def test_rejection_at_level_one_opens_nothing(self, approval_service, approval_rules, quotation):
        document = quotation("75000000")
        first = approval_service.submit(document)

        rejected = approval_service.advance(
            first.approval_id, ApprovalDecision.REJECT,
            actor_id=uuid4(), actor_role="MANAGER", notes="Margin too thin",
        )
        assert rejected.status == ApprovalStatus.REJECTED
        assert rejected.workflow_status == WorkflowStatus.REJECTED
        assert rejected.notes == "Margin too thin"

        history = approval_service.history("QUOTATION", document.document_id)
        assert [r.level_order for r in history] == [1]
        assert approval_service.current_pending("QUOTATION", document.document_id) is None

    def test_rejection_needs_a_reason(self, approval_service, approval_rules, quotation):
        first = approval_service.submit(quotation("75000000"))
        with pytest.raises(ValidationError):
            approval_service.advance(
                first.approval_id, ApprovalDecision.REJECT,
                actor_id=uuid4(), actor_role="MANAGER", notes=" ",
            )
        assert approval_service.get(first.approval_id).status == ApprovalStatus.PENDING

    def test_history_in_level_order(self, approval_service, approval_rules, quotation):
        document = quotation("250000000")
        record = approval_service.submit(document)
        for role in ("MANAGER", "DIRECTOR", "CEO"):
            record = approve(approval_service, record, role)

        history = approval_service.history("QUOTATION", document.document_id)
        assert [r.level_order for r in history] == [1, 2, 3]
        assert all(r.status == ApprovalStatus.APPROVED for r in history)
        assert history[-1].workflow_status == WorkflowStatus.APPROVED


class TestDecisionRules:

    def test_level_decided_once(self, approval_service, approval_rules, quotation):
        first = approval_service.submit(quotation("12500000"))
        approve(approval_service, first, "MANAGER")
        with pytest.raises(AlreadyResolvedError):
            approve(approval_service, first, "MANAGER")

    def test_earlier_level_cannot_be_redecided(self, approval_service, approval_rules, quotation):
        first = approval_service.submit(quotation("75000000"))
        approve(approval_service, first, "MANAGER")
        with pytest.raises(AlreadyResolvedError):
            approval_service.advance(
                first.approval_id, ApprovalDecision.REJECT,
                actor_id=uuid4(), actor_role="MANAGER", notes="Changed my mind",
            )

    def test_wrong_role_rejected(self, approval_service, approval_rules, quotation):
        first = approval_service.submit(quotation("75000000"))
        with pytest.raises(UnauthorizedActorError) as exc_info:
            approve(approval_service, first, "DIRECTOR")
        assert exc_info.value.required == "MANAGER"

    def test_override_role_may_decide_any_level(self, approval_service, approval_rules, quotation):
        first = approval_service.submit(quotation("75000000"))
        second = approve(approval_service, first, "ADMIN")
        final = approve(approval_service, second, "ADMIN")
        assert final.workflow_status == WorkflowStatus.APPROVED

    def test_no_override_without_configuration(self, session, deterministic_clock, approval_rules, quotation):
        service = ApprovalService(session, deterministic_clock)
        first = service.submit(quotation("75000000"))
        with pytest.raises(UnauthorizedActorError):
            approve(service, first, "ADMIN")

    def test_unknown_approval(self, approval_service, approval_rules):
        with pytest.raises(ApprovalNotFoundError):
            approval_service.get(uuid4())
        with pytest.raises(ApprovalNotFoundError):
            approval_service.advance(
                uuid4(), ApprovalDecision.APPROVE, actor_id=uuid4(), actor_role="MANAGER",
            )


class TestSubmitAndCancel:

    def test_duplicate_submit_rejected(self, approval_service, approval_rules, quotation):
        document = quotation("75000000")
        first = approval_service.submit(document)
        with pytest.raises(DuplicateApprovalRequestError) as exc_info:
            approval_service.submit(document)
        assert exc_info.value.pending_id == str(first.approval_id)

    def test_cancel_in_progress(self, approval_service, approval_rules, quotation, test_actor_id):
        document = quotation("75000000")
        first = approval_service.submit(document)

        cancelled = approval_service.cancel(
            "QUOTATION", document.document_id,
            actor_id=test_actor_id, reason="Customer withdrew",
        )
        assert cancelled.workflow_status == WorkflowStatus.CANCELLED
        assert approval_service.workflow_status(
            "QUOTATION", document.document_id,
        ) == WorkflowStatus.CANCELLED

        with pytest.raises(AlreadyResolvedError):
            approve(approval_service, first, "MANAGER")
        with pytest.raises(AlreadyResolvedError):
            approval_service.cancel(
                "QUOTATION", document.document_id,
                actor_id=test_actor_id, reason="Again",
            )

    def test_cancel_needs_reason(self, approval_service, approval_rules, quotation, test_actor_id):
        document = quotation("75000000")
        approval_service.submit(document)
        with pytest.raises(ValidationError):
            approval_service.cancel(
                "QUOTATION", document.document_id, actor_id=test_actor_id, reason="",
            )

    def test_cancel_without_workflow(self, approval_service, approval_rules, test_actor_id):
        with pytest.raises(ApprovalNotFoundError):
            approval_service.cancel(
                "QUOTATION", uuid4(), actor_id=test_actor_id, reason="Nothing there",
            )

    def test_resubmit_after_rejection(
        self, approval_service, approval_rules, quotation, deterministic_clock,
    ):
        document = quotation("12500000")
        first = approval_service.submit(document)
        approval_service.advance(
            first.approval_id, ApprovalDecision.REJECT,
            actor_id=uuid4(), actor_role="MANAGER", notes="Wrong customer",
        )

        deterministic_clock.advance(3600)
        again = approval_service.submit(document)
        assert again.workflow_id != first.workflow_id
        assert again.level_order == 1
        assert approval_service.workflow_status(
            "QUOTATION", document.document_id,
        ) == WorkflowStatus.IN_PROGRESS


def test_directory_names_next_approver(session, deterministic_clock, approval_rules, quotation):
    manager_id, director_id = uuid4(), uuid4()
    people = {"MANAGER": manager_id, "DIRECTOR": director_id}
    service = ApprovalService(
        session, deterministic_clock,
        directory=lambda role, document: people.get(role),
    )

    first = service.submit(quotation("75000000"))
    assert first.next_approver_id == manager_id
    second = approve(service, first, "MANAGER")
    assert second.next_approver_id == director_id


def test_submission_logged(approval_service, approval_rules, quotation, captured_logs):
    approval_service.submit(quotation("75000000"))
    records = [r for r in captured_logs() if r["message"] == "approval_submitted"]
    assert records[-1]["rule_name"] == "quotation_medium"
    assert records[-1]["chain_length"] == 2
    assert records[-1]["document_number"] == "PQ-001/JKT/11-2025"

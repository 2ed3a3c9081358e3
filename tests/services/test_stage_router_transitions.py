"""
Tests for StageRouter (``approval_kernel.services.stage_router``).

Invariants tested:
- At most one stage is in progress per request.
- Approval checks run in order: state, approver rule, upload.
- Stages activate strictly in order, whatever their approval threshold.
- Stage changes are compare-and-set; a lost race raises
  StageTransitionConflictError.
- Every command writes exactly one audit entry.
"""

from collections import Counter
from decimal import Decimal

import pytest

from approval_kernel.domain.roles import Role
from approval_kernel.domain.routing import StageSpec
from approval_kernel.domain.workflow import LedgerAction, RequestStatus, StageStatus
from approval_kernel.exceptions import (
    InvalidRequestStateError,
    InvalidStageStateError,
    MissingCommentError,
    MissingUploadError,
    StageTransitionConflictError,
    UnauthorizedError,
)
from approval_kernel.models.audit_entry import AuditAction


def _statuses(request):
    return [s.status for s in sorted(request.stages, key=lambda s: s.stage_order)]


class TestSubmit:

    def test_first_stage_becomes_active(self, router, make_draft, requester):
        request = make_draft(requester)
        outcome = router.submit(request.id, requester)

        assert outcome.request.status is RequestStatus.IN_PROGRESS
        assert outcome.activated_stage.name == "PPIC Review"
        assert outcome.request.submitted_at is not None
        assert _statuses(request) == ["in_progress", "pending", "pending"]

    def test_only_owner_or_admin(self, router, make_draft, requester, cfo, admin):
        request = make_draft(requester)
        with pytest.raises(UnauthorizedError):
            router.submit(request.id, cfo)
        assert router.submit(request.id, admin).request.status is RequestStatus.IN_PROGRESS

    def test_twice_rejected(self, router, make_draft, requester):
        request = make_draft(requester)
        router.submit(request.id, requester)
        with pytest.raises(InvalidRequestStateError):
            router.submit(request.id, requester)

    def test_threshold_stage_activated_regardless_of_amount(self, router, make_draft, requester, cfo):
        stages = (
            StageSpec(1, "CFO Approval", required_role=Role.CFO, approval_threshold=Decimal("1000000")),
            StageSpec(2, "CEO Approval", required_role=Role.CEO, approval_threshold=Decimal("5000000")),
        )
        request = make_draft(requester, stages, amount=Decimal("10"))
        outcome = router.submit(request.id, requester)

        assert outcome.request.status is RequestStatus.IN_PROGRESS
        assert outcome.activated_stage.name == "CFO Approval"
        assert outcome.activated_stage.approval_threshold == Decimal("1000000")
        assert _statuses(request) == ["in_progress", "pending"]

        approved = router.approve(outcome.activated_stage.id, cfo)
        assert approved.request.status is RequestStatus.IN_PROGRESS
        assert approved.activated_stage.name == "CEO Approval"
        assert _statuses(request) == ["completed", "in_progress"]


class TestApprove:

    def test_checks_state_before_role(self, router, make_draft, requester, cfo):
        request = make_draft(requester)
        router.submit(request.id, requester)
        later_stage = request.stages[2]
        with pytest.raises(InvalidStageStateError):
            router.approve(later_stage.id, cfo)

    def test_draft_request_rejected(self, router, make_draft, requester, ppic):
        request = make_draft(requester)
        with pytest.raises(InvalidRequestStateError):
            router.approve(request.stages[0].id, ppic)

    def test_wrong_role_rejected(self, router, make_draft, requester, purchasing):
        request = make_draft(requester)
        router.submit(request.id, requester)
        with pytest.raises(UnauthorizedError) as exc_info:
            router.approve(request.stages[0].id, purchasing)
        assert "requires role PPIC" in exc_info.value.reason

    def test_upload_required_for_non_executives(self, router, attachments, make_draft, requester, ppic):
        request = make_draft(requester)
        router.submit(request.id, requester)
        stage_id = request.stages[0].id
        with pytest.raises(MissingUploadError, match="Upload required before approval"):
            router.approve(stage_id, ppic)

        attachments.attach(request.id, stage_id, ppic, "signed.pdf", b"%PDF")
        outcome = router.approve(stage_id, ppic, "ok")

        assert outcome.stage.status is StageStatus.COMPLETED
        assert outcome.activated_stage.name == "Purchasing Review"
        assert outcome.ledger_entry.action is LedgerAction.APPROVED
        assert outcome.ledger_entry.comment == "ok"

    def test_upload_by_someone_else_does_not_count(
        self, router, attachments, make_draft, requester, ppic,
    ):
        request = make_draft(requester)
        router.submit(request.id, requester)
        stage_id = request.stages[0].id
        attachments.attach(request.id, stage_id, requester, "draft.pdf", b"x")
        with pytest.raises(MissingUploadError):
            router.approve(stage_id, ppic)

    def test_admin_and_executive_paths_complete_request(self, router, make_draft, requester, admin, cfo):
        request = make_draft(requester)
        router.submit(request.id, requester)
        with pytest.raises(MissingUploadError):
            router.approve(request.stages[0].id, admin)

        stages = (StageSpec(1, "CFO Approval", required_role=Role.CFO),)
        exec_request = make_draft(requester, stages)
        router.submit(exec_request.id, requester)
        outcome = router.approve(exec_request.stages[0].id, cfo)

        assert outcome.request.status is RequestStatus.COMPLETED
        assert outcome.request.completed_at is not None

    def test_double_approve_same_stage(self, router, make_draft, requester, cfo):
        stages = (
            StageSpec(1, "CFO Approval", required_role=Role.CFO),
            StageSpec(2, "CFO Countersign", required_role=Role.CFO),
        )
        request = make_draft(requester, stages)
        router.submit(request.id, requester)
        router.approve(request.stages[0].id, cfo)
        with pytest.raises(InvalidStageStateError):
            router.approve(request.stages[0].id, cfo)


class TestReject:

    def test_rejection_ends_request_and_keeps_later_stages_pending(
        self, router, make_draft, requester, ppic,
    ):
        request = make_draft(requester)
        router.submit(request.id, requester)
        outcome = router.reject(request.stages[0].id, ppic, "wrong part numbers")

        assert outcome.request.status is RequestStatus.REJECTED
        assert outcome.ledger_entry.action is LedgerAction.REJECTED
        assert _statuses(request) == ["rejected", "pending", "pending"]

    def test_comment_required(self, router, make_draft, requester, ppic):
        request = make_draft(requester)
        router.submit(request.id, requester)
        with pytest.raises(MissingCommentError):
            router.reject(request.stages[0].id, ppic, "   ")

    def test_role_checked_before_comment(self, router, make_draft, requester, finance):
        request = make_draft(requester)
        router.submit(request.id, requester)
        with pytest.raises(UnauthorizedError):
            router.reject(request.stages[0].id, finance, "")


class TestComment:

    def test_comment_on_pending_stage_by_viewer(self, router, ledger, make_draft, requester, finance):
        request = make_draft(requester)
        router.submit(request.id, requester)
        cfo_stage = request.stages[2]
        outcome = router.comment(cfo_stage.id, finance, "budget code 4411")

        assert outcome.stage.status is StageStatus.PENDING
        assert ledger.entries_for_stage(cfo_stage.id, LedgerAction.COMMENTED)[0].comment == "budget code 4411"

    def test_non_viewer_rejected(self, router, make_draft, requester, logistics):
        request = make_draft(requester)
        with pytest.raises(UnauthorizedError):
            router.comment(request.stages[0].id, logistics, "hello")

    def test_terminal_request_rejected(self, router, make_draft, requester, ppic):
        request = make_draft(requester)
        router.submit(request.id, requester)
        router.reject(request.stages[0].id, ppic, "no")
        with pytest.raises(InvalidRequestStateError):
            router.comment(request.stages[0].id, requester, "why?")


class TestSideExits:

    def test_discontinue_from_rejected(self, router, make_draft, requester, ppic):
        request = make_draft(requester)
        router.submit(request.id, requester)
        router.reject(request.stages[0].id, ppic, "no")
        outcome = router.discontinue(request.id, requester, "supplier gone")

        assert outcome.request.status is RequestStatus.DISCONTINUED
        assert outcome.request.metadata.discontinue_reason == "supplier gone"
        assert outcome.request.metadata.discontinued_at is not None

    def test_discontinue_blocked_after_completion(self, router, make_draft, requester, cfo):
        stages = (StageSpec(1, "CFO Approval", required_role=Role.CFO),)
        request = make_draft(requester, stages)
        router.submit(request.id, requester)
        router.approve(request.stages[0].id, cfo)
        with pytest.raises(InvalidRequestStateError):
            router.discontinue(request.id, requester)

    def test_archive_admin_only_from_any_state(self, router, make_draft, requester, ceo, admin):
        request = make_draft(requester)
        with pytest.raises(UnauthorizedError):
            router.archive(request.id, ceo)
        outcome = router.archive(request.id, admin)
        assert outcome.request.status is RequestStatus.ARCHIVED
        assert router.archive(request.id, admin).request.status is RequestStatus.ARCHIVED

    def test_cancel_skips_active_stage(self, router, make_draft, requester):
        request = make_draft(requester)
        router.submit(request.id, requester)
        outcome = router.cancel(request.id, requester, "duplicate")

        assert outcome.request.status is RequestStatus.CANCELLED
        assert outcome.request.metadata.cancel_reason == "duplicate"
        assert _statuses(request) == ["skipped", "pending", "pending"]

    def test_cancel_blocked_after_a_decision(self, router, attachments, make_draft, requester, ppic):
        request = make_draft(requester)
        router.submit(request.id, requester)
        attachments.attach(request.id, request.stages[0].id, ppic, "signed.pdf", b"x")
        router.approve(request.stages[0].id, ppic)
        with pytest.raises(InvalidRequestStateError):
            router.cancel(request.id, requester)


class TestCompareAndSet:

    def test_lost_race_raises_conflict(self, router, make_draft, requester):
        request = make_draft(requester)
        router.submit(request.id, requester)
        stage = request.stages[0]
        with pytest.raises(StageTransitionConflictError):
            router._compare_and_set_stage(stage, StageStatus.PENDING, StageStatus.IN_PROGRESS)


class TestAuditPerCommand:

    def test_one_entry_per_command(self, router, auditor, attachments, make_draft, requester, ppic, admin):
        request = make_draft(requester)
        router.submit(request.id, requester)
        router.comment(request.stages[0].id, ppic, "checking")
        attachments.attach(request.id, request.stages[0].id, ppic, "signed.pdf", b"x")
        router.approve(request.stages[0].id, ppic)
        router.discontinue(request.id, requester)
        router.archive(request.id, admin)

        actions = Counter(e.action for e in auditor.entries_for_request(request.id))
        assert actions == Counter({
            AuditAction.REQUEST_SUBMITTED.value: 1,
            AuditAction.STAGE_COMMENTED.value: 1,
            AuditAction.ATTACHMENT_UPLOADED.value: 1,
            AuditAction.STAGE_APPROVED.value: 1,
            AuditAction.REQUEST_DISCONTINUED.value: 1,
            AuditAction.REQUEST_ARCHIVED.value: 1,
        })

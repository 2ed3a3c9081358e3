"""
StageRouter -- the request/stage state machine.

Responsibility:
    Owns every status transition of a request and its stages after
    creation: submit, approve, reject, comment, discontinue, archive and
    cancel.  Evaluates the preconditions of each (ownership, approver rule,
    upload, comment, current status), appends the ledger entry, advances
    or terminates the request, and writes exactly one audit entry.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the orchestrator,
    which owns the transaction.  Uses LedgerService, AttachmentService and
    AuditorService from the same session.

Invariants enforced:
    - Transitions follow ``REQUEST_TRANSITIONS`` / ``STAGE_TRANSITIONS``.
    - At most one stage per request is ``in_progress``.
    - Stage status changes are compare-and-set:
      ``UPDATE stages SET status = :target WHERE id = :id AND status = :expected``.
      Zero rows updated means a concurrent writer won.
    - Rows are locked request-first (``SELECT ... FOR UPDATE``) so two
      commands on one request serialize; the loser re-reads the stage and
      fails with InvalidStageStateError.
    - No stage changes once the request is terminal.
    - A rejected stage leaves later stages ``pending``.
    - Approval activates the next stage by order; every stage is approved
      before the request completes.

Failure modes:
    - RequestNotFoundError / StageNotFoundError.
    - UnauthorizedError (ownership, admin-only, approver rule, visibility).
    - InvalidRequestStateError / InvalidStageStateError.
    - MissingUploadError / MissingCommentError.
    - StageTransitionConflictError (compare-and-set lost).

Audit relevance:
    Exactly one audit entry per command.  Approve and reject entries name
    the stage; entries of commands that activated a stage name it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from approval_kernel.domain.authorization import authorize_approver
from approval_kernel.domain.access import can_view
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.roles import is_admin, is_signature_exempt
from approval_kernel.domain.workflow import (
    LedgerAction,
    LedgerEntry,
    Principal,
    Request,
    RequestMetadata,
    RequestStatus,
    Stage,
    StageStatus,
    TERMINAL_REQUEST_STATUSES,
    can_transition_request,
    can_transition_stage,
)
from approval_kernel.exceptions import (
    InvalidRequestStateError,
    InvalidStageStateError,
    MissingCommentError,
    MissingUploadError,
    RequestNotFoundError,
    StageNotFoundError,
    StageTransitionConflictError,
    UnauthorizedError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_entry import AuditAction
from approval_kernel.models.request import RequestModel, StageModel
from approval_kernel.services.attachment_service import AttachmentService
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.ledger_service import LedgerService

logger = get_logger("services.stage_router")

# Request statuses discontinue refuses; rejected requests may still be discontinued.
_DISCONTINUE_BLOCKED: frozenset[RequestStatus] = frozenset({
    RequestStatus.COMPLETED,
    RequestStatus.DISCONTINUED,
    RequestStatus.ARCHIVED,
    RequestStatus.CANCELLED,
})

_DECIDED_STAGE_STATUSES = (StageStatus.COMPLETED.value, StageStatus.REJECTED.value)


@dataclass(frozen=True)
class RouterOutcome:
    """What one router command did, for the caller's notifications."""

    request: Request
    stage: Stage | None = None
    activated_stage: Stage | None = None
    ledger_entry: LedgerEntry | None = None


@dataclass
class _Activation:
    activated: StageModel | None
    completed: bool


class StageRouter:
    """
    State machine over requests and their stages.

    Contract:
        Every public method runs inside the caller's transaction and
        flushes; none commits.

    Non-goals:
        - Does NOT create requests or stages (the orchestrator does).
        - Does NOT dispatch notifications.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        ledger: LedgerService,
        attachments: AttachmentService,
        clock: Clock | None = None,
    ):
        self._session = session
        self._auditor = auditor
        self._ledger = ledger
        self._attachments = attachments
        self._clock = clock or SystemClock()

    # =========================================================================
    # Loading and locking
    # =========================================================================

    def _lock_request(self, request_id: UUID) -> RequestModel:
        request = self._session.execute(
            select(RequestModel)
            .where(RequestModel.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return request

    def _lock_stages(self, request_id: UUID) -> list[StageModel]:
        return list(
            self._session.execute(
                select(StageModel)
                .where(StageModel.request_id == request_id)
                .order_by(StageModel.stage_order)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def _lock_stage_with_request(
        self, stage_id: UUID,
    ) -> tuple[RequestModel, list[StageModel], StageModel]:
        request_id = self._session.execute(
            select(StageModel.request_id).where(StageModel.id == stage_id)
        ).scalar_one_or_none()
        if request_id is None:
            raise StageNotFoundError(str(stage_id))

        request = self._lock_request(request_id)
        stages = self._lock_stages(request_id)
        stage = next(s for s in stages if s.id == stage_id)
        return request, stages, stage

    # =========================================================================
    # Transitions
    # =========================================================================

    def _compare_and_set_stage(
        self,
        stage: StageModel,
        expected: StageStatus,
        target: StageStatus,
        **values: datetime | None,
    ) -> None:
        if not can_transition_stage(expected, target):
            raise InvalidStageStateError(
                str(stage.id), stage.status, expected.value, f"transition to {target.value}"
            )
        result = self._session.execute(
            update(StageModel)
            .where(StageModel.id == stage.id, StageModel.status == expected.value)
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "stage_transition_conflict",
                extra={
                    "stage_id": str(stage.id),
                    "expected_status": expected.value,
                    "target_status": target.value,
                },
            )
            raise StageTransitionConflictError(str(stage.id), expected.value, target.value)
        self._session.refresh(stage)

    def _set_request_status(
        self,
        request: RequestModel,
        target: RequestStatus,
        action: str,
    ) -> None:
        if not can_transition_request(RequestStatus(request.status), target):
            raise InvalidRequestStateError(str(request.id), request.status, action)
        request.status = target.value

    def _update_metadata(self, request: RequestModel, **changes) -> None:
        current = RequestMetadata.from_dict(request.meta)
        request.meta = replace(current, **changes).to_dict()

    def _activate_from(
        self,
        request: RequestModel,
        stages: list[StageModel],
        start_index: int,
    ) -> _Activation:
        """
        Activate ``stages[start_index]``, or complete the request when no
        stage is left.
        """
        now = self._clock.now()
        if start_index < len(stages):
            stage = stages[start_index]
            self._compare_and_set_stage(
                stage, StageStatus.PENDING, StageStatus.IN_PROGRESS, started_at=now,
            )
            return _Activation(activated=stage, completed=False)

        self._set_request_status(request, RequestStatus.COMPLETED, "complete")
        request.completed_at = now
        return _Activation(activated=None, completed=True)

    # =========================================================================
    # Precondition helpers
    # =========================================================================

    @staticmethod
    def _require_owner_or_admin(
        request: RequestModel, principal: Principal, action: str,
    ) -> None:
        if principal.principal_id == request.requester_id or is_admin(principal.role):
            return
        raise UnauthorizedError(action, str(principal.principal_id), "requester or administrator only")

    @staticmethod
    def _require_decidable(
        request: RequestModel, stage: StageModel, action: str,
    ) -> None:
        if request.status != RequestStatus.IN_PROGRESS.value:
            raise InvalidRequestStateError(str(request.id), request.status, action)
        if stage.status != StageStatus.IN_PROGRESS.value:
            raise InvalidStageStateError(
                str(stage.id), stage.status, StageStatus.IN_PROGRESS.value, action,
            )

    @staticmethod
    def _require_approver(stage: StageModel, principal: Principal, action: str) -> None:
        allowed, reason = authorize_approver(stage.to_dto(), principal)
        if not allowed:
            raise UnauthorizedError(action, str(principal.principal_id), reason)

    def _outcome(
        self,
        request: RequestModel,
        stage: StageModel | None = None,
        activation: _Activation | None = None,
        ledger_entry: LedgerEntry | None = None,
    ) -> RouterOutcome:
        self._session.flush()
        return RouterOutcome(
            request=request.to_dto(),
            stage=stage.to_dto() if stage is not None else None,
            activated_stage=(
                activation.activated.to_dto()
                if activation is not None and activation.activated is not None
                else None
            ),
            ledger_entry=ledger_entry,
        )

    @staticmethod
    def _activation_summary(activation: _Activation) -> str:
        parts = []
        if activation.activated is not None:
            parts.append(f"{activation.activated.name} now in progress")
        if activation.completed:
            parts.append("request completed")
        return "; ".join(parts)

    # =========================================================================
    # Commands
    # =========================================================================

    def submit(self, request_id: UUID, principal: Principal) -> RouterOutcome:
        """
        draft -> in_progress; the lowest-order stage becomes active.

        Raises:
            UnauthorizedError: Caller is neither requester nor admin.
            InvalidRequestStateError: Request is not draft.
        """
        request = self._lock_request(request_id)
        self._require_owner_or_admin(request, principal, "submit")
        if request.status != RequestStatus.DRAFT.value:
            raise InvalidRequestStateError(str(request.id), request.status, "submit")

        stages = self._lock_stages(request.id)
        self._set_request_status(request, RequestStatus.IN_PROGRESS, "submit")
        request.submitted_at = self._clock.now()
        self._session.flush()

        activation = self._activate_from(request, stages, 0)

        self._auditor.record(
            entity_type="request",
            entity_id=request.id,
            action=AuditAction.REQUEST_SUBMITTED,
            description=f"Submitted {request.sequence_number}: {self._activation_summary(activation)}",
            actor=principal,
            before={"status": RequestStatus.DRAFT.value},
            after={
                "status": request.status,
                "active_stage": activation.activated.name if activation.activated else None,
            },
            request_id=request.id,
        )
        logger.info(
            "request_submitted",
            extra={
                "request_id": str(request.id),
                "sequence_number": request.sequence_number,
            },
        )
        return self._outcome(request, activation=activation)

    def approve(
        self,
        stage_id: UUID,
        principal: Principal,
        comment: str | None = None,
    ) -> RouterOutcome:
        """
        Complete the active stage and advance the request.

        Checks, in order: request and stage in progress, approver rule,
        upload (unless signature-exempt).
        """
        request, stages, stage = self._lock_stage_with_request(stage_id)
        self._require_decidable(request, stage, "approve")
        self._require_approver(stage, principal, "approve")
        if not is_signature_exempt(principal.role) and not self._attachments.has_upload(
            stage.id, principal.principal_id
        ):
            raise MissingUploadError(str(stage.id), str(principal.principal_id))

        entry = self._ledger.record(
            request_id=request.id,
            stage_id=stage.id,
            actor_id=principal.principal_id,
            actor_role=principal.role,
            action=LedgerAction.APPROVED,
            comment=comment,
        )
        self._compare_and_set_stage(
            stage, StageStatus.IN_PROGRESS, StageStatus.COMPLETED,
            completed_at=self._clock.now(),
        )
        activation = self._activate_from(request, stages, stages.index(stage) + 1)

        summary = self._activation_summary(activation)
        self._auditor.record(
            entity_type="stage",
            entity_id=stage.id,
            action=AuditAction.STAGE_APPROVED,
            description=f"{stage.name} approved on {request.sequence_number}; {summary}",
            actor=principal,
            before={"stage_status": StageStatus.IN_PROGRESS.value},
            after={
                "stage_status": stage.status,
                "request_status": request.status,
                "active_stage": activation.activated.name if activation.activated else None,
                "comment": comment,
            },
            request_id=request.id,
        )
        logger.info(
            "stage_approved",
            extra={
                "request_id": str(request.id),
                "stage_id": str(stage.id),
                "stage_name": stage.name,
                "request_status": request.status,
            },
        )
        return self._outcome(request, stage, activation, entry)

    def reject(self, stage_id: UUID, principal: Principal, comment: str) -> RouterOutcome:
        """
        Reject the active stage; the request is rejected immediately.

        Later stages stay pending.
        """
        request, _stages, stage = self._lock_stage_with_request(stage_id)
        self._require_decidable(request, stage, "reject")
        self._require_approver(stage, principal, "reject")
        if not comment or not comment.strip():
            raise MissingCommentError(str(stage.id), "reject")

        now = self._clock.now()
        entry = self._ledger.record(
            request_id=request.id,
            stage_id=stage.id,
            actor_id=principal.principal_id,
            actor_role=principal.role,
            action=LedgerAction.REJECTED,
            comment=comment,
        )
        self._compare_and_set_stage(
            stage, StageStatus.IN_PROGRESS, StageStatus.REJECTED, completed_at=now,
        )
        self._set_request_status(request, RequestStatus.REJECTED, "reject")
        request.completed_at = now

        self._auditor.record(
            entity_type="stage",
            entity_id=stage.id,
            action=AuditAction.STAGE_REJECTED,
            description=f"{stage.name} rejected on {request.sequence_number}",
            actor=principal,
            before={"stage_status": StageStatus.IN_PROGRESS.value},
            after={
                "stage_status": stage.status,
                "request_status": request.status,
                "comment": comment,
            },
            request_id=request.id,
        )
        logger.info(
            "stage_rejected",
            extra={
                "request_id": str(request.id),
                "stage_id": str(stage.id),
                "stage_name": stage.name,
            },
        )
        return self._outcome(request, stage, ledger_entry=entry)

    def comment(self, stage_id: UUID, principal: Principal, text: str) -> RouterOutcome:
        """Append a comment to a stage of a non-terminal request."""
        request, stages, stage = self._lock_stage_with_request(stage_id)
        if RequestStatus(request.status) in TERMINAL_REQUEST_STATUSES:
            raise InvalidRequestStateError(str(request.id), request.status, "comment")
        if not text or not text.strip():
            raise MissingCommentError(str(stage.id), "comment")
        decision = can_view(request.to_dto(), [s.to_dto() for s in stages], principal)
        if not decision.has_access:
            raise UnauthorizedError("comment", str(principal.principal_id), decision.reason)

        entry = self._ledger.record(
            request_id=request.id,
            stage_id=stage.id,
            actor_id=principal.principal_id,
            actor_role=principal.role,
            action=LedgerAction.COMMENTED,
            comment=text,
        )
        self._auditor.record(
            entity_type="stage",
            entity_id=stage.id,
            action=AuditAction.STAGE_COMMENTED,
            description=f"Comment on {stage.name} of {request.sequence_number}",
            actor=principal,
            after={"comment": text},
            request_id=request.id,
        )
        logger.info(
            "stage_commented",
            extra={"request_id": str(request.id), "stage_id": str(stage.id)},
        )
        return self._outcome(request, stage, ledger_entry=entry)

    def discontinue(
        self,
        request_id: UUID,
        principal: Principal,
        reason: str | None = None,
    ) -> RouterOutcome:
        """Side exit by requester or admin.  Stages are not touched."""
        request = self._lock_request(request_id)
        self._require_owner_or_admin(request, principal, "discontinue")
        previous = request.status
        if RequestStatus(previous) in _DISCONTINUE_BLOCKED:
            raise InvalidRequestStateError(str(request.id), previous, "discontinue")

        now = self._clock.now()
        self._set_request_status(request, RequestStatus.DISCONTINUED, "discontinue")
        request.completed_at = now
        self._update_metadata(request, discontinue_reason=reason, discontinued_at=now)

        self._auditor.record(
            entity_type="request",
            entity_id=request.id,
            action=AuditAction.REQUEST_DISCONTINUED,
            description=f"Discontinued {request.sequence_number}"
            + (f": {reason}" if reason else ""),
            actor=principal,
            before={"status": previous},
            after={"status": request.status, "reason": reason},
            request_id=request.id,
        )
        logger.info(
            "request_discontinued",
            extra={"request_id": str(request.id), "previous_status": previous},
        )
        return self._outcome(request)

    def archive(self, request_id: UUID, principal: Principal) -> RouterOutcome:
        """Administrator-only; valid from any status."""
        if not is_admin(principal.role):
            raise UnauthorizedError("archive", str(principal.principal_id), "administrator only")
        request = self._lock_request(request_id)
        previous = request.status

        now = self._clock.now()
        self._set_request_status(request, RequestStatus.ARCHIVED, "archive")
        self._update_metadata(request, archived_at=now)

        self._auditor.record(
            entity_type="request",
            entity_id=request.id,
            action=AuditAction.REQUEST_ARCHIVED,
            description=f"Archived {request.sequence_number}",
            actor=principal,
            before={"status": previous},
            after={"status": request.status},
            request_id=request.id,
        )
        logger.info(
            "request_archived",
            extra={"request_id": str(request.id), "previous_status": previous},
        )
        return self._outcome(request)

    def cancel(
        self,
        request_id: UUID,
        principal: Principal,
        reason: str | None = None,
    ) -> RouterOutcome:
        """
        Withdraw a request before any decision.

        Valid from draft, or from in_progress while no stage has been
        approved or rejected.  The active stage becomes skipped.
        """
        request = self._lock_request(request_id)
        self._require_owner_or_admin(request, principal, "cancel")
        previous = request.status
        stages = self._lock_stages(request.id)

        if previous not in (RequestStatus.DRAFT.value, RequestStatus.IN_PROGRESS.value) or any(
            s.status in _DECIDED_STAGE_STATUSES for s in stages
        ):
            raise InvalidRequestStateError(str(request.id), previous, "cancel")

        now = self._clock.now()
        withdrawn: str | None = None
        for stage in stages:
            if stage.status == StageStatus.IN_PROGRESS.value:
                self._compare_and_set_stage(
                    stage, StageStatus.IN_PROGRESS, StageStatus.SKIPPED, completed_at=now,
                )
                withdrawn = stage.name

        self._set_request_status(request, RequestStatus.CANCELLED, "cancel")
        request.completed_at = now
        self._update_metadata(request, cancel_reason=reason, cancelled_at=now)

        self._auditor.record(
            entity_type="request",
            entity_id=request.id,
            action=AuditAction.REQUEST_CANCELLED,
            description=f"Cancelled {request.sequence_number}"
            + (f": {reason}" if reason else ""),
            actor=principal,
            before={"status": previous, "active_stage": withdrawn},
            after={"status": request.status, "reason": reason},
            request_id=request.id,
        )
        logger.info(
            "request_cancelled",
            extra={"request_id": str(request.id), "previous_status": previous},
        )
        return self._outcome(request)

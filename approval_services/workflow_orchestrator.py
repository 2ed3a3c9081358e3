"""
approval_services.workflow_orchestrator -- the engine's public command surface.

Responsibility:
    Creates requests (stages cloned from a template or built from a
    configured route, sequence number allocated in the same transaction),
    and runs every other command through the Stage Router and kernel
    services.  Evaluates visibility for reads.  Dispatches notifications
    once a command has committed.

Architecture position:
    Services -- top of the stack.  The only place kernel services are
    constructed and wired, once per command session.  Sits above
    ``approval_config`` and ``approval_kernel``.

Invariants enforced:
    - One command, one session, one transaction (``session_scope``).
      Nothing is held across command boundaries.
    - Request creation is all-or-nothing: sequence number, request row,
      every stage row and the audit entry commit together or not at all.
    - ConflictError is retried exactly once; StorageUnavailableError is
      never retried here.
    - Notifications run after commit and never fail a command.

Failure modes:
    - Every kernel error propagates unchanged to the caller.
    - SQLAlchemy connectivity failures surface as StorageUnavailableError.

Audit relevance:
    Every state-changing command writes exactly one audit entry through
    the kernel service that performs it.

Usage:
    orchestrator = WorkflowOrchestrator(
        session_factory=get_session_factory(),
        config=get_active_config(),
        blob_store=blob_store,
        identity=directory,
        notifier=mailer,
    )
    created = orchestrator.create_request(requester, "MAF", "Spare parts")
    orchestrator.submit(requester, created.request.id)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Sequence, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from approval_config import EngineConfig, get_active_config
from approval_kernel.db.engine import get_session_factory, session_scope, translate_storage_errors
from approval_kernel.domain.access import AccessDecision, can_view, visible_stages
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.roles import is_admin, is_privileged
from approval_kernel.domain.routing import StageSpec, Template
from approval_kernel.domain.workflow import (
    Attachment,
    AuditEntry,
    Principal,
    Request,
    RequestDetails,
    RequestMetadata,
    RequestStatus,
    StageStatus,
)
from approval_kernel.exceptions import (
    ConflictError,
    PreconditionFailedError,
    UnauthorizedError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.audit_entry import AuditAction
from approval_kernel.models.request import RequestModel, StageModel
from approval_kernel.selectors.request_selector import RequestSelector, RequestWithStages
from approval_kernel.services.attachment_service import AttachmentService, BlobStore, StoredBlob
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.ledger_service import LedgerService
from approval_kernel.services.sequence_service import SequenceCounterInfo, SequenceService
from approval_kernel.services.stage_router import RouterOutcome, StageRouter
from approval_kernel.services.template_service import TemplateService
from approval_services.capabilities import IdentityProvider, Notifier
from approval_services.notifications import NotificationDispatcher

logger = get_logger("services.orchestrator")

T = TypeVar("T")


@dataclass
class _KernelServices:
    """Kernel services bound to one command session."""

    session: Session
    auditor: AuditorService
    ledger: LedgerService
    attachments: AttachmentService
    templates: TemplateService
    sequences: SequenceService
    router: StageRouter
    requests: RequestSelector


class WorkflowOrchestrator:
    """Composes the kernel into commands.

    Contract:
        Every public method is one command with its own transaction.

    Non-goals:
        - Does NOT verify credentials; principals arrive authenticated.
        - Does NOT retry StorageUnavailableError.
    """

    CONFLICT_RETRIES = 1

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        blob_store: BlobStore | None = None,
        identity: IdentityProvider | None = None,
        notifier: Notifier | None = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._config = config or get_active_config()
        self._clock = clock or SystemClock(self._config.sequence.business_tz)
        self._blob_store = blob_store
        self._notifications = NotificationDispatcher(notifier, identity)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def notifications(self) -> NotificationDispatcher:
        return self._notifications

    # =========================================================================
    # Command plumbing
    # =========================================================================

    def _services(self, session: Session) -> _KernelServices:
        clock = self._clock
        auditor = AuditorService(session, clock)
        ledger = LedgerService(session, clock)
        attachments = AttachmentService(session, self._blob_store, auditor, clock)
        return _KernelServices(
            session=session,
            auditor=auditor,
            ledger=ledger,
            attachments=attachments,
            templates=TemplateService(session, auditor, clock),
            sequences=SequenceService(
                session,
                prefix=self._config.sequence.prefix,
                min_width=self._config.sequence.min_width,
            ),
            router=StageRouter(session, auditor, ledger, attachments, clock),
            requests=RequestSelector(session),
        )

    def _run(
        self,
        command: str,
        principal: Principal | None,
        work: Callable[[_KernelServices], T],
        request_id: UUID | None = None,
        stage_id: UUID | None = None,
    ) -> T:
        """Run ``work`` in its own transaction, retrying once on conflict."""
        with LogContext.bind(
            correlation_id=str(uuid4()),
            command=command,
            actor_id=str(principal.principal_id) if principal else None,
            request_id=str(request_id) if request_id else None,
            stage_id=str(stage_id) if stage_id else None,
        ):
            attempt = 0
            while True:
                attempt += 1
                try:
                    with translate_storage_errors(command):
                        with session_scope(self._session_factory) as session:
                            return work(self._services(session))
                except ConflictError as exc:
                    if attempt > self.CONFLICT_RETRIES:
                        logger.warning(
                            "command_conflict_exhausted",
                            extra={"error_code": exc.code, "attempts": attempt},
                        )
                        raise
                    logger.info(
                        "command_conflict_retry",
                        extra={"error_code": exc.code, "attempt": attempt},
                    )

    @staticmethod
    def _require_admin(principal: Principal, action: str) -> None:
        if not is_admin(principal.role):
            raise UnauthorizedError(action, str(principal.principal_id), "administrator only")

    # =========================================================================
    # Creation
    # =========================================================================

    def create_request(
        self,
        principal: Principal,
        request_type: str,
        title: str,
        description: str | None = None,
        department: str | None = None,
        estimated_amount: Decimal | int | str | None = None,
        currency: str | None = None,
        template_id: UUID | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> RequestWithStages:
        """
        Create a draft request with its complete stage list.

        Stages come from the template when ``template_id`` is given,
        otherwise from the configured built-in route for ``request_type``.

        Raises:
            PreconditionFailedError: Missing title/department, bad amount,
                template of another type, inactive template
                (InactiveTemplateError), or no route (NoDefaultRouteError).
            TemplateNotFoundError: Unknown template id.
        """
        if not title or not title.strip():
            raise PreconditionFailedError("Request title is required")
        owning_department = department or principal.department
        if not owning_department:
            raise PreconditionFailedError("Request department is required")
        amount = _parse_amount(estimated_amount)

        def work(svc: _KernelServices) -> RequestWithStages:
            if template_id is not None:
                template, specs = svc.templates.stages_for_request(template_id)
                if template.request_type != request_type:
                    raise PreconditionFailedError(
                        f"Template {template.name!r} is for request type "
                        f"{template.request_type!r}, not {request_type!r}"
                    )
            else:
                specs = self._config.routing.build_stages(request_type, amount)

            now = self._clock.now()
            sequence_number = svc.sequences.next_identifier(request_type, self._clock.today())

            request = RequestModel(
                sequence_number=sequence_number,
                request_type=request_type,
                template_id=template_id,
                title=title.strip(),
                description=description,
                requester_id=principal.principal_id,
                department=owning_department,
                estimated_amount=amount,
                currency=currency or self._config.routing.default_currency,
                status=RequestStatus.DRAFT.value,
                created_at=now,
                meta=RequestMetadata.from_dict(metadata).to_dict(),
                stages=[_stage_from_spec(spec) for spec in specs],
            )
            svc.session.add(request)
            svc.session.flush()

            svc.auditor.record(
                entity_type="request",
                entity_id=request.id,
                action=AuditAction.REQUEST_CREATED,
                description=f"{request_type} request created: {request.title}",
                actor=principal,
                after={
                    "sequence_number": sequence_number,
                    "request_type": request_type,
                    "template_id": template_id,
                    "estimated_amount": amount,
                    "stages": [s.name for s in specs],
                },
                request_id=request.id,
            )
            logger.info(
                "request_created",
                extra={
                    "request_id": str(request.id),
                    "sequence_number": sequence_number,
                    "request_type": request_type,
                    "stage_count": len(specs),
                    "template_id": str(template_id) if template_id else None,
                },
            )
            return svc.requests.get_request(request.id)

        return self._run("create_request", principal, work)

    # =========================================================================
    # Router commands
    # =========================================================================

    def submit(self, principal: Principal, request_id: UUID) -> RouterOutcome:
        outcome = self._run(
            "submit", principal,
            lambda svc: svc.router.submit(request_id, principal),
            request_id=request_id,
        )
        self._notifications.notify_outcome(outcome)
        return outcome

    def approve(
        self,
        principal: Principal,
        stage_id: UUID,
        comment: str | None = None,
    ) -> RouterOutcome:
        outcome = self._run(
            "approve", principal,
            lambda svc: svc.router.approve(stage_id, principal, comment),
            stage_id=stage_id,
        )
        self._notifications.notify_outcome(outcome)
        return outcome

    def reject(self, principal: Principal, stage_id: UUID, comment: str) -> RouterOutcome:
        outcome = self._run(
            "reject", principal,
            lambda svc: svc.router.reject(stage_id, principal, comment),
            stage_id=stage_id,
        )
        self._notifications.notify_outcome(outcome)
        return outcome

    def comment(self, principal: Principal, stage_id: UUID, text: str) -> RouterOutcome:
        return self._run(
            "comment", principal,
            lambda svc: svc.router.comment(stage_id, principal, text),
            stage_id=stage_id,
        )

    def discontinue(
        self,
        principal: Principal,
        request_id: UUID,
        reason: str | None = None,
    ) -> RouterOutcome:
        outcome = self._run(
            "discontinue", principal,
            lambda svc: svc.router.discontinue(request_id, principal, reason),
            request_id=request_id,
        )
        self._notifications.notify_outcome(outcome)
        return outcome

    def archive(self, principal: Principal, request_id: UUID) -> RouterOutcome:
        return self._run(
            "archive", principal,
            lambda svc: svc.router.archive(request_id, principal),
            request_id=request_id,
        )

    def cancel(
        self,
        principal: Principal,
        request_id: UUID,
        reason: str | None = None,
    ) -> RouterOutcome:
        return self._run(
            "cancel", principal,
            lambda svc: svc.router.cancel(request_id, principal, reason),
            request_id=request_id,
        )

    # =========================================================================
    # Attachments
    # =========================================================================

    def attach_file(
        self,
        principal: Principal,
        request_id: UUID,
        file_name: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        stage_id: UUID | None = None,
    ) -> Attachment:
        """
        Upload a file for a request.

        The bytes are put once, after the first authorization check; a
        conflict retry re-runs only the authorization and the row insert.
        """
        if self._blob_store is None:
            raise RuntimeError("No blob store configured; cannot accept attachments")
        stored: list[StoredBlob] = []

        def work(svc: _KernelServices) -> Attachment:
            if not stored:
                svc.attachments.authorize_upload(request_id, stage_id, principal)
                stored.append(
                    svc.attachments.store_blob(request_id, file_name, data, content_type)
                )
            return svc.attachments.record(
                request_id, stage_id, principal, file_name, stored[0], content_type,
            )

        return self._run(
            "attach_file", principal, work,
            request_id=request_id,
            stage_id=stage_id,
        )

    def attachment_locator(self, principal: Principal, attachment_id: UUID) -> str:
        """Fresh locator for an attachment of a request the principal can view."""
        if self._blob_store is None:
            raise RuntimeError("No blob store configured; cannot resolve attachments")

        def work(svc: _KernelServices) -> str:
            attachment = svc.attachments.get_attachment(attachment_id)
            self._require_view(svc, principal, attachment.request_id, "read attachment")
            return svc.attachments.locator_for(attachment_id)

        return self._run("attachment_locator", principal, work)

    # =========================================================================
    # Reads
    # =========================================================================

    def _require_view(
        self,
        svc: _KernelServices,
        principal: Principal,
        request_id: UUID,
        action: str,
    ) -> tuple[RequestWithStages, AccessDecision]:
        bundle = svc.requests.get_request(request_id)
        decision = can_view(bundle.request, bundle.stages, principal)
        if not decision.has_access:
            logger.info(
                "access_denied",
                extra={"request_id": str(request_id), "reason": decision.reason},
            )
            raise UnauthorizedError(action, str(principal.principal_id), decision.reason)
        return bundle, decision

    def check_access(self, principal: Principal, request_id: UUID) -> AccessDecision:
        def work(svc: _KernelServices) -> AccessDecision:
            bundle = svc.requests.get_request(request_id)
            return can_view(bundle.request, bundle.stages, principal)

        return self._run("check_access", principal, work, request_id=request_id)

    def get_request_details(self, principal: Principal, request_id: UUID) -> RequestDetails:
        """
        Request, visible stages, their ledger entries and attachments.

        Raises:
            UnauthorizedError: The principal cannot view the request; the
                error carries the evaluator's reason.
        """

        def work(svc: _KernelServices) -> RequestDetails:
            bundle, decision = self._require_view(svc, principal, request_id, "view")
            stages = visible_stages(bundle.request, bundle.stages, principal)
            stage_ids = {s.id for s in stages}
            ledger = tuple(
                e for e in svc.ledger.entries_for_request(request_id) if e.stage_id in stage_ids
            )
            attachments = tuple(
                a for a in svc.attachments.attachments_for_request(request_id)
                if a.stage_id is None or a.stage_id in stage_ids
            )
            return RequestDetails(
                request=bundle.request,
                stages=stages,
                ledger=ledger,
                attachments=attachments,
                access_reason=decision.reason,
            )

        return self._run("get_request_details", principal, work, request_id=request_id)

    def list_requests(
        self,
        principal: Principal,
        status: RequestStatus | None = None,
    ) -> tuple[Request, ...]:
        """Privileged principals see every request; others what they can view."""

        def work(svc: _KernelServices) -> tuple[Request, ...]:
            bundles = svc.requests.list_requests(status=status)
            if is_privileged(principal.role):
                return tuple(b.request for b in bundles)
            return tuple(
                b.request for b in bundles
                if can_view(b.request, b.stages, principal).has_access
            )

        return self._run("list_requests", principal, work)

    def audit_trail(self, principal: Principal, request_id: UUID) -> tuple[AuditEntry, ...]:
        """Audit entries of one request, for privileged reporting."""
        if not is_privileged(principal.role):
            raise UnauthorizedError(
                "read audit trail", str(principal.principal_id), "privileged role only"
            )
        return self._run(
            "audit_trail", principal,
            lambda svc: svc.auditor.entries_for_request(request_id),
            request_id=request_id,
        )

    # =========================================================================
    # Templates
    # =========================================================================

    def create_template(
        self,
        principal: Principal,
        name: str,
        request_type: str,
        stages: Sequence[StageSpec | Mapping[str, Any]],
        description: str | None = None,
    ) -> Template:
        return self._run(
            "create_template", principal,
            lambda svc: svc.templates.create_template(
                name, request_type, stages, principal, description,
            ),
        )

    def deactivate_template(self, principal: Principal, template_id: UUID) -> Template:
        return self._run(
            "deactivate_template", principal,
            lambda svc: svc.templates.deactivate_template(template_id, principal),
        )

    def get_template(self, template_id: UUID) -> Template:
        return self._run(
            "get_template", None, lambda svc: svc.templates.get_template(template_id),
        )

    def list_templates(
        self,
        active_only: bool = True,
        request_type: str | None = None,
    ) -> tuple[Template, ...]:
        return self._run(
            "list_templates", None,
            lambda svc: svc.templates.list_templates(active_only, request_type),
        )

    # =========================================================================
    # Sequence administration
    # =========================================================================

    def list_sequence_counters(
        self,
        principal: Principal,
        sequence_type: str | None = None,
    ) -> tuple[SequenceCounterInfo, ...]:
        self._require_admin(principal, "list sequence counters")
        return self._run(
            "list_sequence_counters", principal,
            lambda svc: svc.sequences.list_counters(sequence_type),
        )

    def reset_sequence_counter(
        self,
        principal: Principal,
        sequence_type: str,
        date_key: str,
        value: int = 0,
    ) -> int | None:
        """Set a counter; returns the previous value.  Audited."""
        self._require_admin(principal, "reset sequence counter")

        def work(svc: _KernelServices) -> int | None:
            previous = svc.sequences.reset(sequence_type, date_key, value)
            svc.auditor.record(
                entity_type="sequence",
                entity_id=f"{sequence_type}:{date_key}",
                action=AuditAction.SEQUENCE_RESET,
                description=f"Sequence {sequence_type} for {date_key} reset to {value}",
                actor=principal,
                before={"current_value": previous},
                after={"current_value": value},
            )
            return previous

        return self._run("reset_sequence_counter", principal, work)


# =============================================================================
# Helpers
# =============================================================================


def _parse_amount(value: Decimal | int | str | None) -> Decimal | None:
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise PreconditionFailedError(f"Estimated amount is not a number: {value!r}") from exc
    if not amount.is_finite() or amount < 0:
        raise PreconditionFailedError("Estimated amount must be a non-negative number")
    return amount


def _stage_from_spec(spec: StageSpec) -> StageModel:
    return StageModel(
        stage_order=spec.stage_order,
        name=spec.name,
        kind=spec.kind,
        required_role=spec.required_role.value if spec.required_role else None,
        one_of_roles=[r.value for r in spec.one_of_roles] or None,
        approval_threshold=spec.approval_threshold,
        visible_to_departments=list(spec.visible_to_departments),
        status=StageStatus.PENDING.value,
        meta={"description": spec.description} if spec.description else {},
    )

"""
TemplateService -- reusable stage blueprints.

Responsibility:
    Stores workflow templates (an ordered list of stage specs) and hands
    validated specs to request creation.

Architecture position:
    Kernel > Services.  Called by the orchestrator.

Invariants enforced:
    - Stage specs are validated (non-empty, gap-free 1..N, named, known
      roles) before any row is written.
    - Only administrators create or deactivate templates.
    - Requests cannot be created from an inactive template.

Failure modes:
    - UnauthorizedError for non-admin writers.
    - InvalidStageSpecError for a bad blueprint.
    - TemplateNotFoundError / InactiveTemplateError on lookup for creation.

Audit relevance:
    Creation and deactivation each write one audit entry.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.roles import is_admin
from approval_kernel.domain.routing import StageSpec, Template, validate_stage_specs
from approval_kernel.domain.workflow import Principal
from approval_kernel.exceptions import (
    InactiveTemplateError,
    TemplateNotFoundError,
    UnauthorizedError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_entry import AuditAction
from approval_kernel.models.template import TemplateStageModel, WorkflowTemplateModel
from approval_kernel.services.auditor_service import AuditorService

logger = get_logger("services.template")


def _coerce_specs(stages: Sequence[StageSpec | Mapping[str, Any]]) -> list[StageSpec]:
    return [s if isinstance(s, StageSpec) else StageSpec.from_dict(s) for s in stages]


class TemplateService:
    """Create, read and deactivate workflow templates."""

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
    ):
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()

    def create_template(
        self,
        name: str,
        request_type: str,
        stages: Sequence[StageSpec | Mapping[str, Any]],
        actor: Principal,
        description: str | None = None,
    ) -> Template:
        if not is_admin(actor.role):
            raise UnauthorizedError(
                "create_template", str(actor.principal_id), "administrator only"
            )
        specs = validate_stage_specs(_coerce_specs(stages))

        template = WorkflowTemplateModel(
            name=name,
            request_type=request_type,
            description=description,
            is_active=True,
            created_by=actor.principal_id,
            created_at=self._clock.now(),
        )
        self._session.add(template)
        self._session.flush()

        for spec in specs:
            self._session.add(TemplateStageModel.from_spec(template.id, spec))
        self._session.flush()
        self._session.refresh(template)

        self._auditor.record(
            entity_type="template",
            entity_id=template.id,
            action=AuditAction.TEMPLATE_CREATED,
            description=f"Created template {name} ({request_type}) with {len(specs)} stages",
            actor=actor,
            after={
                "name": name,
                "request_type": request_type,
                "stages": [s.to_dict() for s in specs],
            },
        )
        logger.info(
            "template_created",
            extra={
                "template_id": str(template.id),
                "request_type": request_type,
                "stage_count": len(specs),
            },
        )
        return template.to_dto()

    def get_template(self, template_id: UUID) -> Template:
        template = self._session.get(WorkflowTemplateModel, template_id)
        if template is None:
            raise TemplateNotFoundError(str(template_id))
        return template.to_dto()

    def list_templates(
        self,
        active_only: bool = True,
        request_type: str | None = None,
    ) -> tuple[Template, ...]:
        stmt = select(WorkflowTemplateModel)
        if active_only:
            stmt = stmt.where(WorkflowTemplateModel.is_active.is_(True))
        if request_type is not None:
            stmt = stmt.where(WorkflowTemplateModel.request_type == request_type)
        stmt = stmt.order_by(WorkflowTemplateModel.created_at, WorkflowTemplateModel.name)
        return tuple(t.to_dto() for t in self._session.execute(stmt).scalars())

    def deactivate_template(self, template_id: UUID, actor: Principal) -> Template:
        if not is_admin(actor.role):
            raise UnauthorizedError(
                "deactivate_template", str(actor.principal_id), "administrator only"
            )
        template = self._session.execute(
            select(WorkflowTemplateModel)
            .where(WorkflowTemplateModel.id == template_id)
            .with_for_update()
        ).scalar_one_or_none()
        if template is None:
            raise TemplateNotFoundError(str(template_id))

        was_active = template.is_active
        template.is_active = False
        self._session.flush()

        self._auditor.record(
            entity_type="template",
            entity_id=template.id,
            action=AuditAction.TEMPLATE_DEACTIVATED,
            description=f"Deactivated template {template.name}",
            actor=actor,
            before={"is_active": was_active},
            after={"is_active": False},
        )
        logger.info("template_deactivated", extra={"template_id": str(template.id)})
        return template.to_dto()

    def stages_for_request(self, template_id: UUID) -> tuple[Template, tuple[StageSpec, ...]]:
        """Active template and its validated specs, for request creation."""
        template = self.get_template(template_id)
        if not template.is_active:
            raise InactiveTemplateError(str(template_id))
        return template, validate_stage_specs(template.stages)

"""
Module: approval_kernel.models.template
Responsibility: ORM persistence for reusable workflow templates and their
    stage blueprints.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (template_id, stage_order) is unique.
    - Stage blueprints are validated gap-free 1..N by TemplateService
      before insert.

Audit relevance:
    Template creation and deactivation are audited by TemplateService.
    Requests record the template they were cloned from.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.routing import StageSpec, Template


class WorkflowTemplateModel(Base):
    """Persistent workflow template."""

    __tablename__ = "workflow_templates"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    request_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    stages: Mapped[list["TemplateStageModel"]] = relationship(
        "TemplateStageModel",
        back_populates="template",
        order_by="TemplateStageModel.stage_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<WorkflowTemplate {self.name} type={self.request_type} active={self.is_active}>"

    def to_dto(self) -> Template:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.routing import Template

        return Template(
            id=self.id,
            name=self.name,
            request_type=self.request_type,
            is_active=self.is_active,
            stages=tuple(s.to_spec() for s in self.stages),
            description=self.description,
            created_by=self.created_by,
            created_at=self.created_at,
        )


class TemplateStageModel(Base):
    """One stage blueprint of a template."""

    __tablename__ = "template_stages"

    __table_args__ = (
        UniqueConstraint("template_id", "stage_order", name="uq_template_stages_order"),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_templates.id"), nullable=False,
    )
    stage_order: Mapped[int] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False, default="approval")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    required_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    one_of_roles: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    approval_threshold: Mapped[Decimal | None] = mapped_column(nullable=True)
    visible_to_departments: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list,
    )

    template: Mapped["WorkflowTemplateModel"] = relationship(
        "WorkflowTemplateModel", back_populates="stages",
    )

    def to_spec(self) -> StageSpec:
        from approval_kernel.domain.roles import Role
        from approval_kernel.domain.routing import StageSpec

        return StageSpec(
            stage_order=self.stage_order,
            name=self.name,
            kind=self.kind,
            description=self.description,
            required_role=Role.parse(self.required_role) if self.required_role else None,
            one_of_roles=tuple(Role.parse(r) for r in (self.one_of_roles or ())),
            approval_threshold=self.approval_threshold,
            visible_to_departments=tuple(self.visible_to_departments or ()),
        )

    @classmethod
    def from_spec(cls, template_id: UUID, spec: StageSpec) -> TemplateStageModel:
        return cls(
            template_id=template_id,
            stage_order=spec.stage_order,
            name=spec.name,
            kind=spec.kind,
            description=spec.description,
            required_role=spec.required_role.value if spec.required_role else None,
            one_of_roles=[r.value for r in spec.one_of_roles] or None,
            approval_threshold=spec.approval_threshold,
            visible_to_departments=list(spec.visible_to_departments),
        )

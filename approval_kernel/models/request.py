"""
Module: approval_kernel.models.request
Responsibility: ORM persistence for requests and their ordered stages.

Architecture position: Kernel > Models.  May import from db/base.py only
    (domain DTOs are imported lazily inside ``to_dto``).

Invariants enforced:
    - Request and stage status values are limited by DB check constraints;
      the Stage Router enforces the transition rules.
    - sequence_number is unique and write-once (ORM listener).
    - (request_id, stage_order) is unique, so stage orders cannot tie.

Failure modes:
    - IntegrityError on a duplicate sequence number or stage order.
    - ImmutabilityViolationError when sequence_number is changed after
      insert.

Audit relevance:
    Every status change on these rows is paired with exactly one
    AuditEntry written by the service that made it.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.orm.attributes import get_history

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import Request, Stage


class RequestModel(Base):
    """Persistent request.

    Contract:
        Created in ``draft`` by the orchestrator together with all of its
        stages.  Status changes afterwards only through the Stage Router.
    """

    __tablename__ = "requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'in_progress', 'completed', 'rejected', "
            "'discontinued', 'cancelled', 'archived')",
            name="ck_requests_valid_status",
        ),
        Index("ix_requests_status", "status"),
        Index("ix_requests_requester", "requester_id"),
    )

    sequence_number: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True,
    )
    request_type: Mapped[str] = mapped_column(String(50), nullable=False)
    template_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("workflow_templates.id"), nullable=True,
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    department: Mapped[str] = mapped_column(String(100), nullable=False)
    estimated_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="IDR")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )

    stages: Mapped[list["StageModel"]] = relationship(
        "StageModel",
        back_populates="request",
        order_by="StageModel.stage_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Request {self.sequence_number} {self.request_type} status={self.status}>"

    def to_dto(self) -> Request:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import (
            Request as RequestDTO,
            RequestMetadata,
            RequestStatus,
        )

        return RequestDTO(
            id=self.id,
            sequence_number=self.sequence_number,
            request_type=self.request_type,
            title=self.title,
            requester_id=self.requester_id,
            department=self.department,
            status=RequestStatus(self.status),
            description=self.description,
            estimated_amount=self.estimated_amount,
            currency=self.currency,
            template_id=self.template_id,
            created_at=self.created_at,
            submitted_at=self.submitted_at,
            completed_at=self.completed_at,
            metadata=RequestMetadata.from_dict(self.meta),
        )


class StageModel(Base):
    """Persistent stage of a request.

    Contract:
        Never inserted after the owning request has been submitted.  Status
        changes go through a compare-and-set UPDATE in the Stage Router.
    """

    __tablename__ = "stages"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'rejected', 'skipped')",
            name="ck_stages_valid_status",
        ),
        UniqueConstraint("request_id", "stage_order", name="uq_stages_request_order"),
        Index("ix_stages_request_status", "request_id", "status"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requests.id"), nullable=False,
    )
    stage_order: Mapped[int] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False, default="approval")
    required_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    one_of_roles: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    approval_threshold: Mapped[Decimal | None] = mapped_column(nullable=True)
    visible_to_departments: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )

    request: Mapped["RequestModel"] = relationship(
        "RequestModel", back_populates="stages",
    )

    def __repr__(self) -> str:
        return f"<Stage {self.stage_order}:{self.name} status={self.status}>"

    def to_dto(self) -> Stage:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.roles import Role
        from approval_kernel.domain.workflow import Stage as StageDTO, StageStatus

        return StageDTO(
            id=self.id,
            request_id=self.request_id,
            stage_order=self.stage_order,
            name=self.name,
            kind=self.kind,
            status=StageStatus(self.status),
            required_role=Role.parse(self.required_role) if self.required_role else None,
            one_of_roles=tuple(Role.parse(r) for r in (self.one_of_roles or ())),
            approval_threshold=self.approval_threshold,
            visible_to_departments=tuple(self.visible_to_departments or ()),
            started_at=self.started_at,
            completed_at=self.completed_at,
            metadata=dict(self.meta or {}),
        )


# =============================================================================
# Write-once sequence number
# =============================================================================


@event.listens_for(RequestModel, "before_update")
def prevent_sequence_number_change(mapper, connection, target):
    """A request keeps the sequence number it was created with."""
    history = get_history(target, "sequence_number")
    if history.deleted and history.has_changes():
        raise ImmutabilityViolationError(
            entity_type="Request",
            entity_id=str(target.id),
            reason="Sequence numbers are write-once -- cannot modify",
        )

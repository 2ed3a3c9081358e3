"""
Module: approval_kernel.models.audit_entry
Responsibility: ORM persistence for the generic audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit entries are append-only; no UPDATE or DELETE (ORM listeners).
    - payload_hash = SHA-256 of the canonical {before, after} payload,
      computed by AuditorService at insert time.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.

Audit relevance:
    AuditEntry IS the audit trail.  Every state-changing command on a
    request, stage, template, attachment or sequence counter writes exactly
    one entry.  The engine never reads it back; reporting does.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, Index, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import AuditEntry


class AuditAction(str, Enum):
    """Types of auditable actions.

    Contract: Every member represents one class of command that MUST be
    recorded in the audit trail.
    """

    # Request lifecycle
    REQUEST_CREATED = "request_created"
    REQUEST_SUBMITTED = "request_submitted"
    REQUEST_DISCONTINUED = "request_discontinued"
    REQUEST_ARCHIVED = "request_archived"
    REQUEST_CANCELLED = "request_cancelled"

    # Stage decisions
    STAGE_APPROVED = "stage_approved"
    STAGE_REJECTED = "stage_rejected"
    STAGE_COMMENTED = "stage_commented"

    # Templates
    TEMPLATE_CREATED = "template_created"
    TEMPLATE_DEACTIVATED = "template_deactivated"

    # Files
    ATTACHMENT_UPLOADED = "attachment_uploaded"

    # Sequence administration
    SEQUENCE_RESET = "sequence_reset"


class AuditEntryModel(Base):
    """Audit trail row. Append-only."""

    __tablename__ = "audit_entries"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
        Index("idx_audit_request", "request_id"),
    )

    # Type of entity being audited ("request", "stage", "template", ...)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Owning request, when the entity belongs to one
    request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Entity ids are UUIDs except for sequence counters ("TYPE:YYYY-MM-DD")
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Actor snapshot at the time of the action
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    actor_email: Mapped[str | None] = mapped_column(String(254), nullable=True)

    before: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEntry {self.action} on {self.entity_type}:{self.entity_id}>"

    def to_dto(self) -> AuditEntry:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import AuditEntry as AuditEntryDTO

        return AuditEntryDTO(
            id=self.id,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            request_id=self.request_id,
            action=self.action,
            description=self.description,
            actor_id=self.actor_id,
            actor_role=self.actor_role,
            actor_email=self.actor_email,
            before=self.before,
            after=self.after,
            payload_hash=self.payload_hash,
            occurred_at=self.occurred_at,
        )


@event.listens_for(AuditEntryModel, "before_update")
def prevent_audit_update(mapper, connection, target):
    """Prevent updates to audit entries."""
    raise ImmutabilityViolationError(
        entity_type="AuditEntry",
        entity_id=str(target.id),
        reason="Audit entries are immutable -- cannot modify",
    )


@event.listens_for(AuditEntryModel, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    """Prevent deletion of audit entries."""
    raise ImmutabilityViolationError(
        entity_type="AuditEntry",
        entity_id=str(target.id),
        reason="Audit entries are immutable -- cannot delete",
    )

"""
Module: approval_kernel.models.attachment
Responsibility: ORM persistence for attachment locators.  The bytes live
    in the external blob store; only the key and locator are stored here.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Attachments are append-only (ORM listeners).
    - blob_key is unique.

Audit relevance:
    The (stage_id, uploaded_by) pair backs the approval upload
    precondition.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, event
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import Attachment


class AttachmentModel(Base):
    """Persistent attachment locator."""

    __tablename__ = "attachments"

    __table_args__ = (
        Index("ix_attachments_stage_uploader", "stage_id", "uploaded_by"),
        Index("ix_attachments_request", "request_id"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requests.id"), nullable=False,
    )
    stage_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("stages.id"), nullable=True,
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    blob_key: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    locator: Mapped[str] = mapped_column(String(1000), nullable=False)
    size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    uploaded_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<Attachment {self.file_name} request={self.request_id}>"

    def to_dto(self) -> Attachment:
        from approval_kernel.domain.workflow import Attachment as AttachmentDTO

        return AttachmentDTO(
            id=self.id,
            request_id=self.request_id,
            file_name=self.file_name,
            content_type=self.content_type,
            blob_key=self.blob_key,
            locator=self.locator,
            uploaded_by=self.uploaded_by,
            stage_id=self.stage_id,
            size_bytes=self.size_bytes,
            uploaded_at=self.uploaded_at,
        )


@event.listens_for(AttachmentModel, "before_update")
def prevent_attachment_update(mapper, connection, target):
    """Prevent updates to attachment records."""
    raise ImmutabilityViolationError(
        entity_type="Attachment",
        entity_id=str(target.id),
        reason="Attachment records are immutable -- cannot modify",
    )


@event.listens_for(AttachmentModel, "before_delete")
def prevent_attachment_delete(mapper, connection, target):
    """Prevent deletion of attachment records."""
    raise ImmutabilityViolationError(
        entity_type="Attachment",
        entity_id=str(target.id),
        reason="Attachment records are immutable -- cannot delete",
    )

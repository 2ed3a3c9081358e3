"""
Module: approval_kernel.models.ledger
Responsibility: ORM persistence for the approval ledger.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Ledger entries are append-only; ORM listeners reject UPDATE and DELETE.
    - action is limited to approved / rejected / commented by a check
      constraint.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.

Audit relevance:
    The ledger is the record of who decided what on which stage.  At most
    one approved/rejected entry exists per stage; the Stage Router's
    status compare-and-set guarantees it.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import LedgerEntry


class LedgerEntryModel(Base):
    """Persistent approval action. Append-only."""

    __tablename__ = "ledger_entries"

    __table_args__ = (
        CheckConstraint(
            "action IN ('approved', 'rejected', 'commented')",
            name="ck_ledger_entries_valid_action",
        ),
        Index("ix_ledger_entries_request", "request_id", "recorded_at"),
        Index("ix_ledger_entries_stage", "stage_id"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requests.id"), nullable=False,
    )
    stage_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stages.id"), nullable=False,
    )
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<LedgerEntry {self.action} stage={self.stage_id} actor={self.actor_id}>"

    def to_dto(self) -> LedgerEntry:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import LedgerAction, LedgerEntry as EntryDTO

        return EntryDTO(
            id=self.id,
            request_id=self.request_id,
            stage_id=self.stage_id,
            actor_id=self.actor_id,
            actor_role=self.actor_role,
            action=LedgerAction(self.action),
            comment=self.comment,
            recorded_at=self.recorded_at,
        )


# =============================================================================
# ORM-Level Immutability (Append-Only)
# =============================================================================


@event.listens_for(LedgerEntryModel, "before_update")
def prevent_ledger_update(mapper, connection, target):
    """Prevent updates to ledger entries."""
    raise ImmutabilityViolationError(
        entity_type="LedgerEntry",
        entity_id=str(target.id),
        reason="Ledger entries are immutable -- cannot modify",
    )


@event.listens_for(LedgerEntryModel, "before_delete")
def prevent_ledger_delete(mapper, connection, target):
    """Prevent deletion of ledger entries."""
    raise ImmutabilityViolationError(
        entity_type="LedgerEntry",
        entity_id=str(target.id),
        reason="Ledger entries are immutable -- cannot delete",
    )

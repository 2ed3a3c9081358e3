"""
AuditorService -- append-only audit trail for every state-changing command.

Responsibility:
    Creates immutable audit entries with an actor snapshot, optional
    before/after value snapshots and a payload hash for tamper evidence.
    Provides trace queries for reporting and tests.

Architecture position:
    Kernel > Services -- imperative shell, called by the Stage Router,
    TemplateService, AttachmentService and the orchestrator.

Invariants enforced:
    - Append-only: audit entries are never modified or deleted (ORM
      listeners on AuditEntryModel).
    - payload_hash = SHA-256 of canonical ``{"before": ..., "after": ...}``.

Failure modes:
    - Storage errors propagate; the caller's transaction rolls back and
      the command that triggered the entry fails with it.

Audit relevance:
    This IS the audit service.  Every command writes its single entry
    through ``record()``.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import AuditEntry, Principal
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_entry import AuditAction, AuditEntryModel
from approval_kernel.utils.hashing import hash_payload, to_json_safe

logger = get_logger("services.auditor")


class AuditorService:
    """
    Service for creating and reading audit entries.

    Contract:
        Accepts one recording request per command and flushes one
        ``AuditEntryModel`` row.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT interpret audit entries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def record(
        self,
        entity_type: str,
        entity_id: UUID | str,
        action: AuditAction,
        description: str,
        actor: Principal | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        request_id: UUID | None = None,
    ) -> AuditEntry:
        """
        Append one audit entry.

        Postconditions:
            - A new row is flushed with ``payload_hash`` computed over the
              JSON-safe before/after snapshots.

        Args:
            entity_type: "request", "stage", "template", "attachment", "sequence".
            entity_id: Id of the entity (string key for sequence counters).
            action: The action being recorded.
            description: Human-readable summary.
            actor: Principal who performed the action (None for system).
            before: Snapshot of the values before the change.
            after: Snapshot of the values after the change.
            request_id: Owning request, when the entity belongs to one.
        """
        before_data = to_json_safe(before)
        after_data = to_json_safe(after)
        payload_hash = hash_payload({"before": before_data, "after": after_data})

        entry = AuditEntryModel(
            entity_type=entity_type,
            entity_id=str(entity_id),
            request_id=request_id,
            action=action.value,
            description=description,
            actor_id=actor.principal_id if actor else None,
            actor_role=actor.role.value if actor else None,
            actor_email=actor.email if actor else None,
            before=before_data,
            after=after_data,
            payload_hash=payload_hash,
            occurred_at=self._clock.now(),
        )
        self._session.add(entry)
        self._session.flush()

        logger.info(
            "audit_entry_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
            },
        )
        return entry.to_dto()

    def get_trace(self, entity_type: str, entity_id: UUID | str) -> tuple[AuditEntry, ...]:
        """All entries for one entity, oldest first."""
        rows = self._session.execute(
            select(AuditEntryModel)
            .where(
                AuditEntryModel.entity_type == entity_type,
                AuditEntryModel.entity_id == str(entity_id),
            )
            .order_by(AuditEntryModel.occurred_at)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def entries_for_request(self, request_id: UUID) -> tuple[AuditEntry, ...]:
        """Every entry correlated with a request (its stages and files included)."""
        rows = self._session.execute(
            select(AuditEntryModel)
            .where(AuditEntryModel.request_id == request_id)
            .order_by(AuditEntryModel.occurred_at)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    @staticmethod
    def verify(entry: AuditEntry) -> bool:
        """Recompute the payload hash of a stored entry."""
        return hash_payload({"before": entry.before, "after": entry.after}) == entry.payload_hash

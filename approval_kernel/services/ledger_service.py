"""
LedgerService -- append-only record of approve/reject/comment actions.

Responsibility:
    Writes one ledger entry per decision or comment and reads them back.

Architecture position:
    Kernel > Services.  Invoked only by the Stage Router; callers never
    write the ledger directly.

Invariants enforced:
    - Append-only (ORM listeners on LedgerEntryModel).
    - The ledger performs NO authorization and NO state checks; the
      Stage Router validates every precondition before calling ``record``.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.roles import Role
from approval_kernel.domain.workflow import LedgerAction, LedgerEntry
from approval_kernel.logging_config import get_logger
from approval_kernel.models.ledger import LedgerEntryModel

logger = get_logger("services.ledger")


class LedgerService:
    """Append and read approval ledger entries."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def record(
        self,
        request_id: UUID,
        stage_id: UUID,
        actor_id: UUID,
        actor_role: Role | str,
        action: LedgerAction,
        comment: str | None = None,
    ) -> LedgerEntry:
        """Append one entry and flush it."""
        role = actor_role.value if isinstance(actor_role, Role) else actor_role
        entry = LedgerEntryModel(
            request_id=request_id,
            stage_id=stage_id,
            actor_id=actor_id,
            actor_role=role,
            action=action.value,
            comment=comment,
            recorded_at=self._clock.now(),
        )
        self._session.add(entry)
        self._session.flush()

        logger.info(
            "ledger_entry_recorded",
            extra={
                "request_id": str(request_id),
                "stage_id": str(stage_id),
                "actor_id": str(actor_id),
                "action": action.value,
            },
        )
        return entry.to_dto()

    def entries_for_request(self, request_id: UUID) -> tuple[LedgerEntry, ...]:
        rows = self._session.execute(
            select(LedgerEntryModel)
            .where(LedgerEntryModel.request_id == request_id)
            .order_by(LedgerEntryModel.recorded_at)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def entries_for_stage(
        self,
        stage_id: UUID,
        action: LedgerAction | None = None,
    ) -> tuple[LedgerEntry, ...]:
        stmt = select(LedgerEntryModel).where(LedgerEntryModel.stage_id == stage_id)
        if action is not None:
            stmt = stmt.where(LedgerEntryModel.action == action.value)
        rows = self._session.execute(stmt.order_by(LedgerEntryModel.recorded_at)).scalars().all()
        return tuple(r.to_dto() for r in rows)

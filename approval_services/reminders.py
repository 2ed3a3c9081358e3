"""
approval_services.reminders -- reminder sweep for waiting stages.

Responsibility:
    Finds every in-progress request whose active stage has been waiting
    at least ``older_than`` and pages that stage's approvers again.
    Intended to be run on a schedule by the host application.

Architecture position:
    Services.  Read-only against storage; delivery goes through the same
    NotificationDispatcher the orchestrator uses.

Invariants enforced:
    - The sweep never writes to storage.
    - A failed delivery is counted as skipped; the sweep continues.
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy.orm import Session, sessionmaker

from approval_kernel.db.engine import get_session_factory, session_scope, translate_storage_errors
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.logging_config import get_logger
from approval_kernel.selectors.request_selector import RequestSelector, RequestWithStages
from approval_services.notifications import NotificationDispatcher

logger = get_logger("services.reminders")


class ReminderService:
    """Re-notify approvers of stages that are still waiting."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
    ):
        self._dispatcher = dispatcher
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock or SystemClock()

    def _waiting(self, older_than: timedelta) -> list[RequestWithStages]:
        cutoff = self._clock.now() - older_than
        with translate_storage_errors("reminders.scan"):
            with session_scope(self._session_factory) as session:
                bundles = RequestSelector(session).awaiting_approval()
        return [
            b for b in bundles
            if b.active_stage is not None
            and b.active_stage.started_at is not None
            and b.active_stage.started_at <= cutoff
        ]

    def send_pending_reminders(self, older_than: timedelta = timedelta(0)) -> tuple[int, int]:
        """Send one reminder per waiting stage.  Returns ``(sent, skipped)``."""
        sent = skipped = 0
        for bundle in self._waiting(older_than):
            if self._dispatcher.remind(bundle.request, bundle.active_stage):
                sent += 1
            else:
                skipped += 1

        logger.info(
            "reminder_sweep_completed",
            extra={"sent": sent, "skipped": skipped, "older_than_seconds": older_than.total_seconds()},
        )
        return sent, skipped

"""
approval_services.notifications -- post-commit notification dispatch.

Responsibility:
    Turns command outcomes into notifications (who, which template, what
    context) and hands them to the Notifier capability.

Architecture position:
    Services.  Called by the orchestrator after the command's transaction
    has committed, and by the reminder sweep.

Invariants enforced:
    - Delivery failures never propagate: any exception raised by the
      notifier or the identity lookup is logged as ``notification_failed``
      and dispatch returns False.
    - Nothing is sent for a command that did not commit.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Sequence

from approval_kernel.domain.authorization import OneOf, RequiredRole, approver_rule_for
from approval_kernel.domain.roles import Role
from approval_kernel.domain.workflow import Request, RequestStatus, Stage
from approval_kernel.logging_config import get_logger
from approval_kernel.services.stage_router import RouterOutcome
from approval_services.capabilities import IdentityProvider, LoggingNotifier, Notifier

logger = get_logger("services.notifications")


class NotificationTemplate(str, Enum):
    STAGE_AWAITING_APPROVAL = "stage_awaiting_approval"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_REJECTED = "request_rejected"
    REQUEST_DISCONTINUED = "request_discontinued"
    STAGE_REMINDER = "stage_reminder"


def request_context(request: Request, stage: Stage | None = None, **extra: Any) -> dict[str, Any]:
    context: dict[str, Any] = {
        "request_id": str(request.id),
        "sequence_number": request.sequence_number,
        "request_type": request.request_type,
        "title": request.title,
        "status": request.status.value,
    }
    if stage is not None:
        context["stage_id"] = str(stage.id)
        context["stage_name"] = stage.name
    context.update(extra)
    return context


class NotificationDispatcher:
    """Resolve recipients and deliver notifications, never failing the caller."""

    def __init__(
        self,
        notifier: Notifier | None = None,
        identity: IdentityProvider | None = None,
    ):
        self._notifier = notifier or LoggingNotifier()
        self._identity = identity

    def dispatch(
        self,
        recipients: Sequence[str],
        template: NotificationTemplate | str,
        context: Mapping[str, Any],
    ) -> bool:
        """Deliver one notification.  Returns False when nothing was delivered."""
        name = template.value if isinstance(template, NotificationTemplate) else template
        if not recipients:
            logger.info("notification_skipped", extra={"template": name, "reason": "no recipients"})
            return False
        try:
            self._notifier.notify(list(recipients), name, dict(context))
        except Exception:
            logger.warning(
                "notification_failed",
                extra={"template": name, "recipient_count": len(recipients)},
                exc_info=True,
            )
            return False
        logger.info("notification_sent", extra={"template": name, "recipient_count": len(recipients)})
        return True

    # =========================================================================
    # Recipients
    # =========================================================================

    def approver_emails(self, stage: Stage) -> list[str]:
        """Emails of principals who may act on the stage; admins are not paged."""
        if self._identity is None:
            return []
        rule = approver_rule_for(stage)
        if isinstance(rule, RequiredRole):
            roles: tuple[Role, ...] = (rule.role,)
        elif isinstance(rule, OneOf):
            roles = tuple(sorted(rule.roles, key=lambda r: r.value))
        else:
            return []
        try:
            principals = self._identity.principals_with_roles(roles)
        except Exception:
            logger.warning(
                "notification_failed",
                extra={"stage_id": str(stage.id), "reason": "identity lookup failed"},
                exc_info=True,
            )
            return []
        return sorted({p.email for p in principals if p.email})

    def requester_emails(self, request: Request) -> list[str]:
        if self._identity is None:
            return []
        try:
            principal = self._identity.get_principal(request.requester_id)
        except Exception:
            logger.warning(
                "notification_failed",
                extra={"request_id": str(request.id), "reason": "identity lookup failed"},
                exc_info=True,
            )
            return []
        return [principal.email] if principal is not None and principal.email else []

    # =========================================================================
    # Outcomes
    # =========================================================================

    def notify_outcome(self, outcome: RouterOutcome) -> None:
        """Send whatever notifications a committed router command calls for."""
        request = outcome.request

        if outcome.activated_stage is not None:
            self.dispatch(
                self.approver_emails(outcome.activated_stage),
                NotificationTemplate.STAGE_AWAITING_APPROVAL,
                request_context(request, outcome.activated_stage),
            )

        comment = outcome.ledger_entry.comment if outcome.ledger_entry else None
        if request.status is RequestStatus.COMPLETED:
            self.dispatch(
                self.requester_emails(request),
                NotificationTemplate.REQUEST_COMPLETED,
                request_context(request),
            )
        elif request.status is RequestStatus.REJECTED and outcome.stage is not None:
            self.dispatch(
                self.requester_emails(request),
                NotificationTemplate.REQUEST_REJECTED,
                request_context(request, outcome.stage, comment=comment),
            )
        elif request.status is RequestStatus.DISCONTINUED:
            self.dispatch(
                self.requester_emails(request),
                NotificationTemplate.REQUEST_DISCONTINUED,
                request_context(
                    request, reason=request.metadata.discontinue_reason,
                ),
            )

    def remind(self, request: Request, stage: Stage) -> bool:
        return self.dispatch(
            self.approver_emails(stage),
            NotificationTemplate.STAGE_REMINDER,
            request_context(request, stage),
        )

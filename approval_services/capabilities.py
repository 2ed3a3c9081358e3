"""
approval_services.capabilities -- external collaborators as protocols.

Responsibility:
    Declares the three capabilities the engine consumes but never
    implements: identity lookup, blob storage and notification delivery.
    Concrete implementations are supplied by the host application.
    ``LoggingNotifier`` is the default notifier when none is given.

Architecture position:
    Services -- boundary types.  ``BlobStore`` is declared next to the
    kernel service that uses it and re-exported here.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Protocol, Sequence, runtime_checkable
from uuid import UUID

from approval_kernel.domain.roles import Role
from approval_kernel.domain.workflow import Principal
from approval_kernel.logging_config import get_logger
from approval_kernel.services.attachment_service import BlobStore

logger = get_logger("services.notifier")


@runtime_checkable
class IdentityProvider(Protocol):
    """Directory of already-authenticated principals."""

    def get_principal(self, principal_id: UUID) -> Principal | None:
        ...

    def principals_with_roles(self, roles: Iterable[Role]) -> tuple[Principal, ...]:
        ...


@runtime_checkable
class Notifier(Protocol):
    """Fire-and-forget outbound notification delivery."""

    def notify(
        self,
        recipients: Sequence[str],
        template: str,
        context: Mapping[str, Any],
    ) -> None:
        ...


class LoggingNotifier:
    """Notifier that only writes a log line."""

    def notify(
        self,
        recipients: Sequence[str],
        template: str,
        context: Mapping[str, Any],
    ) -> None:
        logger.info(
            "notification_logged",
            extra={
                "template": template,
                "recipients": list(recipients),
                "sequence_number": context.get("sequence_number"),
            },
        )


__all__ = ["BlobStore", "IdentityProvider", "LoggingNotifier", "Notifier"]

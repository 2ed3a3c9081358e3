"""
approval_services -- imperative shell of the workflow approval engine.

The orchestrator is the public command surface; capabilities declare
what the host application must supply.
"""

from approval_services.capabilities import (
    BlobStore,
    IdentityProvider,
    LoggingNotifier,
    Notifier,
)
from approval_services.notifications import NotificationDispatcher, NotificationTemplate
from approval_services.reminders import ReminderService
from approval_services.workflow_orchestrator import WorkflowOrchestrator

__all__ = [
    "BlobStore",
    "IdentityProvider",
    "LoggingNotifier",
    "NotificationDispatcher",
    "NotificationTemplate",
    "Notifier",
    "ReminderService",
    "WorkflowOrchestrator",
]

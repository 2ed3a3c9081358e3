"""SQLAlchemy ORM models for the approval kernel."""

from approval_kernel.models.attachment import AttachmentModel
from approval_kernel.models.audit_entry import AuditAction, AuditEntryModel
from approval_kernel.models.ledger import LedgerEntryModel
from approval_kernel.models.request import RequestModel, StageModel
from approval_kernel.models.template import TemplateStageModel, WorkflowTemplateModel

__all__ = [
    "AttachmentModel",
    "AuditAction",
    "AuditEntryModel",
    "LedgerEntryModel",
    "RequestModel",
    "StageModel",
    "TemplateStageModel",
    "WorkflowTemplateModel",
]

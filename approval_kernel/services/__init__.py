"""Services for the approval kernel (write side)."""

from approval_kernel.services.attachment_service import AttachmentService, BlobStore
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.ledger_service import LedgerService
from approval_kernel.services.sequence_service import (
    SequenceCounterInfo,
    SequenceService,
    format_identifier,
)
from approval_kernel.services.stage_router import RouterOutcome, StageRouter
from approval_kernel.services.template_service import TemplateService

__all__ = [
    "AttachmentService",
    "AuditorService",
    "BlobStore",
    "LedgerService",
    "RouterOutcome",
    "SequenceCounterInfo",
    "SequenceService",
    "StageRouter",
    "TemplateService",
    "format_identifier",
]

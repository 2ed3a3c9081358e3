"""
Pure domain layer for the approval kernel.

Nothing in this package performs I/O: value objects, state machine tables,
the access evaluator and the approver authorization rule.
"""

from approval_kernel.domain.access import AccessDecision, can_view, visible_stages
from approval_kernel.domain.authorization import (
    AnyApprover,
    ApproverRule,
    OneOf,
    RequiredRole,
    approver_rule_for,
    authorize_approver,
    is_authorized_approver,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.roles import (
    EXECUTIVE_ROLES,
    PRIVILEGED_ROLES,
    SIGNATURE_EXEMPT_ROLES,
    Role,
)
from approval_kernel.domain.routing import StageSpec, Template, validate_stage_specs
from approval_kernel.domain.workflow import (
    Attachment,
    AuditEntry,
    LedgerAction,
    LedgerEntry,
    Principal,
    Request,
    RequestDetails,
    RequestMetadata,
    RequestStatus,
    Stage,
    StageKind,
    StageStatus,
)

__all__ = [
    "AccessDecision",
    "AnyApprover",
    "ApproverRule",
    "Attachment",
    "AuditEntry",
    "Clock",
    "DeterministicClock",
    "EXECUTIVE_ROLES",
    "LedgerAction",
    "LedgerEntry",
    "OneOf",
    "PRIVILEGED_ROLES",
    "Principal",
    "Request",
    "RequestDetails",
    "RequestMetadata",
    "RequestStatus",
    "RequiredRole",
    "Role",
    "SIGNATURE_EXEMPT_ROLES",
    "Stage",
    "StageKind",
    "StageSpec",
    "StageStatus",
    "SystemClock",
    "Template",
    "approver_rule_for",
    "authorize_approver",
    "can_view",
    "is_authorized_approver",
    "validate_stage_specs",
    "visible_stages",
]

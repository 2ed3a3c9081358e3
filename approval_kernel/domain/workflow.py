"""
Workflow domain types (``approval_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the approval engine: request and stage lifecycle
state machines, ledger actions, the authenticated principal, and frozen
snapshots of requests, stages, ledger entries, attachments and audit
entries handed across layer boundaries.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``REQUEST_TRANSITIONS`` / ``STAGE_TRANSITIONS`` define the only valid
  status changes.  Terminal stage statuses have no outgoing edges.
* Once a request is terminal no stage may change
  (``TERMINAL_REQUEST_STATUSES``).
* ``RequestMetadata`` types the known auxiliary facts and keeps a residual
  bag for free-form ones.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from approval_kernel.domain.roles import Role


# =========================================================================
# Request lifecycle
# =========================================================================


class RequestStatus(str, Enum):
    """Overall status of a request."""

    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    DISCONTINUED = "discontinued"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"


REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.DRAFT: frozenset({
        RequestStatus.IN_PROGRESS,
        RequestStatus.DISCONTINUED,
        RequestStatus.CANCELLED,
        RequestStatus.ARCHIVED,
    }),
    RequestStatus.IN_PROGRESS: frozenset({
        RequestStatus.COMPLETED,
        RequestStatus.REJECTED,
        RequestStatus.DISCONTINUED,
        RequestStatus.CANCELLED,
        RequestStatus.ARCHIVED,
    }),
    RequestStatus.COMPLETED: frozenset({RequestStatus.ARCHIVED}),
    RequestStatus.REJECTED: frozenset({
        RequestStatus.DISCONTINUED,
        RequestStatus.ARCHIVED,
    }),
    RequestStatus.DISCONTINUED: frozenset({RequestStatus.ARCHIVED}),
    RequestStatus.CANCELLED: frozenset({RequestStatus.ARCHIVED}),
    RequestStatus.ARCHIVED: frozenset({RequestStatus.ARCHIVED}),
}

TERMINAL_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.COMPLETED,
    RequestStatus.REJECTED,
    RequestStatus.DISCONTINUED,
    RequestStatus.CANCELLED,
    RequestStatus.ARCHIVED,
})


def can_transition_request(current: RequestStatus, target: RequestStatus) -> bool:
    return target in REQUEST_TRANSITIONS.get(current, frozenset())


# =========================================================================
# Stage lifecycle
# =========================================================================


class StageStatus(str, Enum):
    """Status of one stage in a request's routing sequence."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    SKIPPED = "skipped"


STAGE_TRANSITIONS: dict[StageStatus, frozenset[StageStatus]] = {
    StageStatus.PENDING: frozenset({
        StageStatus.IN_PROGRESS,
        StageStatus.SKIPPED,
    }),
    StageStatus.IN_PROGRESS: frozenset({
        StageStatus.COMPLETED,
        StageStatus.REJECTED,
        StageStatus.SKIPPED,
    }),
    StageStatus.COMPLETED: frozenset(),
    StageStatus.REJECTED: frozenset(),
    StageStatus.SKIPPED: frozenset(),
}

TERMINAL_STAGE_STATUSES: frozenset[StageStatus] = frozenset({
    StageStatus.COMPLETED,
    StageStatus.REJECTED,
    StageStatus.SKIPPED,
})


def can_transition_stage(current: StageStatus, target: StageStatus) -> bool:
    return target in STAGE_TRANSITIONS.get(current, frozenset())


class StageKind(str, Enum):
    """Display/notification flavour of a stage."""

    APPROVAL = "approval"
    REVIEW = "review"


class LedgerAction(str, Enum):
    """Actions recorded in the approval ledger."""

    APPROVED = "approved"
    REJECTED = "rejected"
    COMMENTED = "commented"


TERMINAL_LEDGER_ACTIONS: frozenset[LedgerAction] = frozenset({
    LedgerAction.APPROVED,
    LedgerAction.REJECTED,
})


# =========================================================================
# Principal
# =========================================================================


@dataclass(frozen=True)
class Principal:
    """An already-authenticated caller, as supplied by the identity provider."""

    principal_id: UUID
    role: Role
    department: str | None = None
    email: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", Role.parse(self.role))


# =========================================================================
# Request metadata
# =========================================================================

_KNOWN_METADATA_KEYS = (
    "discontinue_reason",
    "discontinued_at",
    "cancel_reason",
    "cancelled_at",
    "archived_at",
)


@dataclass(frozen=True)
class RequestMetadata:
    """Typed view of a request's auxiliary facts plus a residual bag."""

    discontinue_reason: str | None = None
    discontinued_at: datetime | None = None
    cancel_reason: str | None = None
    cancelled_at: datetime | None = None
    archived_at: datetime | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> RequestMetadata:
        data = dict(data or {})
        extra = {k: v for k, v in data.items() if k not in _KNOWN_METADATA_KEYS}
        return cls(
            discontinue_reason=data.get("discontinue_reason"),
            discontinued_at=_parse_ts(data.get("discontinued_at")),
            cancel_reason=data.get("cancel_reason"),
            cancelled_at=_parse_ts(data.get("cancelled_at")),
            archived_at=_parse_ts(data.get("archived_at")),
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe dict; known fields are omitted when unset."""
        out: dict[str, Any] = dict(self.extra)
        for key in _KNOWN_METADATA_KEYS:
            value = getattr(self, key)
            if value is None:
                continue
            out[key] = value.isoformat() if isinstance(value, datetime) else value
        return out


def _parse_ts(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


# =========================================================================
# Snapshots
# =========================================================================


@dataclass(frozen=True)
class Request:
    """Immutable snapshot of a request."""

    id: UUID
    sequence_number: str
    request_type: str
    title: str
    requester_id: UUID
    department: str
    status: RequestStatus
    description: str | None = None
    estimated_amount: Decimal | None = None
    currency: str = "IDR"
    template_id: UUID | None = None
    created_at: datetime | None = None
    submitted_at: datetime | None = None
    completed_at: datetime | None = None
    metadata: RequestMetadata = field(default_factory=RequestMetadata)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REQUEST_STATUSES


@dataclass(frozen=True)
class Stage:
    """Immutable snapshot of a stage."""

    id: UUID
    request_id: UUID
    stage_order: int
    name: str
    kind: str
    status: StageStatus
    required_role: Role | None = None
    one_of_roles: tuple[Role, ...] = ()
    approval_threshold: Decimal | None = None
    visible_to_departments: tuple[str, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LedgerEntry:
    """Record of a single approve/reject/comment action. Immutable."""

    id: UUID
    request_id: UUID
    stage_id: UUID
    actor_id: UUID
    actor_role: str
    action: LedgerAction
    comment: str | None = None
    recorded_at: datetime | None = None


@dataclass(frozen=True)
class Attachment:
    """Locator of a supporting file; the bytes live in the blob store."""

    id: UUID
    request_id: UUID
    file_name: str
    content_type: str
    blob_key: str
    locator: str
    uploaded_by: UUID
    stage_id: UUID | None = None
    size_bytes: int | None = None
    uploaded_at: datetime | None = None


@dataclass(frozen=True)
class AuditEntry:
    """Immutable snapshot of an audit trail row."""

    id: UUID
    entity_type: str
    entity_id: str
    action: str
    description: str
    request_id: UUID | None
    actor_id: UUID | None
    actor_role: str | None
    actor_email: str | None
    before: Mapping[str, Any] | None
    after: Mapping[str, Any] | None
    payload_hash: str
    occurred_at: datetime


@dataclass(frozen=True)
class RequestDetails:
    """What a principal may see of one request."""

    request: Request
    stages: tuple[Stage, ...]
    ledger: tuple[LedgerEntry, ...]
    attachments: tuple[Attachment, ...]
    access_reason: str

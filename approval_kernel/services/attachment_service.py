"""
AttachmentService -- supporting files for requests and stages.

Responsibility:
    Pushes uploaded bytes through the blob capability and records the
    resulting locator.  Answers the "has this actor uploaded a file for
    this stage" question behind the approval upload precondition.

Architecture position:
    Kernel > Services.  The blob store is an injected capability; the
    kernel never touches storage backends directly.

Invariants enforced:
    - Only the blob key and locator are persisted, never the bytes.
    - Blob keys are ``requests/<request_id>/<uuid>-<file_name>``.
    - Uploads are refused on terminal requests.
    - The approver of a stage may upload to that stage even when the
      stage's department list hides the request from them.
    - Upload is split into ``authorize_upload`` / ``store_blob`` /
      ``record`` so a caller can put the bytes once and retry only the
      database work.  A row that never commits leaves one unreferenced
      key in the blob store.

Failure modes:
    - RequestNotFoundError / StageNotFoundError for unknown ids or a stage
      that belongs to another request.
    - UnauthorizedError when the uploader is neither the target stage's
      approver nor able to view the request.
    - InvalidRequestStateError when the request is terminal.
    - A blob store failure propagates before any row is written.

Audit relevance:
    Every upload writes an ``attachment_uploaded`` audit entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from uuid import UUID, uuid4

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from approval_kernel.domain.access import can_view
from approval_kernel.domain.authorization import authorize_approver
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import Attachment, Principal
from approval_kernel.exceptions import (
    AttachmentNotFoundError,
    InvalidRequestStateError,
    RequestNotFoundError,
    StageNotFoundError,
    UnauthorizedError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.attachment import AttachmentModel
from approval_kernel.models.audit_entry import AuditAction
from approval_kernel.models.request import RequestModel, StageModel
from approval_kernel.services.auditor_service import AuditorService

logger = get_logger("services.attachment")


@runtime_checkable
class BlobStore(Protocol):
    """Key/value blob storage returning retrievable locators."""

    def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store bytes under key; return a locator."""
        ...

    def locator_for(self, key: str) -> str:
        """Return a (possibly fresh) locator for an existing key."""
        ...


@dataclass(frozen=True)
class StoredBlob:
    """Bytes already written to the blob store, not yet recorded."""

    key: str
    locator: str
    size_bytes: int


def blob_key_for(request_id: UUID, file_name: str) -> str:
    safe_name = file_name.replace("/", "_").replace("\\", "_").strip() or "file"
    return f"requests/{request_id}/{uuid4()}-{safe_name}"


class AttachmentService:
    """Upload and look up attachment locators."""

    def __init__(
        self,
        session: Session,
        blob_store: BlobStore,
        auditor: AuditorService,
        clock: Clock | None = None,
    ):
        self._session = session
        self._blob_store = blob_store
        self._auditor = auditor
        self._clock = clock or SystemClock()

    def authorize_upload(
        self,
        request_id: UUID,
        stage_id: UUID | None,
        principal: Principal,
    ) -> RequestModel:
        """
        Check that ``principal`` may attach a file to the request.

        The approver of the target stage may always upload to it; anyone
        else needs view access to the request.
        """
        request = self._session.get(RequestModel, request_id)
        if request is None:
            raise RequestNotFoundError(str(request_id))

        stage = None
        if stage_id is not None:
            stage = self._session.get(StageModel, stage_id)
            if stage is None or stage.request_id != request.id:
                raise StageNotFoundError(str(stage_id))

        request_dto = request.to_dto()
        approver_allowed = stage is not None and authorize_approver(stage.to_dto(), principal)[0]
        if not approver_allowed:
            decision = can_view(request_dto, [s.to_dto() for s in request.stages], principal)
            if not decision.has_access:
                raise UnauthorizedError("attach", str(principal.principal_id), decision.reason)

        if request_dto.is_terminal:
            raise InvalidRequestStateError(str(request.id), request.status, "attach")
        return request

    def store_blob(
        self,
        request_id: UUID,
        file_name: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> StoredBlob:
        """Put the bytes under a fresh key.  Touches no database row."""
        key = blob_key_for(request_id, file_name)
        locator = self._blob_store.put(key, data, content_type)
        return StoredBlob(key=key, locator=locator, size_bytes=len(data))

    def record(
        self,
        request_id: UUID,
        stage_id: UUID | None,
        principal: Principal,
        file_name: str,
        blob: StoredBlob,
        content_type: str = "application/octet-stream",
    ) -> Attachment:
        """Persist the row for bytes already in the blob store."""
        request = self.authorize_upload(request_id, stage_id, principal)

        model = AttachmentModel(
            request_id=request.id,
            stage_id=stage_id,
            file_name=file_name,
            content_type=content_type,
            blob_key=blob.key,
            locator=blob.locator,
            size_bytes=blob.size_bytes,
            uploaded_by=principal.principal_id,
            uploaded_at=self._clock.now(),
        )
        self._session.add(model)
        self._session.flush()

        self._auditor.record(
            entity_type="attachment",
            entity_id=model.id,
            action=AuditAction.ATTACHMENT_UPLOADED,
            description=f"Uploaded {file_name} to {request.sequence_number}",
            actor=principal,
            after={
                "file_name": file_name,
                "stage_id": stage_id,
                "blob_key": blob.key,
                "size_bytes": blob.size_bytes,
            },
            request_id=request.id,
        )

        logger.info(
            "attachment_uploaded",
            extra={
                "request_id": str(request.id),
                "stage_id": str(stage_id) if stage_id else None,
                "blob_key": blob.key,
                "size_bytes": blob.size_bytes,
            },
        )
        return model.to_dto()

    def attach(
        self,
        request_id: UUID,
        stage_id: UUID | None,
        principal: Principal,
        file_name: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> Attachment:
        """
        Store a file for a request (optionally scoped to one stage).

        Postconditions:
            - The bytes are in the blob store and an AttachmentModel row
              holding the locator is flushed.
        """
        self.authorize_upload(request_id, stage_id, principal)
        blob = self.store_blob(request_id, file_name, data, content_type)
        return self.record(request_id, stage_id, principal, file_name, blob, content_type)

    def has_upload(self, stage_id: UUID, actor_id: UUID) -> bool:
        """True when ``actor_id`` attached at least one file to ``stage_id``."""
        return bool(
            self._session.execute(
                select(
                    exists().where(
                        AttachmentModel.stage_id == stage_id,
                        AttachmentModel.uploaded_by == actor_id,
                    )
                )
            ).scalar()
        )

    def attachments_for_request(self, request_id: UUID) -> tuple[Attachment, ...]:
        rows = self._session.execute(
            select(AttachmentModel)
            .where(AttachmentModel.request_id == request_id)
            .order_by(AttachmentModel.uploaded_at)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def locator_for(self, attachment_id: UUID) -> str:
        """Fresh locator from the blob store for a stored attachment."""
        model = self._session.get(AttachmentModel, attachment_id)
        if model is None:
            raise AttachmentNotFoundError(str(attachment_id))
        return self._blob_store.locator_for(model.blob_key)

    def get_attachment(self, attachment_id: UUID) -> Attachment:
        model = self._session.get(AttachmentModel, attachment_id)
        if model is None:
            raise AttachmentNotFoundError(str(attachment_id))
        return model.to_dto()

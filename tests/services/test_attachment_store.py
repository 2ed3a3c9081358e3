"""
Tests for AttachmentService (``approval_kernel.services.attachment_service``).

Covers blob key derivation, access checks before upload, the upload
fact used by the approval gate and immutability of attachment rows.
"""

from uuid import uuid4

import pytest

from approval_kernel.exceptions import (
    AttachmentNotFoundError,
    ImmutabilityViolationError,
    InvalidRequestStateError,
    StageNotFoundError,
    UnauthorizedError,
)
from approval_kernel.models.attachment import AttachmentModel
from approval_kernel.models.audit_entry import AuditAction
from approval_kernel.services.attachment_service import blob_key_for


class TestBlobKeys:

    def test_key_is_scoped_to_request_and_sanitized(self):
        request_id = uuid4()
        key = blob_key_for(request_id, "../quote final.pdf")
        assert key.startswith(f"requests/{request_id}/")
        assert "/.." not in key

    def test_keys_are_unique_per_upload(self):
        request_id = uuid4()
        assert blob_key_for(request_id, "a.pdf") != blob_key_for(request_id, "a.pdf")


class TestAttach:

    def test_upload_stores_blob_and_row(self, attachments, blob_store, make_draft, requester, ppic):
        request = make_draft(requester)
        stage_id = request.stages[0].id
        attachment = attachments.attach(request.id, stage_id, ppic, "signed.pdf", b"%PDF", "application/pdf")

        assert blob_store.blobs[attachment.blob_key] == (b"%PDF", "application/pdf")
        assert attachment.locator == f"memory://blobs/{attachment.blob_key}"
        assert attachment.size_bytes == 4
        assert attachments.has_upload(stage_id, ppic.principal_id)
        assert not attachments.has_upload(stage_id, requester.principal_id)
        assert attachments.attachments_for_request(request.id) == (attachment,)

    def test_upload_is_audited(self, attachments, auditor, make_draft, requester):
        request = make_draft(requester)
        attachment = attachments.attach(request.id, None, requester, "quote.xlsx", b"xx")
        trace = auditor.get_trace("attachment", attachment.id)
        assert [e.action for e in trace] == [AuditAction.ATTACHMENT_UPLOADED.value]
        assert trace[0].request_id == request.id

    def test_viewer_without_access_rejected(self, attachments, make_draft, requester, logistics):
        request = make_draft(requester)
        with pytest.raises(UnauthorizedError) as exc_info:
            attachments.attach(request.id, None, logistics, "x.pdf", b"x")
        assert exc_info.value.reason == "no visible stage for department"

    def test_stage_of_other_request_rejected(self, attachments, make_draft, requester):
        first = make_draft(requester)
        second = make_draft(requester)
        with pytest.raises(StageNotFoundError):
            attachments.attach(first.id, second.stages[0].id, requester, "x.pdf", b"x")

    def test_terminal_request_rejected(self, session, attachments, make_draft, requester):
        request = make_draft(requester)
        request.status = "cancelled"
        session.flush()
        with pytest.raises(InvalidRequestStateError):
            attachments.attach(request.id, None, requester, "x.pdf", b"x")

    def test_locator_lookup(self, attachments, make_draft, requester):
        request = make_draft(requester)
        attachment = attachments.attach(request.id, None, requester, "x.pdf", b"x")
        assert attachments.locator_for(attachment.id) == attachment.locator
        assert attachments.get_attachment(attachment.id) == attachment
        with pytest.raises(AttachmentNotFoundError):
            attachments.locator_for(uuid4())

    def test_rows_are_immutable(self, session, attachments, make_draft, requester):
        request = make_draft(requester)
        attachment = attachments.attach(request.id, None, requester, "x.pdf", b"x")
        session.get(AttachmentModel, attachment.id).file_name = "y.pdf"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

"""
Tests for the request and stage state machines
(``approval_kernel.domain.workflow``).

Invariants tested:
- REQUEST_TRANSITIONS / STAGE_TRANSITIONS define the only valid moves.
- Terminal stage statuses have no outgoing edges.
- Archived is reachable from every request status.
- Frozen (immutable) guarantee on the snapshots.
"""

from dataclasses import FrozenInstanceError
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from approval_kernel.domain.roles import Role
from approval_kernel.domain.workflow import (
    REQUEST_TRANSITIONS,
    STAGE_TRANSITIONS,
    TERMINAL_REQUEST_STATUSES,
    TERMINAL_STAGE_STATUSES,
    Principal,
    Request,
    RequestMetadata,
    RequestStatus,
    StageStatus,
    can_transition_request,
    can_transition_stage,
)


class TestRequestStatus:

    def test_all_states_defined(self):
        assert {s.value for s in RequestStatus} == {
            "draft",
            "in_progress",
            "completed",
            "rejected",
            "discontinued",
            "cancelled",
            "archived",
        }

    def test_every_status_has_transition_entry(self):
        for status in RequestStatus:
            assert status in REQUEST_TRANSITIONS

    def test_archive_reachable_from_every_status(self):
        for status in RequestStatus:
            assert can_transition_request(status, RequestStatus.ARCHIVED)

    def test_draft_cannot_complete_directly(self):
        assert not can_transition_request(RequestStatus.DRAFT, RequestStatus.COMPLETED)

    def test_rejected_can_be_discontinued(self):
        assert can_transition_request(RequestStatus.REJECTED, RequestStatus.DISCONTINUED)

    def test_completed_only_archives(self):
        assert REQUEST_TRANSITIONS[RequestStatus.COMPLETED] == frozenset({RequestStatus.ARCHIVED})

    def test_terminal_statuses(self):
        assert RequestStatus.DRAFT not in TERMINAL_REQUEST_STATUSES
        assert RequestStatus.IN_PROGRESS not in TERMINAL_REQUEST_STATUSES
        assert RequestStatus.COMPLETED in TERMINAL_REQUEST_STATUSES
        assert RequestStatus.ARCHIVED in TERMINAL_REQUEST_STATUSES


class TestStageStatus:

    def test_terminal_statuses_have_no_outgoing_edges(self):
        for status in TERMINAL_STAGE_STATUSES:
            assert not STAGE_TRANSITIONS.get(status)

    def test_pending_cannot_complete_without_activation(self):
        assert not can_transition_stage(StageStatus.PENDING, StageStatus.COMPLETED)

    def test_pending_can_be_skipped(self):
        assert can_transition_stage(StageStatus.PENDING, StageStatus.SKIPPED)

    @pytest.mark.parametrize(
        "target", [StageStatus.COMPLETED, StageStatus.REJECTED, StageStatus.SKIPPED],
    )
    def test_in_progress_targets(self, target):
        assert can_transition_stage(StageStatus.IN_PROGRESS, target)

    def test_str_enum_identity(self):
        assert StageStatus.IN_PROGRESS == "in_progress"


class TestSnapshots:

    def test_principal_parses_role_value(self):
        principal = Principal(principal_id=uuid4(), role="CFO")
        assert principal.role is Role.CFO

    def test_principal_rejects_unknown_role(self):
        with pytest.raises(ValueError):
            Principal(principal_id=uuid4(), role="Janitor")

    def test_request_is_frozen(self):
        request = Request(
            id=uuid4(),
            sequence_number="WFMT-MAF-260209-001",
            request_type="MAF",
            title="Spare parts",
            requester_id=uuid4(),
            department="Production",
            status=RequestStatus.DRAFT,
        )
        with pytest.raises(FrozenInstanceError):
            request.status = RequestStatus.COMPLETED

    def test_metadata_round_trips_known_fields_and_extras(self):
        when = datetime(2026, 2, 9, 10, 30, tzinfo=timezone.utc)
        meta = RequestMetadata.from_dict(
            {"discontinue_reason": "budget", "discontinued_at": when.isoformat(), "po_ref": "PO-7"}
        )
        assert meta.discontinued_at == when
        assert meta.extra == {"po_ref": "PO-7"}
        assert meta.to_dict() == {
            "po_ref": "PO-7",
            "discontinue_reason": "budget",
            "discontinued_at": when.isoformat(),
        }

    def test_empty_metadata_serializes_empty(self):
        assert RequestMetadata.from_dict(None).to_dict() == {}

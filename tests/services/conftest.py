"""Fixtures for kernel service tests running inside one rolled-back session."""

from decimal import Decimal
from typing import Sequence

import pytest

from approval_kernel.domain.roles import Role
from approval_kernel.domain.routing import StageSpec
from approval_kernel.domain.workflow import Principal, RequestStatus, StageStatus
from approval_kernel.models.request import RequestModel, StageModel

DEFAULT_STAGES = (
    StageSpec(1, "PPIC Review", required_role=Role.PPIC, visible_to_departments=("PPIC", "Purchasing")),
    StageSpec(2, "Purchasing Review", required_role=Role.PURCHASING, visible_to_departments=("Purchasing",)),
    StageSpec(3, "CFO Approval", required_role=Role.CFO, visible_to_departments=("Finance",)),
)


@pytest.fixture
def make_draft(session, sequences, clock):
    """Insert a draft request with the given stage blueprint."""

    def _make(
        requester: Principal,
        stages: Sequence[StageSpec] = DEFAULT_STAGES,
        amount: Decimal | None = None,
        request_type: str = "MAF",
    ) -> RequestModel:
        request = RequestModel(
            sequence_number=sequences.next_identifier(request_type, clock.today()),
            request_type=request_type,
            title="Spare parts for line 3",
            requester_id=requester.principal_id,
            department=requester.department or "Production",
            estimated_amount=amount,
            currency="IDR",
            status=RequestStatus.DRAFT.value,
            created_at=clock.now(),
            meta={},
            stages=[
                StageModel(
                    stage_order=s.stage_order,
                    name=s.name,
                    kind=s.kind,
                    required_role=s.required_role.value if s.required_role else None,
                    one_of_roles=[r.value for r in s.one_of_roles] or None,
                    approval_threshold=s.approval_threshold,
                    visible_to_departments=list(s.visible_to_departments),
                    status=StageStatus.PENDING.value,
                    meta={},
                )
                for s in stages
            ],
        )
        session.add(request)
        session.flush()
        return request

    return _make

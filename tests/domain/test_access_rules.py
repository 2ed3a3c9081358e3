"""
Tests for the access control evaluator (``approval_kernel.domain.access``).

Rules, first match wins: privileged role, requester, no department,
department on some stage allow-list.

Property-based checks use Hypothesis over random departments, roles and
stage allow-lists.
"""

from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from approval_kernel.domain.access import (
    REASON_NO_DEPARTMENT,
    REASON_NO_VISIBLE_STAGE,
    REASON_PRIVILEGED,
    REASON_REQUESTER,
    REASON_VISIBLE_STAGE,
    can_view,
    visible_stages,
)
from approval_kernel.domain.roles import PRIVILEGED_ROLES, Role
from approval_kernel.domain.workflow import (
    Principal,
    Request,
    RequestStatus,
    Stage,
    StageStatus,
)

DEPARTMENTS = ["PPIC", "Purchasing", "Finance", "Production", "Logistics", "GA"]
ORDINARY_ROLES = [r for r in Role if r not in PRIVILEGED_ROLES]

REQUESTER_ID = uuid4()


def _request() -> Request:
    return Request(
        id=uuid4(),
        sequence_number="WFMT-MAF-260209-001",
        request_type="MAF",
        title="Spare parts",
        requester_id=REQUESTER_ID,
        department="Production",
        status=RequestStatus.IN_PROGRESS,
    )


def _stage(request: Request, order: int, departments: tuple[str, ...]) -> Stage:
    return Stage(
        id=uuid4(),
        request_id=request.id,
        stage_order=order,
        name=f"Stage {order}",
        kind="approval",
        status=StageStatus.PENDING,
        visible_to_departments=departments,
    )


class TestAccessRules:

    def test_privileged_role_wins_over_everything(self):
        request = _request()
        for role in PRIVILEGED_ROLES:
            decision = can_view(request, [], Principal(uuid4(), role))
            assert decision.has_access
            assert decision.reason == REASON_PRIVILEGED

    def test_requester_sees_own_request_without_department(self):
        request = _request()
        decision = can_view(request, [], Principal(REQUESTER_ID, Role.PRODUCTION))
        assert decision.reason == REASON_REQUESTER
        assert decision

    def test_no_department_denied(self):
        request = _request()
        stages = [_stage(request, 1, ("Finance",))]
        decision = can_view(request, stages, Principal(uuid4(), Role.FINANCE))
        assert not decision
        assert decision.reason == REASON_NO_DEPARTMENT

    def test_department_on_allow_list_granted(self):
        request = _request()
        stages = [_stage(request, 1, ("PPIC",)), _stage(request, 2, ("Finance",))]
        decision = can_view(request, stages, Principal(uuid4(), Role.FINANCE, "Finance"))
        assert decision.reason == REASON_VISIBLE_STAGE

    def test_empty_allow_list_is_invisible(self):
        request = _request()
        stages = [_stage(request, 1, ())]
        decision = can_view(request, stages, Principal(uuid4(), Role.GA, "GA"))
        assert decision.reason == REASON_NO_VISIBLE_STAGE

    def test_department_match_is_case_sensitive(self):
        request = _request()
        stages = [_stage(request, 1, ("Finance",))]
        assert not can_view(request, stages, Principal(uuid4(), Role.FINANCE, "finance"))

    def test_visible_stages_filters_by_department(self):
        request = _request()
        s1 = _stage(request, 1, ("PPIC", "Purchasing"))
        s2 = _stage(request, 2, ("Finance",))
        s3 = _stage(request, 3, ("Purchasing",))
        viewer = Principal(uuid4(), Role.PURCHASING, "Purchasing")
        assert visible_stages(request, [s3, s2, s1], viewer) == (s1, s3)

    def test_visible_stages_all_for_requester(self):
        request = _request()
        stages = [_stage(request, 2, ()), _stage(request, 1, ())]
        result = visible_stages(request, stages, Principal(REQUESTER_ID, Role.PRODUCTION))
        assert [s.stage_order for s in result] == [1, 2]

    def test_visible_stages_empty_when_denied(self):
        request = _request()
        stages = [_stage(request, 1, ("Finance",))]
        assert visible_stages(request, stages, Principal(uuid4(), Role.GA, "GA")) == ()


allow_lists = st.lists(
    st.lists(st.sampled_from(DEPARTMENTS), max_size=3, unique=True).map(tuple),
    min_size=0,
    max_size=5,
)


class TestAccessProperties:

    @given(
        role=st.sampled_from(ORDINARY_ROLES),
        department=st.sampled_from(DEPARTMENTS),
        lists=allow_lists,
    )
    @settings(max_examples=200)
    def test_ordinary_access_iff_department_listed(self, role, department, lists):
        request = _request()
        stages = [_stage(request, i + 1, deps) for i, deps in enumerate(lists)]
        decision = can_view(request, stages, Principal(uuid4(), role, department))
        assert decision.has_access == any(department in deps for deps in lists)

    @given(
        role=st.sampled_from(sorted(PRIVILEGED_ROLES, key=lambda r: r.value)),
        department=st.one_of(st.none(), st.sampled_from(DEPARTMENTS)),
        lists=allow_lists,
    )
    def test_privileged_always_granted(self, role, department, lists):
        request = _request()
        stages = [_stage(request, i + 1, deps) for i, deps in enumerate(lists)]
        assert can_view(request, stages, Principal(uuid4(), role, department)).has_access

    @given(department=st.sampled_from(DEPARTMENTS), lists=allow_lists)
    def test_visible_subset_only_contains_listed_stages(self, department, lists):
        request = _request()
        stages = [_stage(request, i + 1, deps) for i, deps in enumerate(lists)]
        viewer = Principal(uuid4(), Role.LOGISTICS, department)
        for stage in visible_stages(request, stages, viewer):
            assert department in stage.visible_to_departments

"""
Tests for approver authorization (``approval_kernel.domain.authorization``).

The stage's role columns fold into exactly one rule; administrators are
always authorized.
"""

from uuid import uuid4

import pytest

from approval_kernel.domain.authorization import (
    AnyApprover,
    OneOf,
    RequiredRole,
    approver_rule_for,
    authorize_approver,
    is_authorized_approver,
)
from approval_kernel.domain.roles import Role
from approval_kernel.domain.workflow import Principal, Stage, StageStatus


def _stage(required_role=None, one_of_roles=()) -> Stage:
    return Stage(
        id=uuid4(),
        request_id=uuid4(),
        stage_order=1,
        name="CEO/COO Approval",
        kind="approval",
        status=StageStatus.IN_PROGRESS,
        required_role=required_role,
        one_of_roles=tuple(one_of_roles),
    )


def _principal(role: Role) -> Principal:
    return Principal(principal_id=uuid4(), role=role)


class TestApproverRuleDerivation:

    def test_required_role(self):
        assert approver_rule_for(_stage(Role.CFO)) == RequiredRole(Role.CFO)

    def test_one_of(self):
        rule = approver_rule_for(_stage(one_of_roles=(Role.CEO, Role.COO)))
        assert rule == OneOf(frozenset({Role.CEO, Role.COO}))

    def test_one_of_folds_in_required_role(self):
        rule = approver_rule_for(_stage(Role.CFO, (Role.CEO, Role.COO)))
        assert rule == OneOf(frozenset({Role.CEO, Role.COO, Role.CFO}))

    def test_no_constraint(self):
        assert approver_rule_for(_stage()) == AnyApprover()


class TestAuthorizeApprover:

    @pytest.mark.parametrize("role", [Role.CEO, Role.COO])
    def test_one_of_members_allowed(self, role):
        allowed, reason = authorize_approver(_stage(one_of_roles=(Role.CEO, Role.COO)), _principal(role))
        assert allowed
        assert reason == "requires one of CEO, COO"

    def test_one_of_outsider_denied_with_reason(self):
        allowed, reason = authorize_approver(
            _stage(one_of_roles=(Role.CEO, Role.COO)), _principal(Role.CFO),
        )
        assert not allowed
        assert "requires one of CEO, COO" in reason

    def test_required_role_mismatch_denied(self):
        assert not is_authorized_approver(_stage(Role.PPIC), _principal(Role.PURCHASING))

    def test_admin_always_allowed(self):
        allowed, reason = authorize_approver(_stage(Role.CEO), _principal(Role.ADMIN))
        assert allowed
        assert reason == "administrator"

    def test_any_approver_allows_every_role(self):
        for role in Role:
            assert is_authorized_approver(_stage(), _principal(role))

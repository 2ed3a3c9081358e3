"""
Tests for stage blueprints (``approval_kernel.domain.routing``).

Invariants tested:
- A valid blueprint is non-empty with orders 1..N, no gaps or ties.
- Unknown roles and missing fields surface as InvalidStageSpecError.
- ``renumber`` closes gaps left by excluded optional stages.
"""

from decimal import Decimal

import pytest

from approval_kernel.domain.roles import Role
from approval_kernel.domain.routing import StageSpec, renumber, validate_stage_specs
from approval_kernel.exceptions import InvalidStageSpecError


def _spec(order: int, name: str | None = None, **kwargs) -> StageSpec:
    return StageSpec(stage_order=order, name=name or f"Stage {order}", **kwargs)


class TestStageSpecFromDict:

    def test_parses_roles_threshold_and_departments(self):
        spec = StageSpec.from_dict(
            {
                "stage_order": 3,
                "name": "CEO/COO Approval",
                "one_of_roles": ["CEO", "COO"],
                "approval_threshold": "5000000",
                "visible_to_departments": ["Finance"],
            }
        )
        assert spec.one_of_roles == (Role.CEO, Role.COO)
        assert spec.approval_threshold == Decimal("5000000")
        assert spec.visible_to_departments == ("Finance",)
        assert spec.kind == "approval"

    def test_explicit_order_overrides_mapping(self):
        spec = StageSpec.from_dict({"name": "PPIC Review", "required_role": "PPIC"}, stage_order=1)
        assert spec.stage_order == 1
        assert spec.required_role is Role.PPIC

    def test_missing_order_raises(self):
        with pytest.raises(InvalidStageSpecError, match="stage_order"):
            StageSpec.from_dict({"name": "No order"})

    def test_unknown_role_raises(self):
        with pytest.raises(InvalidStageSpecError):
            StageSpec.from_dict({"stage_order": 1, "name": "X", "required_role": "Janitor"})

    def test_to_dict_feeds_back_into_from_dict(self):
        spec = _spec(2, "Finance Review", required_role=Role.FINANCE, approval_threshold=Decimal("10"))
        assert StageSpec.from_dict(spec.to_dict()) == spec


class TestValidateStageSpecs:

    def test_returns_sorted(self):
        result = validate_stage_specs([_spec(2), _spec(1), _spec(3)])
        assert [s.stage_order for s in result] == [1, 2, 3]

    def test_empty_rejected(self):
        with pytest.raises(InvalidStageSpecError, match="at least one stage"):
            validate_stage_specs([])

    @pytest.mark.parametrize("orders", [[1, 3], [1, 1], [0, 1], [2, 3]])
    def test_gaps_and_ties_rejected(self, orders):
        with pytest.raises(InvalidStageSpecError, match="without gaps"):
            validate_stage_specs([_spec(o) for o in orders])

    def test_blank_name_rejected(self):
        with pytest.raises(InvalidStageSpecError, match="has no name"):
            validate_stage_specs([StageSpec(stage_order=1, name="  ")])

    def test_negative_threshold_rejected(self):
        with pytest.raises(InvalidStageSpecError, match="negative threshold"):
            validate_stage_specs([_spec(1, approval_threshold=Decimal("-1"))])


class TestRenumber:

    def test_closes_gaps_in_iteration_order(self):
        result = renumber([_spec(1, "A"), _spec(3, "C"), _spec(4, "D")])
        assert [(s.stage_order, s.name) for s in result] == [(1, "A"), (2, "C"), (3, "D")]

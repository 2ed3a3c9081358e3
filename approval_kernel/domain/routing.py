"""
Stage specifications (``approval_kernel.domain.routing``).

Responsibility
--------------
``StageSpec`` is the blueprint a request's stages are created from, whether
the blueprint came from a stored workflow template or from a built-in
route in configuration.  ``validate_stage_specs`` is the single check that
every blueprint passes through before any row is written.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* At least one stage.
* Stage orders form the gap-free sequence 1..N, no ties.
* Every stage has a non-empty name.
* Roles belong to the closed ``Role`` enumeration.
* Thresholds, when present, are non-negative.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence
from uuid import UUID

from approval_kernel.domain.roles import Role
from approval_kernel.domain.workflow import StageKind
from approval_kernel.exceptions import InvalidStageSpecError


@dataclass(frozen=True)
class StageSpec:
    """Blueprint of one stage."""

    stage_order: int
    name: str
    kind: str = StageKind.APPROVAL.value
    description: str | None = None
    required_role: Role | None = None
    one_of_roles: tuple[Role, ...] = ()
    approval_threshold: Decimal | None = None
    visible_to_departments: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], stage_order: int | None = None) -> StageSpec:
        """Build a spec from a plain mapping (YAML or caller input)."""
        try:
            required = data.get("required_role")
            one_of = data.get("one_of_roles") or ()
            threshold = data.get("approval_threshold")
            return cls(
                stage_order=int(data["stage_order"]) if stage_order is None else stage_order,
                name=str(data.get("name") or ""),
                kind=str(data.get("kind") or StageKind.APPROVAL.value),
                description=data.get("description"),
                required_role=Role.parse(required) if required else None,
                one_of_roles=tuple(Role.parse(r) for r in one_of),
                approval_threshold=(
                    Decimal(str(threshold)) if threshold is not None else None
                ),
                visible_to_departments=tuple(
                    str(d) for d in (data.get("visible_to_departments") or ())
                ),
            )
        except KeyError as exc:
            raise InvalidStageSpecError(f"missing field {exc.args[0]}") from exc
        except ValueError as exc:
            raise InvalidStageSpecError(str(exc)) from exc

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage_order": self.stage_order,
            "name": self.name,
            "kind": self.kind,
            "description": self.description,
            "required_role": self.required_role.value if self.required_role else None,
            "one_of_roles": [r.value for r in self.one_of_roles],
            "approval_threshold": (
                str(self.approval_threshold)
                if self.approval_threshold is not None
                else None
            ),
            "visible_to_departments": list(self.visible_to_departments),
        }


@dataclass(frozen=True)
class Template:
    """Immutable snapshot of a stored workflow template."""

    id: UUID
    name: str
    request_type: str
    is_active: bool
    stages: tuple[StageSpec, ...]
    description: str | None = None
    created_by: UUID | None = None
    created_at: datetime | None = None


def validate_stage_specs(specs: Sequence[StageSpec]) -> tuple[StageSpec, ...]:
    """
    Check a blueprint and return it sorted by stage order.

    Raises:
        InvalidStageSpecError: On any violated invariant.
    """
    if not specs:
        raise InvalidStageSpecError("at least one stage is required")

    ordered = tuple(sorted(specs, key=lambda s: s.stage_order))
    expected = list(range(1, len(ordered) + 1))
    actual = [s.stage_order for s in ordered]
    if actual != expected:
        raise InvalidStageSpecError(
            f"stage orders must be 1..{len(ordered)} without gaps or ties, got {actual}"
        )

    for spec in ordered:
        if not spec.name or not spec.name.strip():
            raise InvalidStageSpecError(f"stage {spec.stage_order} has no name")
        roles: Iterable[Any] = (
            ([spec.required_role] if spec.required_role else []) + list(spec.one_of_roles)
        )
        for role in roles:
            if not isinstance(role, Role):
                raise InvalidStageSpecError(
                    f"stage {spec.stage_order} has unknown role {role!r}"
                )
        if spec.approval_threshold is not None and spec.approval_threshold < 0:
            raise InvalidStageSpecError(
                f"stage {spec.stage_order} has a negative threshold"
            )

    return ordered


def renumber(specs: Iterable[StageSpec]) -> tuple[StageSpec, ...]:
    """Assign orders 1..N in iteration order."""
    out = []
    for index, spec in enumerate(specs, start=1):
        out.append(
            StageSpec(
                stage_order=index,
                name=spec.name,
                kind=spec.kind,
                description=spec.description,
                required_role=spec.required_role,
                one_of_roles=spec.one_of_roles,
                approval_threshold=spec.approval_threshold,
                visible_to_departments=spec.visible_to_departments,
            )
        )
    return tuple(out)

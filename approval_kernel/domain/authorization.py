"""
Approver authorization (``approval_kernel.domain.authorization``).

Responsibility
--------------
Decides whether a principal may act as approver (approve or reject) on a
stage.  The stage's role columns are folded into one tagged rule:

    RequiredRole(role)  -- exactly this role
    OneOf(roles)        -- any role in the set (the stage's required role,
                           when also present, is part of the set)
    AnyApprover         -- no role constraint

Administrators are always authorized.  Approve and Reject both call
``is_authorized_approver``; there is no second code path.

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from approval_kernel.domain.roles import Role, is_admin
from approval_kernel.domain.workflow import Principal, Stage


@dataclass(frozen=True)
class RequiredRole:
    role: Role

    def allows(self, role: Role) -> bool:
        return role is self.role

    def describe(self) -> str:
        return f"requires role {self.role.value}"


@dataclass(frozen=True)
class OneOf:
    roles: frozenset[Role]

    def allows(self, role: Role) -> bool:
        return role in self.roles

    def describe(self) -> str:
        names = ", ".join(sorted(r.value for r in self.roles))
        return f"requires one of {names}"


@dataclass(frozen=True)
class AnyApprover:
    def allows(self, role: Role) -> bool:
        return True

    def describe(self) -> str:
        return "any approver"


ApproverRule = Union[RequiredRole, OneOf, AnyApprover]


def approver_rule_for(stage: Stage) -> ApproverRule:
    """Derive the approver rule from a stage's role columns."""
    if stage.one_of_roles:
        roles = set(stage.one_of_roles)
        if stage.required_role is not None:
            roles.add(stage.required_role)
        return OneOf(frozenset(roles))
    if stage.required_role is not None:
        return RequiredRole(stage.required_role)
    return AnyApprover()


def authorize_approver(stage: Stage, principal: Principal) -> tuple[bool, str]:
    """
    Return (allowed, reason).

    The reason names the rule that granted or denied, for audit and error
    messages.
    """
    if is_admin(principal.role):
        return True, "administrator"
    rule = approver_rule_for(stage)
    if rule.allows(principal.role):
        return True, rule.describe()
    return False, f"stage {stage.name!r} {rule.describe()}"


def is_authorized_approver(stage: Stage, principal: Principal) -> bool:
    allowed, _ = authorize_approver(stage, principal)
    return allowed

"""
Access Control Evaluator (``approval_kernel.domain.access``).

Responsibility
--------------
Decides whether a principal may view a request, given the stage list the
caller already fetched.  Pure: no persistence, no clock, no logging.

Rules, first match wins:

1. Privileged role (executives, administrator)   -> grant "privileged role"
2. Principal is the requester                     -> grant "requester"
3. Principal has no department                    -> deny  "no department"
4. Some stage allow-list contains the department  -> grant "visible stage for department"
   otherwise                                      -> deny  "no visible stage for department"

Invariants enforced
-------------------
* A stage whose allow-list is empty or absent is invisible to ordinary
  principals.  Visibility is opt-in.
* Department comparison is exact (case-sensitive).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from approval_kernel.domain.roles import is_privileged
from approval_kernel.domain.workflow import Principal, Request, Stage

REASON_PRIVILEGED = "privileged role"
REASON_REQUESTER = "requester"
REASON_NO_DEPARTMENT = "no department"
REASON_VISIBLE_STAGE = "visible stage for department"
REASON_NO_VISIBLE_STAGE = "no visible stage for department"


@dataclass(frozen=True)
class AccessDecision:
    has_access: bool
    reason: str

    def __bool__(self) -> bool:
        return self.has_access


def _stage_visible_to(stage: Stage, department: str) -> bool:
    return bool(stage.visible_to_departments) and department in stage.visible_to_departments


def can_view(
    request: Request,
    stages: Sequence[Stage],
    principal: Principal,
) -> AccessDecision:
    """Evaluate the visibility rules for one request."""
    if is_privileged(principal.role):
        return AccessDecision(True, REASON_PRIVILEGED)

    if principal.principal_id == request.requester_id:
        return AccessDecision(True, REASON_REQUESTER)

    if not principal.department:
        return AccessDecision(False, REASON_NO_DEPARTMENT)

    if any(_stage_visible_to(s, principal.department) for s in stages):
        return AccessDecision(True, REASON_VISIBLE_STAGE)
    return AccessDecision(False, REASON_NO_VISIBLE_STAGE)


def visible_stages(
    request: Request,
    stages: Sequence[Stage],
    principal: Principal,
) -> tuple[Stage, ...]:
    """The subset of ``stages`` the principal may see, in stage order."""
    ordered = tuple(sorted(stages, key=lambda s: s.stage_order))
    decision = can_view(request, ordered, principal)
    if not decision.has_access:
        return ()
    if decision.reason in (REASON_PRIVILEGED, REASON_REQUESTER):
        return ordered
    return tuple(s for s in ordered if _stage_visible_to(s, principal.department))

"""
Role enumeration (``approval_kernel.domain.roles``).

Responsibility
--------------
Single source of truth for principal roles and the three role sets derived
from them: privileged (visibility bypass), signature-exempt (approval
without an uploaded file), and administrator.  The access evaluator, the
approver authorization check and the upload precondition all read these
sets, so adding or re-classifying a role is a one-place change.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Closed set of roles an authenticated principal can carry."""

    CEO = "CEO"
    COO = "COO"
    CFO = "CFO"
    PPIC = "PPIC"
    PURCHASING = "Purchasing"
    GA = "GA"
    FINANCE = "Finance"
    PRODUCTION = "Production"
    LOGISTICS = "Logistics"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: str | Role) -> Role:
        """Resolve a role from its wire value; raises ValueError if unknown."""
        if isinstance(value, Role):
            return value
        return cls(value)


EXECUTIVE_ROLES: frozenset[Role] = frozenset({Role.CEO, Role.COO, Role.CFO})

PRIVILEGED_ROLES: frozenset[Role] = EXECUTIVE_ROLES | {Role.ADMIN}

SIGNATURE_EXEMPT_ROLES: frozenset[Role] = EXECUTIVE_ROLES


def is_admin(role: Role) -> bool:
    return role is Role.ADMIN


def is_privileged(role: Role) -> bool:
    return role in PRIVILEGED_ROLES


def is_signature_exempt(role: Role) -> bool:
    return role in SIGNATURE_EXEMPT_ROLES

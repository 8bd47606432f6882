"""
Capability table: the authorization policy consulted by every route.

Roles come from the JWT `roles` claim; a principal carrying several roles is
treated as its highest one.
"""
from __future__ import annotations

from enum import Enum
from typing import Iterable


class Role(str, Enum):
    BORROWER = "BORROWER"
    STAFF = "STAFF"
    MANAGER = "MANAGER"
    SUPER_ADMIN = "SUPER_ADMIN"


class Capability(str, Enum):
    SUBMIT_ASSESSMENT = "SUBMIT_ASSESSMENT"
    VIEW_ASSESSMENTS = "VIEW_ASSESSMENTS"
    VIEW_ASSESSMENT_ANALYTICS = "VIEW_ASSESSMENT_ANALYTICS"
    MANAGE_TEMPLATES = "MANAGE_TEMPLATES"
    REGISTER_RESERVATION = "REGISTER_RESERVATION"
    RECORD_RETURN = "RECORD_RETURN"
    REVIEW_RETURN = "REVIEW_RETURN"
    REPORT_DAMAGE = "REPORT_DAMAGE"
    REVIEW_DAMAGE = "REVIEW_DAMAGE"
    VIEW_OVERDUE = "VIEW_OVERDUE"
    VIEW_RETURN_ANALYTICS = "VIEW_RETURN_ANALYTICS"
    VIEW_ANY_REPUTATION = "VIEW_ANY_REPUTATION"
    ADJUST_REPUTATION = "ADJUST_REPUTATION"
    ACT_FOR_ANY_BORROWER = "ACT_FOR_ANY_BORROWER"


ROLE_PRECEDENCE = [Role.SUPER_ADMIN, Role.MANAGER, Role.STAFF, Role.BORROWER]

_STAFF = frozenset({Role.STAFF, Role.MANAGER, Role.SUPER_ADMIN})
_MANAGERS = frozenset({Role.MANAGER, Role.SUPER_ADMIN})
_EVERYONE = frozenset(Role)

CAPABILITIES: dict[Capability, frozenset[Role]] = {
    Capability.SUBMIT_ASSESSMENT: _STAFF,
    Capability.VIEW_ASSESSMENTS: _STAFF,
    Capability.VIEW_ASSESSMENT_ANALYTICS: _MANAGERS,
    Capability.MANAGE_TEMPLATES: _STAFF,
    Capability.REGISTER_RESERVATION: _STAFF,
    # borrowers may return their own items and report damage on them;
    # ownership is checked by the route
    Capability.RECORD_RETURN: _EVERYONE,
    Capability.REPORT_DAMAGE: _EVERYONE,
    Capability.REVIEW_RETURN: _STAFF,
    Capability.REVIEW_DAMAGE: _STAFF,
    Capability.VIEW_OVERDUE: _STAFF,
    Capability.VIEW_RETURN_ANALYTICS: _STAFF,
    Capability.VIEW_ANY_REPUTATION: _STAFF,
    Capability.ADJUST_REPUTATION: _MANAGERS,
    Capability.ACT_FOR_ANY_BORROWER: _STAFF,
}


def check_policy(table: dict[Capability, frozenset[Role]]) -> None:
    """Fails import when a capability has no entry, even under python -O."""
    unmapped = set(Capability) - set(table)
    if unmapped:
        raise RuntimeError(f"No policy entry for capabilities: {sorted(c.value for c in unmapped)}")


check_policy(CAPABILITIES)


def can(role: Role, capability: Capability) -> bool:
    return role in CAPABILITIES[capability]


def resolve_role(claimed: Iterable[str]) -> Role:
    """Highest known role among the claimed role names; BORROWER otherwise."""
    names = {str(r).upper() for r in claimed}
    for role in ROLE_PRECEDENCE:
        if role.value in names:
            return role
    return Role.BORROWER

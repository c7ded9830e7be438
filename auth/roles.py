"""
auth/roles.py -- Role enumeration and the procedure-level role hierarchy.

Two authorization strengths coexist in this application:

  Procedure guards (this module): a total order over roles. A procedure that
      requires AGENT also admits UNDERWRITER and ADMIN.

  Route gate (auth/gate.py): exact match per URL prefix. /admin requires
      ADMIN and nothing else; /agent requires AGENT and nothing else, so an
      ADMIN session is redirected away from agent pages.

Keep the two separate. Merging them either locks admins out of procedures
they are entitled to or lets lower roles into admin pages.

Layer rule: stdlib only.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    CUSTOMER = "CUSTOMER"
    AGENT = "AGENT"
    UNDERWRITER = "UNDERWRITER"
    ADMIN = "ADMIN"

    @property
    def level(self) -> int:
        return ROLE_LEVELS[self]

    @property
    def is_staff(self) -> bool:
        return self in STAFF_ROLES


ROLE_LEVELS: dict[Role, int] = {
    Role.CUSTOMER: 1,
    Role.AGENT: 2,
    Role.UNDERWRITER: 3,
    Role.ADMIN: 4,
}

STAFF_ROLES: frozenset[Role] = frozenset({Role.AGENT, Role.UNDERWRITER, Role.ADMIN})


def parse_role(value: str | Role | None) -> Role | None:
    """Return the Role for a stored or token-carried value, or None if unknown."""
    if value is None:
        return None
    try:
        return Role(value)
    except ValueError:
        return None


def at_least(actual: Role, required: Role) -> bool:
    """Return True if `actual` sits at or above `required` in the hierarchy."""
    return ROLE_LEVELS[actual] >= ROLE_LEVELS[required]


def home_path(role: Role) -> str:
    """Landing page for a role, e.g. /underwriter/dashboard."""
    return f"/{role.value.lower()}/dashboard"

"""
auth/dependencies.py -- FastAPI Depends() helpers for procedure-level auth.

Identity sources are checked in priority order:
  1. Staff session token (cookie "staff_session" or Authorization: Bearer).
  2. Hosted-provider subject in the customer session cookie, resolved to a
     user record.

Both converge on a Principal.

try_get_principal() is the soft variant (returns None).
get_principal() raises Unauthenticated (401).
require_role(Role.X) raises Unauthenticated when nobody is signed in and
Unauthorized (403) when the role is below X in the hierarchy. This is the
"at least" check; the route gate in auth/gate.py applies exact matching.

The manager and adapter instances live on app.state (wired in the lifespan)
so tests can swap stores without touching module globals.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import Unauthenticated, Unauthorized
from auth.models import Principal, StaffSession
from auth.roles import Role, at_least


def try_get_staff_session(request: Request) -> StaffSession | None:
    return request.app.state.sessions.current_session(request)


def try_get_principal(request: Request) -> Principal | None:
    """Resolve the caller from either identity source. Never raises."""
    session = try_get_staff_session(request)
    if session is not None:
        ident = session.identity
        return Principal(user_id=ident.id, email=ident.email, role=ident.role, source="staff")

    subject = request.app.state.external.current_subject(request)
    if subject:
        user = request.app.state.user_store.get_by_external_id(subject)
        if user is not None and user.is_active:
            return Principal(user_id=user.id, email=user.email, role=user.role, source="external")
    return None


def get_principal(request: Request) -> Principal:
    principal = try_get_principal(request)
    if principal is None:
        raise Unauthenticated()
    return principal


def get_staff_session(request: Request) -> StaffSession:
    """Require a staff session specifically (staff-only endpoints like /me)."""
    session = try_get_staff_session(request)
    if session is None:
        raise Unauthenticated()
    return session


def require_role(required: Role):
    """Dependency factory: the caller's role must be at least `required`.

    Use as:
        @router.get("/quotes")
        async def route(principal: Principal = Depends(require_role(Role.AGENT))): ...
    """

    def _guard(request: Request) -> Principal:
        principal = get_principal(request)
        if not at_least(principal.role, required):
            raise Unauthorized()
        return principal

    _guard.__name__ = f"require_{required.value.lower()}"
    return _guard


require_agent = require_role(Role.AGENT)
require_underwriter = require_role(Role.UNDERWRITER)
require_admin = require_role(Role.ADMIN)

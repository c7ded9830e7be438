"""
auth/gate.py -- Route-level authorization: classify a path, decide allow/redirect.

This is the policy half of the gate. api/main.py wraps it in HTTP middleware
that runs before every route handler; the middleware passes the Request in
explicitly so the decision never depends on ambient request state.

Route classes:
  STAFF     /admin, /agent, /underwriter -- staff session whose role EXACTLY
            equals the prefix's role. No hierarchy: an ADMIN session asking for
            /agent/... is redirected to the staff login like anyone else.
  CUSTOMER  /customer -- any signed-in external identity.
  OPEN      everything else.

Prefixes match whole path segments: /admin and /admin/users match, /administer
does not.

Denials are redirects, never bare 403 pages. The originally requested path
and query string go along as ?next= so the login page can send the user back.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlencode

from auth.roles import Role

STAFF_LOGIN_PATH = "/staff/login"
EXTERNAL_SIGN_IN_PATH = "/sign-in"


class RouteClass(str, Enum):
    STAFF = "staff"
    CUSTOMER = "customer"
    OPEN = "open"


STAFF_PREFIXES: dict[str, Role] = {
    "/admin": Role.ADMIN,
    "/agent": Role.AGENT,
    "/underwriter": Role.UNDERWRITER,
}

CUSTOMER_PREFIX = "/customer"


def _matches(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def classify(path: str) -> tuple[RouteClass, Role | None]:
    """Return (route class, exact role required) for a request path."""
    for prefix, role in STAFF_PREFIXES.items():
        if _matches(path, prefix):
            return RouteClass.STAFF, role
    if _matches(path, CUSTOMER_PREFIX):
        return RouteClass.CUSTOMER, None
    return RouteClass.OPEN, None


def login_redirect(base: str, next_path: str) -> str:
    """Build `base?next=<target>`; target is always server-relative, query included."""
    if not next_path.startswith("/") or next_path.startswith("//"):
        next_path = "/"
    return f"{base}?{urlencode({'next': next_path}, safe='/')}"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    route_class: RouteClass
    redirect_to: str | None = None
    reason: str = ""


class RouteGate:
    """Exact-match route policy over a staff session source and a customer source.

    Args:
        sessions: object with current_session(request) -> StaffSession | None
        external: object with current_subject(request) -> str | None
    """

    def __init__(self, sessions, external) -> None:
        self.sessions = sessions
        self.external = external

    def decide(self, request) -> GateDecision:
        path = request.url.path
        route_class, required = classify(path)
        target = f"{path}?{request.url.query}" if request.url.query else path

        if route_class is RouteClass.STAFF:
            session = self.sessions.current_session(request)
            if session is None:
                return GateDecision(False, route_class, login_redirect(STAFF_LOGIN_PATH, target), "no_staff_session")
            if session.identity.role != required:
                return GateDecision(False, route_class, login_redirect(STAFF_LOGIN_PATH, target), "role_mismatch")
            return GateDecision(True, route_class)

        if route_class is RouteClass.CUSTOMER:
            if self.external.current_subject(request) is None:
                return GateDecision(
                    False, route_class, login_redirect(EXTERNAL_SIGN_IN_PATH, target), "no_external_identity"
                )
            return GateDecision(True, route_class)

        return GateDecision(True, route_class)

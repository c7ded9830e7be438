"""
auth/errors.py -- Authentication and authorization error taxonomy.

Every error carries a machine-readable code, a user-safe message and the HTTP
status the API layer renders it with. api/main.py registers one exception
handler for AuthError, so route handlers simply raise.

Enumeration resistance: InvalidCredentials and PasswordNotConfigured are
distinct types (tests and logs can tell them apart) but render the same public
body. StaffOnly is intentionally distinguishable so a customer who lands on
the staff login page is told where to go.
"""

from __future__ import annotations


class AuthError(Exception):
    status_code: int = 400
    code: str = "auth_error"
    message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class Unauthenticated(AuthError):
    """No valid identity on the request."""

    status_code = 401
    code = "unauthenticated"
    message = "Authentication required."


class Unauthorized(AuthError):
    """Identity present, role insufficient."""

    status_code = 403
    code = "forbidden"
    message = "You do not have permission to perform this action."


class InvalidCredentials(AuthError):
    status_code = 401
    code = "bad_credentials"
    message = "Invalid email or password."


class PasswordNotConfigured(AuthError):
    """Staff record without a local password (e.g. provisioned externally)."""

    status_code = InvalidCredentials.status_code
    code = InvalidCredentials.code
    message = InvalidCredentials.message


class StaffOnly(AuthError):
    status_code = 403
    code = "staff_only"
    message = "Access denied. Staff login only."


class InvalidOrExpiredToken(AuthError):
    status_code = 400
    code = "invalid_or_expired_token"
    message = "Invalid or expired password reset token."


class Conflict(AuthError):
    status_code = 409
    code = "conflict"
    message = "A record with that value already exists."

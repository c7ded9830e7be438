"""
API request and response models for the Lalisure auth endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.
"""

from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from auth.models import StaffIdentity, User
from auth.roles import Role

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

# bcrypt only looks at the first 72 bytes; keep passwords well inside that.
PASSWORD_MIN = 8
PASSWORD_MAX = 64
BCRYPT_MAX_BYTES = 72

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise ValueError(f"password must be at most {BCRYPT_MAX_BYTES} bytes when UTF-8 encoded")
    return value


NewPassword = Annotated[str, Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX), AfterValidator(_check_password_bytes)]


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Staff session
# ---------------------------------------------------------------------------


class StaffLoginRequest(BaseModel):
    """Request body for POST /api/v1/staff/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class StaffUser(BaseModel):
    """The identity claims of a staff session, as returned to clients."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: str
    last_name: str
    role: Role

    @classmethod
    def from_identity(cls, identity: StaffIdentity) -> "StaffUser":
        return cls(**identity.to_dict())


class StaffUserEnvelope(BaseModel):
    """Response for login and GET /me: {"user": {...}}."""

    model_config = ConfigDict(frozen=True)

    user: StaffUser


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=128)
    password: NewPassword


# ---------------------------------------------------------------------------
# Staff accounts
# ---------------------------------------------------------------------------


class StaffRegisterRequest(BaseModel):
    """Request body for POST /api/v1/staff/register (admin only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: NewPassword
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    role: Role

    @field_validator("role")
    @classmethod
    def staff_role_only(cls, value: Role) -> Role:
        if not value.is_staff:
            raise ValueError("role must be AGENT, UNDERWRITER or ADMIN")
        return value


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: str
    last_name: str
    role: Role
    is_active: bool
    has_password: bool
    external: bool
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            is_active=user.is_active,
            has_password=bool(user.hashed_password),
            external=bool(user.external_id),
            created_at=user.created_at or "",
        )


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/staff/users/{id}. Admin only."""

    role: Optional[Role] = None
    is_active: Optional[bool] = None


class StaffSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    first_name: str
    last_name: str
    email: str
    phone: str
    agent_code: str
    role: Role

    @classmethod
    def from_user(cls, user: User) -> "StaffSettings":
        return cls(
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            phone=user.phone or "",
            agent_code=user.agent_code or "",
            role=user.role,
        )


class StaffSettingsUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=32)
    agent_code: Optional[str] = Field(default=None, max_length=32)


# ---------------------------------------------------------------------------
# Unified identity
# ---------------------------------------------------------------------------


class PrincipalResponse(BaseModel):
    """Response for GET /api/v1/me -- whoever is calling, from either source."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    role: Role
    source: str

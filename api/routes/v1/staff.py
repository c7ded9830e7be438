"""
api/routes/v1/staff.py -- Staff authentication and account endpoints.

Routes:
  POST  /api/v1/staff/login            -- password login; sets staff_session cookie
  POST  /api/v1/staff/logout           -- clears cookie; always 200
  GET   /api/v1/staff/me               -- current staff identity or 401
  POST  /api/v1/staff/forgot-password  -- always the same 200 body
  POST  /api/v1/staff/reset-password   -- consume reset token
  GET   /api/v1/staff/settings         -- own profile (staff session)
  PUT   /api/v1/staff/settings         -- update own profile (at least AGENT)
  POST  /api/v1/staff/register         -- create staff account (ADMIN)
  GET   /api/v1/staff/users            -- list users (ADMIN)
  PATCH /api/v1/staff/users/{id}       -- change role / active flag (ADMIN)

Security:
  Login is rate-limited per client address; forgot/reset share the stricter
  password limit. Unknown email, wrong password and missing local password
  all return the same 401 body. Only the customer-role case (staff_only) is
  distinguishable. forgot-password responds identically for every email.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    FORGOT_PASSWORD_MESSAGE,
    ForgotPasswordRequest,
    MessageResponse,
    ResetPasswordRequest,
    StaffLoginRequest,
    StaffRegisterRequest,
    StaffSettings,
    StaffSettingsUpdate,
    StaffUser,
    StaffUserEnvelope,
    UserPatch,
    UserResponse,
)
from auth.dependencies import get_staff_session, require_admin, require_agent
from auth.errors import AuthError
from auth.models import Principal, StaffSession
from auth.roles import Role
from auth.sessions import StaffSessionManager
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("lalisure.api.staff")

_settings = get_settings()

# Auth policy:
# - POST  /staff/login, /staff/logout, /staff/forgot-password, /staff/reset-password: public
# - GET   /staff/me, /staff/settings: staff session
# - PUT   /staff/settings: at least AGENT
# - POST  /staff/register, GET /staff/users, PATCH /staff/users/{id}: ADMIN
router = APIRouter(prefix="/staff")


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/login", response_model=StaffUserEnvelope)
@limiter.limit(_settings.login_rate_limit)
def login(request: Request, body: StaffLoginRequest) -> JSONResponse:
    """Authenticate a staff member and set the session cookie."""
    sessions: StaffSessionManager = request.app.state.sessions
    try:
        identity, token = sessions.login(body.email, body.password)
    except AuthError as exc:
        logger.warning("Staff login failed (%s) from %s", type(exc).__name__, _client(request))
        raise

    resp = JSONResponse(
        status_code=200,
        content=StaffUserEnvelope(user=StaffUser.from_identity(identity)).model_dump(mode="json"),
    )
    sessions.start_session(resp, token)
    logger.info("Staff login user_id=%s role=%s from %s", identity.id, identity.role.value, _client(request))
    return resp


@router.post("/logout", response_model=MessageResponse)
async def logout(request: Request) -> JSONResponse:
    """Clear the session cookie. Succeeds whether or not a session existed."""
    resp = JSONResponse(content={"message": "Logged out successfully."})
    request.app.state.sessions.logout(resp)
    return resp


@router.post("/forgot-password", response_model=MessageResponse)
@limiter.limit(_settings.password_rate_limit)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    request.app.state.sessions.forgot_password(body.email)
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
@limiter.limit(_settings.password_rate_limit)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    request.app.state.sessions.reset_password(body.token, body.password)
    return MessageResponse(message="Password has been reset successfully.")


# ---------------------------------------------------------------------------
# Staff session endpoints
# ---------------------------------------------------------------------------


@router.get("/me", response_model=StaffUserEnvelope)
async def me(session: StaffSession = Depends(get_staff_session)) -> StaffUserEnvelope:
    """Return the identity carried by the current staff session."""
    return StaffUserEnvelope(user=StaffUser.from_identity(session.identity))


@router.get("/settings", response_model=StaffSettings)
def get_own_settings(request: Request, session: StaffSession = Depends(get_staff_session)) -> StaffSettings:
    user = request.app.state.sessions.get_settings(session.identity)
    if user is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})
    return StaffSettings.from_user(user)


@router.put("/settings", response_model=StaffSettings)
def update_own_settings(
    request: Request,
    body: StaffSettingsUpdate,
    _principal: Principal = Depends(require_agent),
    session: StaffSession = Depends(get_staff_session),
) -> StaffSettings:
    user = request.app.state.sessions.update_settings(session.identity, body.model_dump(exclude_none=True))
    if user is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})
    return StaffSettings.from_user(user)


# ---------------------------------------------------------------------------
# Account management (admin only)
# ---------------------------------------------------------------------------


@router.post("/register", response_model=UserResponse, status_code=201)
def register(
    request: Request,
    body: StaffRegisterRequest,
    principal: Principal = Depends(require_admin),
) -> UserResponse:
    """Create a staff account with a local password. Admin only."""
    user = request.app.state.sessions.register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=body.role,
    )
    logger.info("user_id=%s registered staff user_id=%s", principal.user_id, user.id)
    return UserResponse.from_user(user)


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, _principal: Principal = Depends(require_admin)) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_user(u) for u in user_store.list_users()]


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    principal: Principal = Depends(require_admin),
) -> UserResponse:
    """Change a user's role or active flag. Admin only.

    Blocks an admin from changing or deactivating their own account, and
    blocks removing the last active admin.
    """
    user_store: UserStore = request.app.state.user_store

    target = user_store.get_by_id(user_id)
    if target is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})

    updates: dict = {}
    if body.role is not None and body.role != target.role:
        updates["role"] = body.role
    if body.is_active is not None and body.is_active != target.is_active:
        updates["is_active"] = body.is_active
    if not updates:
        raise HTTPException(status_code=400, detail={"code": "no_changes", "message": "No fields to update."})

    if target.id == principal.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_modification", "message": "You cannot change your own role or status."},
        )
    removes_admin = target.role == Role.ADMIN and target.is_active and (
        updates.get("role", Role.ADMIN) != Role.ADMIN or updates.get("is_active") is False
    )
    if removes_admin and user_store.count_active_admins() <= 1:
        raise HTTPException(
            status_code=400,
            detail={"code": "last_admin", "message": "Cannot remove the last active admin account."},
        )

    user_store.update_user(user_id, **updates)
    logger.info("user_id=%s updated user_id=%s fields=%s", principal.user_id, user_id, sorted(updates))
    return UserResponse.from_user(user_store.get_by_id(user_id))

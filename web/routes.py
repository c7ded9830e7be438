"""
web/routes.py -- Jinja2 template routes for the Lalisure sign-in pages and dashboards.

These routes serve server-rendered HTML. They share app.state with the API
routes (same user store, session manager and identity adapter) but return
HTML and redirects instead of JSON.

The role dashboards carry no checks of their own: the authorization gate in
api/main.py has already redirected anyone whose session does not match the
path prefix before a handler here runs.

Routes:
  GET  /                          -- landing page; signed-in users go to their dashboard
  GET  /staff/login               -- staff login form
  POST /staff/login               -- handle login form, redirect to ?next or role home
  POST /staff/logout              -- clear staff session, redirect to /staff/login
  GET  /staff/forgot-password     -- request a reset link
  POST /staff/forgot-password     -- always shows the same confirmation
  GET  /staff/reset-password      -- new-password form (?token=...)
  POST /staff/reset-password      -- consume token, redirect to login
  GET  /sign-in                   -- customer sign-in via the hosted provider
  GET  /sign-in/callback          -- OIDC callback; provisions the customer record
  GET  /sign-out                  -- clear the customer session
  GET  /{admin,agent,underwriter,customer}/dashboard

The shared rate limiter is the only import from api/.
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from api.limiter import limiter
from auth.dependencies import try_get_principal, try_get_staff_session
from auth.errors import AuthError, InvalidOrExpiredToken
from auth.external import get_oidc_user_info, provision_customer
from auth.roles import Role, home_path
from core.config import get_settings

logger = logging.getLogger("lalisure.web")

_settings = get_settings()

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# layout.html renders the signed-in banner from this global, so handlers do
# not have to pass the principal into every template context.
templates.env.globals["try_get_principal"] = try_get_principal
router = APIRouter()

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# ?error= values are mapped through this table. The raw query param never
# reaches a template.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid email or password.",
    "staff_only": "This sign-in is for staff. Customers sign in through the customer portal.",
    "invalid_or_expired_token": "That reset link is invalid or has expired. Request a new one.",
    "password_reset": "Your password has been reset. Sign in with the new password.",
    "sign_in_failed": "Sign-in failed. Please try again.",
    "account_conflict": "This email is registered to a staff account. Use the staff login.",
    "not_configured": "Customer sign-in is not available right now.",
}

_SIGN_IN_NEXT_KEY = "sign_in_next"

_FORGOT_PASSWORD_NOTICE = "If an account with that email exists, a password reset link has been sent."


def _safe_next(next_url: Optional[str], fallback: str = "/") -> str:
    """Validate a post-login redirect target. Only relative paths are accepted.

    Rejects absolute URLs and protocol-relative ones ("//host/...") so a
    crafted ?next= can never send the browser off-site.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return fallback


def _error_msg(request: Request) -> Optional[str]:
    return _ERROR_MESSAGES.get(request.query_params.get("error", ""))


def _login_url(error: str, next_url: Optional[str]) -> str:
    params = {"error": error}
    if _safe_next(next_url, ""):
        params["next"] = next_url
    return f"/staff/login?{urlencode(params, safe='/')}"


# ---------------------------------------------------------------------------
# Landing
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def index(request: Request) -> HTMLResponse:
    principal = try_get_principal(request)
    if principal is not None:
        return RedirectResponse(home_path(principal.role), status_code=302)
    return templates.TemplateResponse(request, "index.html", {"oidc_enabled": _settings.oidc_enabled})


# ---------------------------------------------------------------------------
# Staff login / logout
# ---------------------------------------------------------------------------


@router.get("/staff/login", response_class=HTMLResponse)
def staff_login_form(request: Request) -> HTMLResponse:
    """Render the staff login form. Staff already signed in go straight home."""
    session = try_get_staff_session(request)
    if session is not None:
        return RedirectResponse(home_path(session.identity.role), status_code=302)
    return templates.TemplateResponse(
        request,
        "staff_login.html",
        {
            "error_msg": _error_msg(request),
            "next_url": _safe_next(request.query_params.get("next"), ""),
        },
    )


@router.post("/staff/login", response_class=HTMLResponse)
@limiter.limit(_settings.login_rate_limit)
def staff_login_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    next_url: str = Form("", alias="next"),
) -> RedirectResponse:
    """Handle the login form. Errors come back as ?error= codes."""
    sessions = request.app.state.sessions
    try:
        identity, token = sessions.login(email, password)
    except AuthError as exc:
        logger.warning("Staff form login failed (%s)", type(exc).__name__)
        return RedirectResponse(_login_url(exc.code, next_url), status_code=302)

    resp = RedirectResponse(_safe_next(next_url, home_path(identity.role)), status_code=302)
    sessions.start_session(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/staff/logout")
def staff_logout(request: Request) -> RedirectResponse:
    resp = RedirectResponse("/staff/login", status_code=302)
    request.app.state.sessions.logout(resp)
    return resp


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.get("/staff/forgot-password", response_class=HTMLResponse)
def forgot_password_form(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "forgot_password.html", {"notice": None})


@router.post("/staff/forgot-password", response_class=HTMLResponse)
@limiter.limit(_settings.password_rate_limit)
def forgot_password_post(request: Request, email: str = Form(...)) -> HTMLResponse:
    """Same page and notice for every submitted email."""
    request.app.state.sessions.forgot_password(email)
    return templates.TemplateResponse(request, "forgot_password.html", {"notice": _FORGOT_PASSWORD_NOTICE})


@router.get("/staff/reset-password", response_class=HTMLResponse)
def reset_password_form(request: Request, token: str = "") -> HTMLResponse:
    if not token:
        return RedirectResponse("/staff/forgot-password", status_code=302)
    return templates.TemplateResponse(request, "reset_password.html", {"token": token, "error_msg": None})


@router.post("/staff/reset-password", response_class=HTMLResponse)
@limiter.limit(_settings.password_rate_limit)
def reset_password_post(
    request: Request,
    token: str = Form(...),
    password: str = Form(...),
    confirm_password: str = Form(...),
) -> HTMLResponse:
    if password != confirm_password:
        return templates.TemplateResponse(
            request, "reset_password.html", {"token": token, "error_msg": "Passwords do not match."}
        )
    if not 8 <= len(password) <= 64 or len(password.encode("utf-8")) > 72:
        return templates.TemplateResponse(
            request,
            "reset_password.html",
            {"token": token, "error_msg": "Password must be between 8 and 64 characters."},
        )
    try:
        request.app.state.sessions.reset_password(token, password)
    except InvalidOrExpiredToken:
        return RedirectResponse("/staff/login?error=invalid_or_expired_token", status_code=302)
    return RedirectResponse("/staff/login?error=password_reset", status_code=302)


# ---------------------------------------------------------------------------
# Customer sign-in (hosted provider)
#
# /sign-in/callback must be registered before anything that could capture
# "/sign-in/{...}" as a path parameter.
# ---------------------------------------------------------------------------


@router.get("/sign-in/callback", response_class=HTMLResponse, name="sign_in_callback")
async def sign_in_callback(request: Request) -> RedirectResponse:
    """Finish the hosted-provider flow and start the customer session.

    Flow:
      1. Exchange the authorization code (authlib checks the state parameter).
      2. Extract verified email and subject; unverified email is a failure.
      3. Find, link or create the CUSTOMER record for the subject.
      4. Store the subject in the session and go to ?next or the dashboard.
    """
    if not _settings.oidc_enabled:
        return RedirectResponse("/sign-in?error=not_configured", status_code=302)

    client = request.app.state.oauth.create_client("identity")
    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("Identity provider token exchange failed")
        return RedirectResponse("/sign-in?error=sign_in_failed", status_code=302)

    try:
        email, subject, first_name, last_name = get_oidc_user_info(token)
    except ValueError as e:
        logger.warning("Customer sign-in rejected: %s", e)
        return RedirectResponse("/sign-in?error=sign_in_failed", status_code=302)

    try:
        user = provision_customer(request.app.state.user_store, subject, email, first_name, last_name)
    except ValueError:
        logger.warning("Customer sign-in refused: email belongs to another identity")
        return RedirectResponse("/sign-in?error=account_conflict", status_code=302)
    if not user.is_active:
        return RedirectResponse("/sign-in?error=sign_in_failed", status_code=302)

    request.app.state.external.sign_in(request, subject)
    next_url = _safe_next(request.session.pop(_SIGN_IN_NEXT_KEY, None), home_path(Role.CUSTOMER))
    resp = RedirectResponse(next_url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/sign-in", response_class=HTMLResponse)
async def sign_in(request: Request) -> HTMLResponse:
    """Send the browser to the hosted provider, or explain why we cannot."""
    if request.app.state.external.current_subject(request) is not None:
        return RedirectResponse(home_path(Role.CUSTOMER), status_code=302)
    if not _settings.oidc_enabled or request.query_params.get("error"):
        return templates.TemplateResponse(
            request,
            "sign_in.html",
            {"error_msg": _error_msg(request) or _ERROR_MESSAGES["not_configured"], "oidc_enabled": _settings.oidc_enabled},
        )

    request.session[_SIGN_IN_NEXT_KEY] = _safe_next(request.query_params.get("next"), "")
    client = request.app.state.oauth.create_client("identity")
    redirect_uri = str(request.url_for("sign_in_callback"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/sign-out")
def sign_out(request: Request) -> RedirectResponse:
    request.app.state.external.sign_out(request)
    return RedirectResponse("/", status_code=302)


# ---------------------------------------------------------------------------
# Role dashboards
# ---------------------------------------------------------------------------


def _dashboard(request: Request, role: Role) -> HTMLResponse:
    principal = try_get_principal(request)
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {"role": role, "principal": principal},
    )


@router.get("/admin/dashboard", response_class=HTMLResponse)
def admin_dashboard(request: Request) -> HTMLResponse:
    return _dashboard(request, Role.ADMIN)


@router.get("/agent/dashboard", response_class=HTMLResponse)
def agent_dashboard(request: Request) -> HTMLResponse:
    return _dashboard(request, Role.AGENT)


@router.get("/underwriter/dashboard", response_class=HTMLResponse)
def underwriter_dashboard(request: Request) -> HTMLResponse:
    return _dashboard(request, Role.UNDERWRITER)


@router.get("/customer/dashboard", response_class=HTMLResponse)
def customer_dashboard(request: Request) -> HTMLResponse:
    return _dashboard(request, Role.CUSTOMER)

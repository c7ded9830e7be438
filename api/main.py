"""
api/main.py -- FastAPI application entry point for the Lalisure auth service.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests           -- method, path, status, latency per request
  2. security_headers       -- page/API header sets on every response; renders
                               unhandled exceptions as the 500 envelope
  3. TrustedHostMiddleware  -- rejects requests with unexpected Host headers
  4. SessionMiddleware      -- signed customer session cookie (authlib state
                               and the hosted-provider subject)
  5. SlowAPIMiddleware      -- default rate limits
  6. authorization_gate     -- route-class enforcement

The gate sits inside SessionMiddleware so request.session is populated when
it looks up the customer subject.

Lifespan wires the credential store, mailer, session manager, external
identity adapter and route gate into app.state. Tests replace the lifespan
to inject isolated stores.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.identity import router as identity_router
from api.routes.v1.staff import router as staff_router
from api.routes.webhooks import router as webhooks_router
from api.security_headers import apply_security_headers
from auth.errors import AuthError
from auth.external import ExternalIdentity
from auth.external import oauth as oauth_client
from auth.gate import RouteGate
from auth.mailer import ResendMailer
from auth.sessions import StaffSessionManager
from auth.store import UserStore
from core.config import get_settings

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("lalisure.api")

_settings = get_settings()


def wire_auth(app: FastAPI, user_store: UserStore, mailer, clock=None) -> None:
    """Attach the auth collaborators to app.state.

    Shared by the real lifespan and the test lifespan so both build the
    manager/gate graph the same way.
    """
    app.state.user_store = user_store
    app.state.mailer = mailer
    app.state.sessions = StaffSessionManager(user_store, mailer, clock=clock)
    app.state.external = ExternalIdentity()
    app.state.gate = RouteGate(app.state.sessions, app.state.external)
    app.state.oauth = oauth_client


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the credential store on startup and dispose of it on shutdown."""
    logger.info("Lalisure auth service starting up")
    wire_auth(app, UserStore(_settings.database_url), ResendMailer())
    logger.info(
        "Auth initialized (identity_provider=%s, email=%s)",
        _settings.oidc_enabled,
        app.state.mailer.is_configured,
    )

    yield

    app.state.user_store.close()
    logger.info("Lalisure auth service shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Lalisure Auth API",
    description="Staff sessions, customer identity and role-based authorization.",
    version=VERSION,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Authorization gate
#
# Runs before every route handler. Staff prefixes need a staff session whose
# role equals the prefix's role; /customer needs a hosted-provider subject.
# Denials are redirects.
# ---------------------------------------------------------------------------


async def authorization_gate(request: Request, call_next):
    decision = request.app.state.gate.decide(request)
    if decision.allowed:
        return await call_next(request)
    logger.info("Gate redirect %s (%s) -> %s", request.url.path, decision.reason, decision.redirect_to)
    return RedirectResponse(decision.redirect_to, status_code=302)


def _internal_error_response() -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")).model_dump(),
    )


async def security_headers(request: Request, call_next):
    """Stamp security headers on every response, including host rejections and 500s.

    Unhandled exceptions are rendered here rather than in Starlette's
    ServerErrorMiddleware, which sits outside every user middleware.
    """
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        response = _internal_error_response()
    apply_security_headers(response, request.url.path)
    return response


# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() inserts at the outermost position, so registration order
# here is innermost first.
# ---------------------------------------------------------------------------

app.middleware("http")(authorization_gate)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    session_cookie="customer_session",
    same_site="lax",
    https_only=_settings.secure_cookies,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.middleware("http")(security_headers)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    client = request.client.host if request.client else "unknown"
    logger.info("%s %s -> %d (%.1f ms) client=%s", request.method, request.url.path, response.status_code, elapsed_ms, client)
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(staff_router, prefix="/api/v1", tags=["Staff"])
app.include_router(identity_router, prefix="/api/v1", tags=["Identity"])
app.include_router(webhooks_router, prefix="/api", tags=["Webhooks"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error and Retry-After."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests. Please try again later.",
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail="; ".join(
                    f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
                ),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Structured error for HTTPException; dict details are used as-is."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all. The traceback goes to the log, never to the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    response = _internal_error_response()
    apply_security_headers(response, request.url.path)
    return response


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)

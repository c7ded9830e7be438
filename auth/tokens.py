"""
auth/tokens.py -- Password hashing, staff session JWTs and reset tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry the
       staff identity (id, email, names, role) plus iat/exp. Verification
       returns None on any failure -- the gate turns that into a redirect and
       the API layer into a 401. Sessions are stateless: nothing is stored
       server-side, so a token cannot be revoked before it expires.

  Expiry is inclusive: a token checked at exactly its exp instant is expired.
       jose's own exp check accepts that instant, so it is disabled and the
       comparison is done here against an injectable clock.

  Passwords: bcrypt directly (no passlib wrapper). _DUMMY_HASH enables timing
       equalization so response time does not reveal whether an email exists.

  Reset tokens: secrets.token_hex(32) gives 256 bits of entropy. We store
       HMAC-SHA256(SECRET_KEY, raw_token) so lookup is a single indexed
       equality and a leaked database row is useless without SECRET_KEY.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import StaffIdentity, StaffSession
from auth.roles import parse_role
from core.config import get_settings

logger = logging.getLogger("lalisure.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

SESSION_COOKIE = "staff_session"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt rejects inputs over 72 bytes; the API layer caps password length
    well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first failed login is not measurably
# slower than later ones.
_DUMMY_HASH: str = hash_password("lalisure_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run bcrypt against the dummy hash. Used on paths with no real hash."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Staff session JWT
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_session_token(
    identity: StaffIdentity,
    now: datetime | None = None,
    expire_seconds: int = 0,
) -> tuple[str, datetime]:
    """Encode a signed staff session token. Returns (token, expires_at).

    Args:
        identity:       Claims to embed.
        now:            Issue instant; defaults to the current UTC time.
        expire_seconds: Lifetime in seconds. 0 means Settings.session_expire_seconds.
    """
    issued = (now or _utcnow()).replace(microsecond=0)
    duration = expire_seconds if expire_seconds > 0 else _settings.session_expire_seconds
    expires_at = issued + timedelta(seconds=duration)
    payload = {
        "sub": str(identity.id),
        "email": identity.email,
        "first_name": identity.first_name,
        "last_name": identity.last_name,
        "role": identity.role.value,
        "iat": int(issued.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM), expires_at


def decode_session_token(token: str, now: datetime | None = None) -> StaffSession | None:
    """Verify a staff session token. Returns None on any failure.

    Failures: bad signature, malformed payload, exp at or before `now`, or a
    role that is not a staff role.
    """
    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        return None

    exp = payload.get("exp")
    role = parse_role(payload.get("role"))
    if not isinstance(exp, int) or role is None or not role.is_staff:
        return None

    expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
    if (now or _utcnow()) >= expires_at:
        return None

    try:
        identity = StaffIdentity(
            id=int(payload["sub"]),
            email=payload["email"],
            first_name=payload.get("first_name", ""),
            last_name=payload.get("last_name", ""),
            role=role,
        )
    except (KeyError, TypeError, ValueError):
        return None
    return StaffSession(identity=identity, expires_at=expires_at)


def read_session_token(request) -> str | None:
    """Pull the raw staff token from the session cookie or a Bearer header."""
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


# ---------------------------------------------------------------------------
# Password reset tokens
# ---------------------------------------------------------------------------


def generate_reset_token() -> str:
    """Return a new raw reset token (64 hex chars). Never persisted."""
    return secrets.token_hex(32)


def hash_reset_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string."""
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the staff session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie.
    samesite="lax": not sent on cross-site POST.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the token lifetime so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.session_expire_seconds
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
        path="/",
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(
        SESSION_COOKIE,
        path="/",
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
    )

"""
auth/sessions.py -- Staff session manager: login, logout, current session,
password reset and self-service settings for the staff identity path.

The manager is transport-agnostic apart from the cookie helpers: it takes
plain values, returns domain objects and raises auth.errors types. Routes in
api/routes/v1/staff.py map those to HTTP.

Login order (each step can only fail with its own error):
  normalize email -> look up -> customer role? StaffOnly
  -> no local password? PasswordNotConfigured -> bcrypt mismatch? InvalidCredentials
  -> issue token.

Unknown emails and missing hashes still run bcrypt against the dummy hash so
all failure paths cost the same.

Reset-token lifecycle per user:
  NoResetPending -> ResetRequested (hash + expiry stored)
    -> ResetConsumed (password swapped, fields cleared) -> NoResetPending
    -> ResetExpired (fields stay until the next request overwrites them)

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from sqlalchemy.exc import IntegrityError

from auth.errors import Conflict, InvalidCredentials, InvalidOrExpiredToken, PasswordNotConfigured, StaffOnly
from auth.mailer import Mailer, password_reset_message
from auth.models import StaffIdentity, StaffSession, User
from auth.roles import STAFF_ROLES, Role
from auth.store import UserStore, normalize_email
from auth.tokens import (
    burn_password_check,
    clear_session_cookie,
    create_session_token,
    decode_session_token,
    generate_reset_token,
    hash_password,
    hash_reset_token,
    read_session_token,
    set_session_cookie,
    verify_password,
)
from core.config import Settings, get_settings

logger = logging.getLogger("lalisure.auth")

SETTINGS_FIELDS = ("first_name", "last_name", "phone", "agent_code")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StaffSessionManager:
    """Orchestrates the staff identity path over a UserStore.

    Args:
        store:    Credential store.
        mailer:   Anything with send(EmailMessage) -> bool.
        settings: Defaults to get_settings().
        clock:    Returns the current UTC datetime. Tests inject a fixed clock.
    """

    def __init__(
        self,
        store: UserStore,
        mailer: Mailer,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.settings = settings or get_settings()
        self.clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Login / logout / current session
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> tuple[StaffIdentity, str]:
        """Authenticate a staff member. Returns (identity, signed token)."""
        user = self.store.get_by_email(normalize_email(email))
        if user is None or not user.is_active:
            burn_password_check(password)
            raise InvalidCredentials()
        if user.role == Role.CUSTOMER:
            burn_password_check(password)
            raise StaffOnly()
        if not user.hashed_password:
            burn_password_check(password)
            raise PasswordNotConfigured()
        if not verify_password(password, user.hashed_password):
            raise InvalidCredentials()

        identity = StaffIdentity.from_user(user)
        token, _expires_at = create_session_token(
            identity, now=self.clock(), expire_seconds=self.settings.session_expire_seconds
        )
        return identity, token

    def start_session(self, response, token: str) -> None:
        set_session_cookie(response, token, expire_seconds=self.settings.session_expire_seconds)

    def logout(self, response) -> None:
        """Clear the session cookie. Idempotent; the token itself stays valid until exp."""
        clear_session_cookie(response)

    def current_session(self, request) -> StaffSession | None:
        """Return the verified staff session on this request, or None."""
        token = read_session_token(request)
        if not token:
            return None
        return decode_session_token(token, now=self.clock())

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        """Issue a reset link for a staff account. Silent for everyone else.

        The caller must return the same response whether or not anything
        happened here.
        """
        user = self.store.get_by_email(normalize_email(email))
        if user is None or user.role == Role.CUSTOMER or not user.is_active:
            logger.info("Password reset skipped: no active staff account for that email")
            return

        raw_token = generate_reset_token()
        expires_at = self.clock() + timedelta(seconds=self.settings.password_reset_expire_seconds)
        self.store.set_reset_token(user.id, hash_reset_token(raw_token), expires_at)

        reset_url = f"{self.settings.app_url.rstrip('/')}/staff/reset-password?{urlencode({'token': raw_token})}"
        self.mailer.send(password_reset_message(user.email, reset_url))
        logger.info("Password reset token issued for user_id=%s", user.id)

    def reset_password(self, raw_token: str, new_password: str) -> None:
        """Consume a reset token and set a new password.

        Raises InvalidOrExpiredToken if the token is unknown, superseded,
        already used, or expired (expiry at exactly `now` counts as expired).
        """
        token_hash = hash_reset_token(raw_token)
        now = self.clock()
        if self.store.find_by_reset_token(token_hash, now) is None:
            raise InvalidOrExpiredToken()
        user_id = self.store.consume_reset_token(token_hash, hash_password(new_password), now)
        if user_id is None:
            raise InvalidOrExpiredToken()
        logger.info("Password reset completed for user_id=%s", user_id)

    # ------------------------------------------------------------------
    # Registration and settings
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, first_name: str, last_name: str, role: Role) -> User:
        """Create a staff account with a local password."""
        if role not in STAFF_ROLES:
            raise ValueError(f"Not a staff role: {role!r}")
        if self.store.get_by_email(email) is not None:
            raise Conflict("User with this email already exists.")
        try:
            user_id = self.store.create_user(
                User(
                    email=email,
                    first_name=first_name,
                    last_name=last_name,
                    role=role,
                    hashed_password=hash_password(password),
                )
            )
        except IntegrityError as exc:
            raise Conflict("User with this email already exists.") from exc
        logger.info("Staff account created user_id=%s role=%s", user_id, role.value)
        return self.store.get_by_id(user_id)

    def get_settings(self, identity: StaffIdentity) -> User | None:
        return self.store.get_by_id(identity.id)

    def update_settings(self, identity: StaffIdentity, changes: dict) -> User | None:
        """Update the caller's own profile fields. Unknown keys are ignored."""
        updates = {k: v for k, v in changes.items() if k in SETTINGS_FIELDS and v is not None}
        # Blank optional fields are stored as NULL; agent_code is unique.
        for key in ("phone", "agent_code"):
            if updates.get(key) == "":
                updates[key] = None
        agent_code = updates.get("agent_code")
        if agent_code:
            holder = self.store.get_by_agent_code(agent_code)
            if holder is not None and holder.id != identity.id:
                raise Conflict("Agent code already exists.")
        if updates:
            try:
                self.store.update_user(identity.id, **updates)
            except IntegrityError as exc:
                raise Conflict("Agent code already exists.") from exc
        return self.store.get_by_id(identity.id)

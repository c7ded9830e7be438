"""
auth/external.py -- Customer identity via the hosted OIDC provider.

The customer path is delegated entirely to the hosted provider. This module is
a thin adapter exposing:

  - an authlib OAuth registry with one client, "identity", registered only
    when OIDC_CLIENT_ID / OIDC_CLIENT_SECRET / OIDC_DISCOVERY_URL are set;
  - ExternalIdentity: reads and writes the signed-in subject id in the
    Starlette session (SessionMiddleware cookie, signed with SECRET_KEY);
  - provision_customer(): first-sign-in user creation;
  - webhook verification and user.created / user.updated / user.deleted
    application, so the credential store follows the provider.

Security notes:
  The email claim is only accepted when email_verified is True. An unverified
  address could belong to someone else.

  Webhooks are signed Standard Webhooks style: base64 HMAC-SHA256 over
  "{id}.{timestamp}.{body}" with the secret from IDENTITY_WEBHOOK_SECRET
  (optionally "whsec_"-prefixed base64). Timestamps older or newer than
  five minutes are rejected to stop replays.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import time

from authlib.integrations.starlette_client import OAuth
from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.roles import Role
from auth.store import UserStore, normalize_email
from core.config import get_settings

logger = logging.getLogger("lalisure.auth.external")

SESSION_SUBJECT_KEY = "external_subject"
WEBHOOK_TOLERANCE_SECONDS = 5 * 60

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

if _cfg.oidc_enabled:
    oauth.register(
        name="identity",
        client_id=_cfg.oidc_client_id,
        client_secret=_cfg.oidc_client_secret,
        server_metadata_url=_cfg.oidc_discovery_url,
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Hosted identity provider registered")


# ---------------------------------------------------------------------------
# Current subject
# ---------------------------------------------------------------------------


class ExternalIdentity:
    """Capability object for "who is the signed-in customer".

    The subject lives in the SessionMiddleware-managed cookie. Requests that
    never passed through SessionMiddleware simply have no subject.
    """

    def current_subject(self, request) -> str | None:
        if "session" not in request.scope:
            return None
        subject = request.session.get(SESSION_SUBJECT_KEY)
        return subject if isinstance(subject, str) and subject else None

    def sign_in(self, request, subject: str) -> None:
        request.session[SESSION_SUBJECT_KEY] = subject

    def sign_out(self, request) -> None:
        request.session.pop(SESSION_SUBJECT_KEY, None)


def get_oidc_user_info(token: dict) -> tuple[str, str, str, str]:
    """Extract (email, subject, first_name, last_name) from an OIDC token response.

    Raises ValueError when userinfo is missing, the email is unverified, or the
    email/sub claims are absent. Callers treat that as a failed sign-in.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("identity provider: no userinfo in token response")
    if not userinfo.get("email_verified", False):
        raise ValueError("identity provider: email is not verified")
    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError("identity provider: missing email or sub claim")
    return email, subject, userinfo.get("given_name") or "", userinfo.get("family_name") or ""


def provision_customer(store: UserStore, subject: str, email: str, first_name: str = "", last_name: str = "") -> User:
    """Return the customer record for `subject`, creating or linking it if needed.

    An existing unlinked CUSTOMER record with the same email is linked to the
    subject. A staff record with that email is never linked: staff sign in
    through the staff path only.
    """
    existing = store.get_by_external_id(subject)
    if existing is not None:
        return existing

    by_email = store.get_by_email(email)
    if by_email is not None:
        if by_email.role != Role.CUSTOMER or by_email.external_id:
            raise ValueError("email is already registered to another identity")
        store.link_external_id(by_email.id, subject)
        logger.info("Linked external identity to user_id=%s", by_email.id)
        return store.get_by_id(by_email.id)

    user_id = store.create_user(
        User(
            email=normalize_email(email),
            first_name=first_name,
            last_name=last_name,
            external_id=subject,
            role=Role.CUSTOMER,
        )
    )
    logger.info("Provisioned customer user_id=%s", user_id)
    return store.get_by_id(user_id)


# ---------------------------------------------------------------------------
# Provisioning webhooks
# ---------------------------------------------------------------------------


class WebhookVerificationError(ValueError):
    pass


def _webhook_key(secret: str) -> bytes:
    if secret.startswith("whsec_"):
        return base64.b64decode(secret[len("whsec_") :])
    return secret.encode()


def sign_webhook(secret: str, msg_id: str, timestamp: int, body: bytes) -> str:
    """Return the "v1,<base64>" signature for a payload."""
    signed = f"{msg_id}.{timestamp}.".encode() + body
    digest = hmac.new(_webhook_key(secret), signed, hashlib.sha256).digest()
    return "v1," + base64.b64encode(digest).decode()


def verify_webhook(secret: str, headers, body: bytes, now: float | None = None) -> dict:
    """Verify a signed provider webhook and return the decoded event.

    headers must expose webhook-id / webhook-timestamp / webhook-signature
    (svix-* names are accepted too). The signature header may carry several
    space-separated signatures during secret rotation; any match is enough.
    """
    if not secret:
        raise WebhookVerificationError("webhook secret is not configured")

    def _header(name: str) -> str:
        return headers.get(f"webhook-{name}") or headers.get(f"svix-{name}") or ""

    msg_id, raw_ts, signatures = _header("id"), _header("timestamp"), _header("signature")
    if not msg_id or not raw_ts or not signatures:
        raise WebhookVerificationError("missing webhook signature headers")
    try:
        timestamp = int(raw_ts)
    except ValueError as exc:
        raise WebhookVerificationError("invalid webhook timestamp") from exc
    current = time.time() if now is None else now
    if abs(current - timestamp) > WEBHOOK_TOLERANCE_SECONDS:
        raise WebhookVerificationError("webhook timestamp outside tolerance")

    expected = sign_webhook(secret, msg_id, timestamp, body)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures.split()):
        raise WebhookVerificationError("webhook signature mismatch")

    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise WebhookVerificationError("webhook body is not JSON") from exc


def apply_identity_event(store: UserStore, event: dict) -> str:
    """Mirror one provider user event into the store. Returns what happened."""
    event_type = event.get("type", "")
    data = event.get("data") or {}
    subject = data.get("id")
    if not subject:
        return "ignored"

    emails = data.get("email_addresses") or []
    email = emails[0].get("email_address", "") if emails else ""

    if event_type == "user.created":
        if store.get_by_external_id(subject) is not None:
            return "exists"
        if not email:
            return "ignored"
        try:
            store.create_user(
                User(
                    email=email,
                    first_name=data.get("first_name") or "",
                    last_name=data.get("last_name") or "",
                    external_id=subject,
                    role=Role.CUSTOMER,
                )
            )
        except IntegrityError:
            logger.warning("user.created for an email that is already registered")
            return "conflict"
        return "created"

    if event_type == "user.updated":
        fields = {"first_name": data.get("first_name") or "", "last_name": data.get("last_name") or ""}
        if email:
            fields["email"] = email
        try:
            updated = store.update_by_external_id(subject, **fields)
        except IntegrityError:
            logger.warning("user.updated would duplicate an existing email")
            return "conflict"
        return "updated" if updated else "missing"

    if event_type == "user.deleted":
        return "deleted" if store.delete_by_external_id(subject) else "missing"

    return "ignored"

"""Unit tests for auth/tokens.py: password hashing, session tokens, reset tokens.

Covers:
- bcrypt hash/verify, including malformed stored hashes
- Session token claims and inclusive expiry (exp == now is expired)
- Tampered, foreign-key and non-staff tokens are rejected
- Cookie-first, Bearer-fallback token lookup
- Reset token entropy and HMAC storage form
"""

from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone

from jose import jwt
from starlette.requests import Request

from auth.models import StaffIdentity
from auth.roles import Role
from auth.tokens import (
    SESSION_COOKIE,
    _ALGORITHM,
    create_session_token,
    decode_session_token,
    generate_reset_token,
    hash_password,
    hash_reset_token,
    read_session_token,
    verify_password,
)
from core.config import get_settings

NOW = datetime(2025, 3, 1, 9, 30, 0, tzinfo=timezone.utc)

IDENTITY = StaffIdentity(id=7, email="agent@lalisure.test", first_name="Abe", last_name="Agent", role=Role.AGENT)


def _request(headers: dict[str, str]) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


class TestPasswordHasher:
    def test_roundtrip(self) -> None:
        hashed = hash_password("s3cret-pass")
        assert hashed != "s3cret-pass"
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("wrong-pass", hashed)

    def test_salted(self) -> None:
        assert hash_password("same") != hash_password("same")

    def test_malformed_hash_is_false_not_error(self) -> None:
        assert verify_password("anything", "not-a-bcrypt-hash") is False


# ---------------------------------------------------------------------------
# Session token codec
# ---------------------------------------------------------------------------


class TestSessionToken:
    def test_roundtrip_preserves_identity(self) -> None:
        token, expires_at = create_session_token(IDENTITY, now=NOW, expire_seconds=3600)
        session = decode_session_token(token, now=NOW)
        assert session is not None
        assert session.identity == IDENTITY
        assert session.expires_at == expires_at == NOW + timedelta(hours=1)

    def test_claims(self) -> None:
        token, _ = create_session_token(IDENTITY, now=NOW, expire_seconds=60)
        claims = jwt.get_unverified_claims(token)
        assert claims["sub"] == "7"
        assert claims["role"] == "AGENT"
        assert claims["exp"] - claims["iat"] == 60

    def test_default_lifetime_is_settings_value(self) -> None:
        _, expires_at = create_session_token(IDENTITY, now=NOW)
        assert expires_at - NOW == timedelta(seconds=get_settings().session_expire_seconds)

    def test_valid_one_second_before_expiry(self) -> None:
        token, expires_at = create_session_token(IDENTITY, now=NOW, expire_seconds=3600)
        assert decode_session_token(token, now=expires_at - timedelta(seconds=1)) is not None

    def test_expired_at_exact_exp_instant(self) -> None:
        """Expiry is inclusive: a token checked at exactly exp is rejected."""
        token, expires_at = create_session_token(IDENTITY, now=NOW, expire_seconds=3600)
        assert decode_session_token(token, now=expires_at) is None

    def test_expired_after_exp(self) -> None:
        token, expires_at = create_session_token(IDENTITY, now=NOW, expire_seconds=3600)
        assert decode_session_token(token, now=expires_at + timedelta(days=1)) is None

    def test_tampered_token_rejected(self) -> None:
        token, _ = create_session_token(IDENTITY, now=NOW, expire_seconds=3600)
        head, _body, sig = token.split(".")
        claims = jwt.get_unverified_claims(token)
        claims["role"] = "ADMIN"
        forged_body = base64.urlsafe_b64encode(json.dumps(claims).encode()).rstrip(b"=").decode()
        assert decode_session_token(f"{head}.{forged_body}.{sig}", now=NOW) is None

    def test_wrong_key_rejected(self) -> None:
        forged = jwt.encode(
            {"sub": "7", "email": "x@y.z", "role": "ADMIN", "exp": int((NOW + timedelta(hours=1)).timestamp())},
            "k" * 64,
            algorithm=_ALGORITHM,
        )
        assert decode_session_token(forged, now=NOW) is None

    def test_customer_role_token_rejected(self) -> None:
        customer = StaffIdentity(id=9, email="c@lalisure.test", first_name="", last_name="", role=Role.CUSTOMER)
        token, _ = create_session_token(customer, now=NOW, expire_seconds=3600)
        assert decode_session_token(token, now=NOW) is None

    def test_garbage_rejected(self) -> None:
        assert decode_session_token("not.a.jwt", now=NOW) is None
        assert decode_session_token("", now=NOW) is None


class TestReadSessionToken:
    def test_cookie_preferred(self) -> None:
        req = _request({"cookie": f"{SESSION_COOKIE}=from-cookie", "authorization": "Bearer from-header"})
        assert read_session_token(req) == "from-cookie"

    def test_bearer_fallback(self) -> None:
        assert read_session_token(_request({"authorization": "Bearer abc"})) == "abc"

    def test_none_when_absent(self) -> None:
        assert read_session_token(_request({})) is None
        assert read_session_token(_request({"authorization": "Basic abc"})) is None


# ---------------------------------------------------------------------------
# Reset tokens
# ---------------------------------------------------------------------------


class TestResetToken:
    def test_generate_is_256_bit_hex(self) -> None:
        raw = generate_reset_token()
        assert len(raw) == 64
        int(raw, 16)
        assert generate_reset_token() != raw

    def test_hash_is_deterministic_and_not_raw(self) -> None:
        raw = generate_reset_token()
        assert hash_reset_token(raw) == hash_reset_token(raw)
        assert hash_reset_token(raw) != raw
        assert hash_reset_token(raw) != hash_reset_token(raw + "0")

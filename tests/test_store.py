"""Unit tests for auth/store.py.

Covers:
- Case-insensitive email lookup and uniqueness
- Nullable-unique external_id (many staff rows without one)
- update_user field whitelist
- Reset token set / find / consume, including the expiry boundary and
  single-use consumption
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.roles import Role
from auth.store import UserStore, normalize_email

NOW = datetime(2025, 6, 1, 8, 0, 0, tzinfo=timezone.utc)


def _staff(email: str, role: Role = Role.AGENT, **kw) -> User:
    return User(email=email, role=role, hashed_password="x", **kw)


class TestLookup:
    def test_email_is_normalized(self, store: UserStore) -> None:
        uid = store.create_user(_staff("  Mixed.Case@Lalisure.TEST "))
        user = store.get_by_email("mixed.case@lalisure.test")
        assert user is not None and user.id == uid
        assert user.email == "mixed.case@lalisure.test"
        assert store.get_by_email("MIXED.CASE@lalisure.test").id == uid

    def test_duplicate_email_rejected(self, store: UserStore) -> None:
        store.create_user(_staff("dup@lalisure.test"))
        with pytest.raises(IntegrityError):
            store.create_user(_staff("DUP@lalisure.test"))

    def test_many_rows_without_external_id(self, store: UserStore) -> None:
        store.create_user(_staff("a@lalisure.test"))
        store.create_user(_staff("b@lalisure.test"))
        assert all(u.external_id is None for u in store.list_users())

    def test_duplicate_external_id_rejected(self, store: UserStore) -> None:
        store.create_user(User(email="c1@lalisure.test", external_id="idp_1"))
        with pytest.raises(IntegrityError):
            store.create_user(User(email="c2@lalisure.test", external_id="idp_1"))

    def test_list_users_by_role(self, store: UserStore) -> None:
        store.create_user(_staff("admin@lalisure.test", Role.ADMIN))
        store.create_user(_staff("agent@lalisure.test", Role.AGENT))
        admins = store.list_users(Role.ADMIN)
        assert [u.email for u in admins] == ["admin@lalisure.test"]
        assert store.count_active_admins() == 1

    def test_normalize_email(self) -> None:
        assert normalize_email(" X@Y.Z ") == "x@y.z"


class TestUpdate:
    def test_update_profile_fields(self, store: UserStore) -> None:
        uid = store.create_user(_staff("p@lalisure.test"))
        assert store.update_user(uid, first_name="Pat", phone="+27 11 555 0100", role=Role.UNDERWRITER)
        user = store.get_by_id(uid)
        assert user.first_name == "Pat"
        assert user.phone == "+27 11 555 0100"
        assert user.role is Role.UNDERWRITER

    def test_unknown_field_rejected(self, store: UserStore) -> None:
        uid = store.create_user(_staff("q@lalisure.test"))
        with pytest.raises(ValueError):
            store.update_user(uid, password_reset_token_hash="nope")

    def test_deactivate(self, store: UserStore) -> None:
        uid = store.create_user(_staff("r@lalisure.test"))
        store.update_user(uid, is_active=False)
        assert store.get_by_id(uid).is_active is False


class TestResetTokens:
    def test_find_before_expiry(self, store: UserStore) -> None:
        uid = store.create_user(_staff("t@lalisure.test"))
        store.set_reset_token(uid, "hash-1", NOW + timedelta(hours=1))
        user = store.find_by_reset_token("hash-1", NOW)
        assert user is not None and user.id == uid
        assert user.password_reset_token_expires_at == NOW + timedelta(hours=1)

    def test_not_found_at_exact_expiry(self, store: UserStore) -> None:
        uid = store.create_user(_staff("u@lalisure.test"))
        store.set_reset_token(uid, "hash-2", NOW)
        assert store.find_by_reset_token("hash-2", NOW) is None
        assert store.find_by_reset_token("hash-2", NOW - timedelta(microseconds=1)) is not None

    def test_new_token_supersedes_old(self, store: UserStore) -> None:
        uid = store.create_user(_staff("v@lalisure.test"))
        store.set_reset_token(uid, "old", NOW + timedelta(hours=1))
        store.set_reset_token(uid, "new", NOW + timedelta(hours=1))
        assert store.find_by_reset_token("old", NOW) is None
        assert store.find_by_reset_token("new", NOW) is not None

    def test_consume_swaps_password_and_clears_token(self, store: UserStore) -> None:
        uid = store.create_user(_staff("w@lalisure.test"))
        store.set_reset_token(uid, "h", NOW + timedelta(hours=1))
        assert store.consume_reset_token("h", "new-hash", NOW) == uid
        user = store.get_by_id(uid)
        assert user.hashed_password == "new-hash"
        assert user.password_reset_token_hash is None
        assert user.password_reset_token_expires_at is None
        assert user.password_reset_at == NOW

    def test_consume_is_single_use(self, store: UserStore) -> None:
        uid = store.create_user(_staff("x@lalisure.test"))
        store.set_reset_token(uid, "h2", NOW + timedelta(hours=1))
        assert store.consume_reset_token("h2", "first", NOW) == uid
        assert store.consume_reset_token("h2", "second", NOW) is None
        assert store.get_by_id(uid).hashed_password == "first"

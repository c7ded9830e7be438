"""
auth/store.py -- SQLAlchemy Core persistence layer for user identity records.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and manager code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Emails are lower-cased and stripped before every lookup and write, so the
  UNIQUE index on email is effectively case-insensitive.

  external_id is nullable and UNIQUE. SQLite and PostgreSQL both allow any
  number of NULLs under a UNIQUE constraint, so staff records leave it NULL
  instead of carrying a synthetic placeholder.

Timestamps are stored as fixed-width UTC strings (see _ts) so SQL string
comparison orders them correctly. The reset-token expiry check relies on it.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import User
from auth.roles import Role

_DEFAULT_DB_URL = "sqlite:///lalisure_auth.db"

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("external_id", String(255), unique=True),  # NULL for staff-path users
    Column("hashed_password", Text),  # NULL for customer-path users
    Column("role", String(20), nullable=False, server_default=Role.CUSTOMER.value),
    Column("password_reset_token_hash", String(64), index=True),
    Column("password_reset_token_expires_at", String(32)),
    Column("password_reset_at", String(32)),
    Column("phone", String(32)),
    Column("agent_code", String(32), unique=True),
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        store.create_user(User(email="ops@lalisure.com", role=Role.ADMIN, hashed_password=...))
        user = store.get_by_email("OPS@lalisure.com")
        store.close()
    """

    _MUTABLE_FIELDS: frozenset = frozenset(
        {"first_name", "last_name", "email", "role", "is_active", "phone", "agent_code", "hashed_password"}
    )

    def __init__(self, db_url: str = "") -> None:
        db_url = db_url or _DEFAULT_DB_URL
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_external_id(self, external_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.external_id == external_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_agent_code(self, agent_code: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.agent_code == agent_code)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, role: Role | None = None) -> list[User]:
        """Return users ordered by email, optionally filtered by role."""
        query = _users.select().order_by(_users.c.email)
        if role is not None:
            query = query.where(_users.c.role == role.value)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_active_admins(self) -> int:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where((_users.c.role == Role.ADMIN.value) & (_users.c.is_active == 1))
            ).fetchall()
        return len(rows)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned id.

        Raises sqlalchemy.exc.IntegrityError on a duplicate email,
        external_id or agent_code.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=normalize_email(user.email),
                    first_name=user.first_name,
                    last_name=user.last_name,
                    external_id=user.external_id,
                    hashed_password=user.hashed_password,
                    role=user.role.value,
                    phone=user.phone,
                    agent_code=user.agent_code,
                    created_at=_ts(_now()),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable profile fields. Returns True if a row was updated.

        Unknown field names raise ValueError. The reset-token columns are not
        writable here; use set_reset_token / consume_reset_token.
        """
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return False
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_by_external_id(self, external_id: str, **fields) -> bool:
        user = self.get_by_external_id(external_id)
        if user is None:
            return False
        return self.update_user(user.id, **fields)

    def delete_by_external_id(self, external_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.external_id == external_id))
            conn.commit()
        return result.rowcount > 0

    def link_external_id(self, user_id: int, external_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(external_id=external_id))
            conn.commit()

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def set_reset_token(self, user_id: int, token_hash: str, expires_at: datetime) -> None:
        """Store a reset-token hash and its expiry in one statement.

        Overwrites any earlier pending token, so only the latest link works.
        """
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_reset_token_hash=token_hash, password_reset_token_expires_at=_ts(expires_at))
            )
            conn.commit()

    def find_by_reset_token(self, token_hash: str, now: datetime) -> User | None:
        """Return the user holding this token hash if it expires strictly after `now`."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.password_reset_token_hash == token_hash)
                    & (_users.c.password_reset_token_expires_at > _ts(now))
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def consume_reset_token(self, token_hash: str, new_password_hash: str, now: datetime) -> int | None:
        """Atomically swap the password and clear the reset token.

        A single conditional UPDATE: it only matches a live token, and it
        stores the new hash, clears both token columns and stamps
        password_reset_at together. Two concurrent consumptions of the same
        token cannot both match. Returns the user id, or None if nothing matched.
        """
        user = self.find_by_reset_token(token_hash, now)
        if user is None:
            return None
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user.id)
                    & (_users.c.password_reset_token_hash == token_hash)
                    & (_users.c.password_reset_token_expires_at > _ts(now))
                )
                .values(
                    hashed_password=new_password_hash,
                    password_reset_token_hash=None,
                    password_reset_token_expires_at=None,
                    password_reset_at=_ts(now),
                )
            )
            conn.commit()
        return user.id if result.rowcount == 1 else None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        external_id=row.external_id,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        password_reset_token_hash=row.password_reset_token_hash,
        password_reset_token_expires_at=_parse_ts(row.password_reset_token_expires_at),
        password_reset_at=_parse_ts(row.password_reset_at),
        phone=row.phone,
        agent_code=row.agent_code,
        created_at=row.created_at,
        is_active=bool(row.is_active),
    )

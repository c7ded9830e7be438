"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work.

Layer rule: no imports from api/, web/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from auth.roles import Role


@dataclass
class User:
    """A row of the credential store.

    Staff records carry hashed_password and leave external_id as None.
    Customer records carry external_id (the hosted provider's subject id) and
    have no local password. The reset-token hash and its expiry are always
    set and cleared together.
    """

    email: str
    role: Role = Role.CUSTOMER
    id: int | None = None
    first_name: str = ""
    last_name: str = ""
    external_id: str | None = None
    hashed_password: str | None = None
    password_reset_token_hash: str | None = None
    password_reset_token_expires_at: datetime | None = None
    password_reset_at: datetime | None = None
    phone: str | None = None
    agent_code: str | None = None
    created_at: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class StaffIdentity:
    """The identity claims embedded in a staff session token."""

    id: int
    email: str
    first_name: str
    last_name: str
    role: Role

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role.value,
        }

    @classmethod
    def from_user(cls, user: User) -> StaffIdentity:
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
        )


@dataclass(frozen=True)
class StaffSession:
    """A verified staff session: who, and until when."""

    identity: StaffIdentity
    expires_at: datetime


@dataclass(frozen=True)
class Principal:
    """Whoever is calling a procedure, resolved from either identity source.

    source is "staff" for a staff session token and "external" for a customer
    signed in through the hosted identity provider.
    """

    user_id: int
    email: str
    role: Role
    source: str

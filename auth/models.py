"""
auth/models.py -- Domain types for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work. Role and Status are closed enums: raw strings from the database or
from a decoded token are converted exactly once, at that boundary.

Layer rule: no imports from api/, web/ or content/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    USER = "USER"
    EDITOR = "EDITOR"
    ADMIN = "ADMIN"


class Status(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    BANNED = "BANNED"


@dataclass
class Identity:
    """A registered account.

    hashed_password is None for federated-only identities (they have no
    local password). It must never be copied into a response model.

    reset_token_hash holds the SHA-256 digest of the outstanding reset token;
    the raw token only ever exists in the emailed link.

    credentials_changed_at counts microseconds since the unix epoch. Session
    tokens issued at or before it are rejected, so a password change ends
    every other session.
    """

    email: str
    username: str
    role: Role = Role.USER
    status: Status = Status.ACTIVE
    id: str | None = None
    name: str | None = None
    image: str | None = None
    hashed_password: str | None = None
    oauth_provider: str | None = None  # "github", "google"
    oauth_subject: str | None = None  # provider's stable user ID
    reset_token_hash: str | None = None
    reset_token_expiry: str | None = None  # ISO 8601
    credentials_changed_at: int | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status is Status.ACTIVE


@dataclass(frozen=True)
class SessionClaims:
    """Decoded, business-validated contents of a session token.

    role is denormalized at issuance and never refreshed from the store:
    a role change takes effect at the next sign-in.
    """

    subject_id: str
    role: Role
    issued_at: datetime
    username: str | None = None
    name: str | None = None
    image: str | None = None


@dataclass(frozen=True)
class SessionContext:
    """Request-scoped view of the caller, passed explicitly into handlers."""

    claims: SessionClaims
    identity: Identity

    @property
    def actor_id(self) -> str:
        return self.claims.subject_id

    @property
    def role(self) -> Role:
        return self.claims.role

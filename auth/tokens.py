"""
auth/tokens.py -- Session tokens, password hashing and reset-token primitives.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       the subject id, role, issuance time and display fields. iat is the
       standard whole-second claim; iat_us repeats it in microseconds so a
       password change in the same second still ends older sessions.
       decode_session_token() returns None on any failure (bad signature,
       past exp, unknown role) -- the caller treats None as "no session".
       This module is the token-verification collaborator; business rules
       such as the elevated-session ceiling live in auth/guard.py.

  Passwords: bcrypt, used directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_identity() so response time does not
       reveal whether an email exists [C1].

  Reset tokens: secrets.token_hex(32) gives 256 bits of entropy. Only the
       SHA-256 digest is stored, so a database leak does not hand out live
       reset links.

Layer rule: no imports from api/, web/ or content/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import Identity, Role, SessionClaims, Status
from core.config import get_settings
from core.errors import AccountDisabled

if TYPE_CHECKING:
    from auth.store import IdentityStore

logger = logging.getLogger("inkpost.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

SESSION_COOKIE = "session_token"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def timestamp_us(moment: datetime) -> int:
    """Whole microseconds since the unix epoch for an aware datetime."""
    return (moment - _EPOCH) // timedelta(microseconds=1)


def from_timestamp_us(value: int) -> datetime:
    return _EPOCH + timedelta(microseconds=value)


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------

_BCRYPT_ROUNDS = 12


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes. The API layer caps passwords at
    128 characters, and the input is truncated here so bcrypt 4.x does not
    raise on long multi-byte input.
    """
    return bcrypt.hashpw(plain.encode("utf-8")[:72], bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128


def password_policy_error(plain: str) -> str | None:
    """Return a message describing why plain is too weak, or None if it is acceptable."""
    if len(plain) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters."
    if len(plain) > PASSWORD_MAX_LENGTH:
        return f"Password must be at most {PASSWORD_MAX_LENGTH} characters."
    if not (any(c.islower() for c in plain) and any(c.isupper() for c in plain) and any(c.isdigit() for c in plain)):
        return "Password must contain at least one uppercase letter, one lowercase letter, and one number."
    return None


# Timing equalization dummy hash [C1]. Computed once at module load.
_DUMMY_HASH: str = hash_password("inkpost_timing_dummy")


# ---------------------------------------------------------------------------
# Credential verification (constant-time) [C1]
# ---------------------------------------------------------------------------


def authenticate_identity(store: IdentityStore, email: str, password: str) -> Identity | None:
    """Verify an email/password pair. Returns the Identity or None.

    Unknown email, federated-only account (no hash) and wrong password all
    return None after the same bcrypt work. Read-only: status is not checked
    here, issue_session_token() refuses disabled accounts.
    """
    identity = store.get_by_email(email)
    if identity is None or identity.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, identity.hashed_password):
        return None
    return identity


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def _encode(
    subject_id: str,
    role: Role,
    issued_at: datetime,
    username: str | None,
    name: str | None,
    image: str | None,
) -> str:
    iat = int(issued_at.timestamp())
    payload = {
        "sub": subject_id,
        "role": Role(role).value,
        "iat": iat,
        "iat_us": timestamp_us(issued_at),
        "exp": iat + _settings.token_expire_seconds,
        "username": username,
        "name": name,
        "image": image,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def issue_session_token(identity: Identity, issued_at: datetime | None = None) -> str:
    """Sign a session token for a verified identity.

    Raises AccountDisabled if the identity is suspended or banned. issued_at
    defaults to now; tests pass an explicit value to exercise expiry.
    """
    if identity.status is not Status.ACTIVE:
        logger.info("Session refused for disabled identity %s (%s)", identity.id, identity.status.value)
        raise AccountDisabled()
    return _encode(
        identity.id,
        identity.role,
        issued_at or datetime.now(timezone.utc),
        identity.username,
        identity.name,
        identity.image,
    )


def refresh_session_token(
    claims: SessionClaims,
    *,
    username: str | None = None,
    name: str | None = None,
    image: str | None = None,
) -> str:
    """Re-sign a live session with updated display fields.

    Role and issuance time are carried over unchanged, so a refresh never
    extends an elevated session or changes its privileges.
    """
    return _encode(
        claims.subject_id,
        claims.role,
        claims.issued_at,
        username if username is not None else claims.username,
        name if name is not None else claims.name,
        image if image is not None else claims.image,
    )


def decode_session_token(token: str) -> SessionClaims | None:
    """Verify a session token and convert it into SessionClaims.

    Returns None for a bad signature, a past exp, missing claims or a role
    outside the Role enum. This is the only place a raw role string from a
    token becomes a Role.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    try:
        return SessionClaims(
            subject_id=str(payload["sub"]),
            role=Role(payload["role"]),
            issued_at=from_timestamp_us(int(payload["iat_us"])),
            username=payload.get("username"),
            name=payload.get("name"),
            image=payload.get("image"),
        )
    except (KeyError, ValueError, TypeError):
        return None


# ---------------------------------------------------------------------------
# Reset tokens
# ---------------------------------------------------------------------------


def generate_reset_token() -> str:
    """Return a new opaque reset token (64 hex chars)."""
    return secrets.token_hex(32)


def hash_reset_token(raw_token: str) -> str:
    """Return the SHA-256 hex digest stored in place of the raw token."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def reset_token_expiry(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return (now + timedelta(seconds=_settings.reset_token_ttl_seconds)).isoformat()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the JWT exp so both expire together.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.token_expire_seconds,
    )


def clear_auth_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE)

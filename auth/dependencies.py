"""
auth/dependencies.py -- Request-scoped session resolution and FastAPI Depends() helpers.

Two credential carriers are checked in priority order:
  1. "session_token" cookie -- set by the login flows.
  2. Authorization: Bearer <token> header -- API clients.

A decoded token is only half the answer. read_session_claims() also loads
the identity and drops the session when:
  - the identity no longer exists (deleted),
  - its status is not ACTIVE (suspended / banned),
  - its credentials changed after the token was issued (password change).

The role used for authorization is the one in the token, not the stored one.

try_get_session() is the soft variant (returns None on failure).
get_session() raises AuthenticationMissing / AuthenticationExpired.
require_role(role) adds the rank check and raises AuthorizationInsufficient.

The resolved context is cached on request.state so the guard middleware and
the route dependencies share a single store lookup per request.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request

from auth.guard import session_expired
from auth.models import Identity, Role, SessionClaims, SessionContext
from auth.roles import satisfies
from auth.tokens import SESSION_COOKIE, decode_session_token, timestamp_us
from core.config import get_settings
from core.errors import AuthenticationExpired, AuthenticationMissing, AuthorizationInsufficient

_UNRESOLVED = object()


def _read_token(request: Request) -> Optional[str]:
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def _session_still_valid(claims: SessionClaims, identity: Optional[Identity]) -> bool:
    if identity is None or not identity.is_active:
        return False
    changed_at = identity.credentials_changed_at
    if changed_at is not None and timestamp_us(claims.issued_at) <= changed_at:
        return False
    return True


def resolve_session(request: Request) -> Optional[SessionContext]:
    """Resolve the caller's session once per request. Returns None if there is none.

    Expiry is not decided here; callers apply session_expired() for their
    own outcome (redirect for pages, 401 for the API).
    """
    cached = getattr(request.state, "session_context", _UNRESOLVED)
    if cached is not _UNRESOLVED:
        return cached

    context: Optional[SessionContext] = None
    token = _read_token(request)
    if token:
        claims = decode_session_token(token)
        if claims is not None:
            identity = request.app.state.identity_store.get_by_id(claims.subject_id)
            if _session_still_valid(claims, identity):
                context = SessionContext(claims=claims, identity=identity)

    request.state.session_context = context
    return context


def read_session_claims(request: Request) -> Optional[SessionClaims]:
    context = resolve_session(request)
    return context.claims if context is not None else None


def try_get_session(request: Request) -> Optional[SessionContext]:
    """Return the live, unexpired session or None. Never raises."""
    context = resolve_session(request)
    if context is None:
        return None
    if session_expired(context.claims, datetime.now(timezone.utc), get_settings()):
        return None
    return context


def get_session(request: Request) -> SessionContext:
    """Require a session. Raises AuthenticationMissing or AuthenticationExpired.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(session: SessionContext = Depends(get_session)): ...
    """
    context = resolve_session(request)
    if context is None:
        raise AuthenticationMissing()
    if session_expired(context.claims, datetime.now(timezone.utc), get_settings()):
        raise AuthenticationExpired()
    return context


def require_role(required: Role) -> Callable[[Request], SessionContext]:
    """Build a dependency that requires a session ranked at least `required`."""

    def dependency(request: Request) -> SessionContext:
        context = get_session(request)
        if not satisfies(context.role, required):
            raise AuthorizationInsufficient(f"{required.value.title()} access required.")
        return context

    dependency.__name__ = f"require_{required.value.lower()}"
    return dependency


require_editor = require_role(Role.EDITOR)
require_admin = require_role(Role.ADMIN)

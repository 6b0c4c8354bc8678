"""
auth/guard.py -- Route guard for server-rendered pages.

Every request passes through guard_request() (mounted as HTTP middleware in
api/main.py). The path is classified from the prefix lists in Settings:

  ADMIN      -- requires a valid session holding the ADMIN role
  PROTECTED  -- requires any valid session
  DEMO       -- requires the demo cookie flag (authenticated=true)
  PUBLIC     -- passes through

Session outcomes form a small state machine evaluated once per request:

  no / invalid token          -> UNAUTHENTICATED   -> login?callbackUrl=&message=
  role rank too low           -> INSUFFICIENT_ROLE -> login?message=
  elevated session too old    -> EXPIRED           -> login?callbackUrl=&message=, cookie cleared
  otherwise                   -> VALID             -> request proceeds

UI routes never get a bare 403: a rejected visitor always lands on the login
page with a reason it can act on. The JSON API applies the same rules via
auth/dependencies.py and answers with structured errors instead.

Signature checks belong to auth/tokens.py. Nothing here verifies crypto; the
functions below only apply business rules to decoded claims, which keeps
evaluate_session() pure and testable with a fixed clock.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import RedirectResponse

from auth.models import Role, SessionClaims
from auth.roles import satisfies
from auth.tokens import clear_auth_cookie
from core.config import Settings, get_settings

logger = logging.getLogger("inkpost.auth")


class RouteClass(str, Enum):
    ADMIN = "admin"
    PROTECTED = "protected"
    DEMO = "demo"
    PUBLIC = "public"


class GuardState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    INSUFFICIENT_ROLE = "insufficient_role"
    EXPIRED = "expired"
    VALID = "valid"


ADMIN_LOGIN_MESSAGE = "Please login to access admin area"
LOGIN_MESSAGE = "Please login to continue"
INSUFFICIENT_ROLE_MESSAGE = "Admin access required"
SESSION_EXPIRED_MESSAGE = "Admin session expired. Please login again."

# The login page only renders messages from this set [M3].
GUARD_MESSAGES = frozenset({ADMIN_LOGIN_MESSAGE, LOGIN_MESSAGE, INSUFFICIENT_ROLE_MESSAGE, SESSION_EXPIRED_MESSAGE})

# Sessions holding this role are subject to the elevated-session ceiling.
ELEVATED_ROLE = Role.ADMIN

_REQUIRED_ROLE: dict[RouteClass, Role] = {
    RouteClass.ADMIN: Role.ADMIN,
    RouteClass.PROTECTED: Role.USER,
}


@dataclass(frozen=True)
class GuardDecision:
    state: GuardState
    redirect_to: Optional[str] = None
    clear_session: bool = False

    @property
    def allowed(self) -> bool:
        return self.redirect_to is None


_ALLOW = GuardDecision(GuardState.VALID)


# ---------------------------------------------------------------------------
# Pure decision functions
# ---------------------------------------------------------------------------


def _matches(path: str, prefix: str) -> bool:
    if prefix == "/":
        return True
    return path == prefix or path.startswith(prefix + "/")


def classify_path(path: str, settings: Settings) -> RouteClass:
    """Map a request path onto a RouteClass using the configured prefixes."""
    if any(_matches(path, p) for p in settings.admin_path_prefixes):
        return RouteClass.ADMIN
    if any(_matches(path, p) for p in settings.protected_path_prefixes):
        return RouteClass.PROTECTED
    if any(_matches(path, p) for p in settings.demo_path_prefixes):
        return RouteClass.DEMO
    return RouteClass.PUBLIC


def session_expired(claims: SessionClaims, now: datetime, settings: Settings) -> bool:
    """Return True if an elevated session has outlived its ceiling.

    The ceiling is measured from issuance, not from last activity, and is
    strict: exactly at the ceiling the session is still valid.
    """
    if claims.role is not ELEVATED_ROLE:
        return False
    elapsed = (now - claims.issued_at).total_seconds()
    return elapsed > settings.elevated_session_max_age_seconds


def login_redirect(settings: Settings, message: str, callback_url: Optional[str] = None) -> str:
    """Build the login URL carrying callbackUrl (original path) and message."""
    params: dict[str, str] = {}
    if callback_url:
        params["callbackUrl"] = callback_url
    params["message"] = message
    return f"{settings.login_path}?{urlencode(params, safe='/')}"


def evaluate_session(
    route_class: RouteClass,
    path: str,
    claims: Optional[SessionClaims],
    now: datetime,
    settings: Settings,
) -> GuardDecision:
    """Decide the outcome for a session-guarded path.

    claims is None when no token was presented or the token was rejected by
    the token collaborator or the store check.
    """
    required = _REQUIRED_ROLE.get(route_class)
    if required is None:
        return _ALLOW

    if claims is None:
        message = ADMIN_LOGIN_MESSAGE if route_class is RouteClass.ADMIN else LOGIN_MESSAGE
        return GuardDecision(GuardState.UNAUTHENTICATED, login_redirect(settings, message, path))

    if not satisfies(claims.role, required):
        return GuardDecision(GuardState.INSUFFICIENT_ROLE, login_redirect(settings, INSUFFICIENT_ROLE_MESSAGE))

    if session_expired(claims, now, settings):
        return GuardDecision(
            GuardState.EXPIRED,
            login_redirect(settings, SESSION_EXPIRED_MESSAGE, path),
            clear_session=True,
        )

    return _ALLOW


def demo_cookie_valid(cookie_value: Optional[str], settings: Settings) -> bool:
    return cookie_value is not None and cookie_value == settings.demo_cookie_value


def demo_credentials_match(email: str, password: str, settings: Settings) -> bool:
    """Check the demo gate credentials. False when they are not configured."""
    if not settings.demo_login_email or not settings.demo_login_password:
        return False
    email_ok = secrets.compare_digest(email.strip().lower().encode(), settings.demo_login_email.lower().encode())
    password_ok = secrets.compare_digest(password.encode(), settings.demo_login_password.encode())
    return email_ok and password_ok


def set_demo_cookie(response, settings: Settings) -> None:
    response.set_cookie(
        settings.demo_cookie_name,
        value=settings.demo_cookie_value,
        max_age=settings.demo_cookie_max_age,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )


def clear_demo_cookie(response, settings: Settings) -> None:
    response.delete_cookie(settings.demo_cookie_name)


def evaluate_demo(path: str, cookie_value: Optional[str], settings: Settings) -> GuardDecision:
    """Binary cookie-flag rule for the demo surface.

    Also bounces a visitor who already holds the flag away from the demo
    login page.
    """
    valid = demo_cookie_valid(cookie_value, settings)
    if path == settings.demo_login_path:
        if valid:
            return GuardDecision(GuardState.VALID, settings.demo_home_path)
        return _ALLOW
    if classify_path(path, settings) is not RouteClass.DEMO:
        return _ALLOW
    if valid:
        return _ALLOW
    return GuardDecision(GuardState.UNAUTHENTICATED, settings.demo_login_path)


# ---------------------------------------------------------------------------
# Request adapter
# ---------------------------------------------------------------------------


def guard_request(request: Request) -> Optional[RedirectResponse]:
    """Apply the guard to an incoming request.

    Returns a RedirectResponse when the request must not proceed, None
    otherwise. Expired sessions get their cookie deleted in the same
    response, so the stale token is not presented again.
    """
    from auth.dependencies import read_session_claims

    settings = get_settings()
    path = request.url.path

    demo = evaluate_demo(path, request.cookies.get(settings.demo_cookie_name), settings)
    if not demo.allowed:
        return RedirectResponse(demo.redirect_to, status_code=302)

    route_class = classify_path(path, settings)
    if route_class not in _REQUIRED_ROLE:
        return None

    claims = read_session_claims(request)
    decision = evaluate_session(route_class, path, claims, datetime.now(timezone.utc), settings)
    if decision.allowed:
        return None

    logger.info("Guard rejected %s: %s", path, decision.state.value)
    resp = RedirectResponse(decision.redirect_to, status_code=302)
    if decision.clear_session:
        clear_auth_cookie(resp)
    return resp

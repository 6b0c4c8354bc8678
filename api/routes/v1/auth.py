"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register         -- create a USER account (when enabled)
  POST /api/v1/auth/login            -- password login; sets JWT cookie
  POST /api/v1/auth/logout           -- clears cookie; 200
  GET  /api/v1/auth/me               -- current identity (requires session)
  GET  /api/v1/auth/providers        -- list enabled OAuth providers (public)
  POST /api/v1/auth/forgot-password  -- request a reset link (always the same answer)
  POST /api/v1/auth/reset-password   -- redeem a reset token

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  [C1] authenticate_identity() provides timing equalization -- use it, never inline.
       Unknown email, federated-only account and wrong password all answer
       bad_credentials. account_disabled is only reported after a correct
       password, so it reveals nothing to a caller without the secret.
  [M5] Cache-Control: no-store on login responses.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ForgotPasswordRequest,
    IdentityResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OAuthProviderInfo,
    RegisterRequest,
    ResetPasswordRequest,
)
from auth.dependencies import get_session
from auth.models import Identity, Role, SessionContext, Status
from auth.oauth import get_enabled_providers
from auth.reset import redeem_password_reset, request_password_reset
from auth.store import IdentityStore
from auth.tokens import authenticate_identity, clear_auth_cookie, hash_password, issue_session_token, set_auth_cookie
from core.config import get_settings
from core.errors import AuthorizationInsufficient, BadCredentials, Conflict

logger = logging.getLogger("inkpost.api.auth")

# Auth policy:
# - POST /api/v1/auth/register:         public (unless SELF_REGISTRATION_ENABLED=false)
# - POST /api/v1/auth/login:            public, rate-limited
# - POST /api/v1/auth/logout:           public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/providers:        public -- login page renders OAuth buttons from it
# - GET  /api/v1/auth/me:               requires session (get_session)
# - POST /api/v1/auth/forgot-password:  public
# - POST /api/v1/auth/reset-password:   public -- the token is the credential
router = APIRouter()


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=IdentityResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> IdentityResponse:
    """Create a USER account.

    The availability pre-checks only produce a friendlier message; the
    store's UNIQUE constraints settle concurrent registrations.
    """
    if not get_settings().self_registration_enabled:
        raise AuthorizationInsufficient("Registration is disabled.")

    store: IdentityStore = request.app.state.identity_store
    if store.get_by_email(body.email) is not None:
        raise Conflict("A user with this email already exists.", field="email")
    if store.get_by_username(body.username) is not None:
        raise Conflict("This username is already taken.", field="username")

    identity_id = store.create_identity(
        Identity(
            email=body.email,
            username=body.username,
            name=body.name or body.username,
            hashed_password=hash_password(body.password),
            role=Role.USER,
            status=Status.ACTIVE,
        )
    )
    logger.info("Registered identity %s", identity_id)
    return IdentityResponse.from_identity(store.get_by_id(identity_id))


@limiter.limit(get_settings().login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Uses authenticate_identity() which includes timing equalization [C1].
    issue_session_token() refuses suspended and banned identities.
    """
    store: IdentityStore = request.app.state.identity_store
    identity = authenticate_identity(store, body.email, body.password)
    if identity is None:
        logger.info("Failed password login")
        raise BadCredentials()

    token = issue_session_token(identity)
    store.update_last_login(identity.id)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=get_settings().token_expire_seconds,
            user=IdentityResponse.from_identity(identity),
        ).model_dump(mode="json"),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> JSONResponse:
    """Clear the session cookie."""
    resp = JSONResponse(content={"message": "Logged out."})
    clear_auth_cookie(resp)
    return resp


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty when none are set."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


@router.get("/auth/me", response_model=IdentityResponse)
def me(session: SessionContext = Depends(get_session)) -> IdentityResponse:
    """Return the identity behind the current session."""
    return IdentityResponse.from_identity(session.identity)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Request a reset link. The answer is identical whether or not the email exists."""
    message = request_password_reset(request.app.state.identity_store, body.email, request.app.state.reset_sender)
    return MessageResponse(message=message)


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Redeem a reset token.

    The new password has already passed the strength policy in
    ResetPasswordRequest, so a weak password answers validation_failed while
    a bad token answers invalid_reset_token.
    """
    redeem_password_reset(request.app.state.identity_store, body.token, body.password)
    return MessageResponse(message="Password has been reset successfully.")

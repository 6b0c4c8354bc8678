"""
web/routes.py -- Jinja2 template routes for the Inkpost web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same identity and article stores) but return HTML instead of JSON.

Access control for /admin*, /profile and /studio is applied before routing
by the guard middleware (auth/guard.py). Handlers here can rely on a valid
session for those paths and only read it for display.

Route registration order: /auth/oauth/{provider} and /auth/callback/{provider}
are registered before the plain /auth/* pages, and /articles/{slug} is the
only parameterized article page.

Routes:
  GET  /                                -- published articles
  GET  /articles/{slug}                 -- article page
  GET  /auth/oauth/{provider}           -- OAuth redirect to provider
  GET  /auth/callback/{provider}        -- OAuth callback handler
  GET  /auth/login                      -- login form (guard messages whitelisted)
  POST /auth/login                      -- handle password login
  POST /auth/logout                     -- clear cookie, redirect to login
  GET  /auth/forgot-password            -- reset request form
  POST /auth/forgot-password            -- always the same acknowledgment
  GET  /auth/reset-password             -- new-password form for ?token=
  POST /auth/reset-password             -- redeem token
  GET  /profile                         -- own account (session required)
  GET  /admin                           -- admin dashboard (ADMIN)
  GET  /admin/users                     -- user administration (ADMIN)
  GET  /admin/articles                  -- article administration (ADMIN)
  GET  /login                           -- demo gate form
  POST /login                           -- demo gate credentials check
  GET  /studio                          -- demo surface (demo cookie required)
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.dependencies import try_get_session
from auth.guard import GUARD_MESSAGES, demo_credentials_match, set_demo_cookie
from auth.models import Role, SessionContext, Status
from auth.oauth import get_enabled_providers, get_oauth_user_info, resolve_federated_identity
from auth.reset import redeem_password_reset, request_password_reset
from auth.roles import satisfies
from auth.store import IdentityStore
from auth.tokens import (
    authenticate_identity,
    clear_auth_cookie,
    issue_session_token,
    password_policy_error,
    set_auth_cookie,
)
from content.models import ArticleStatus
from content.store import ArticleStore
from core.config import get_settings
from core.errors import AccountDisabled, ResetTokenRejected

logger = logging.getLogger("inkpost.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# layout.html calls try_get_session(request) for the navigation bar, so every
# handler does not have to pass the session explicitly.
templates.env.globals["try_get_session"] = try_get_session
router = APIRouter()

_PAGE_SIZE = 10
_ADMIN_PAGE_SIZE = 25

# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= and ?notice= query params on /auth/login [M3].
# The raw query param is NEVER passed to templates, only the message from
# these dicts (or a guard message from GUARD_MESSAGES).
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid email or password.",
    "account_disabled": "Your account has been disabled. Contact an admin.",
    "oauth_failed": "OAuth authentication failed. Please try again.",
}

_NOTICE_MESSAGES: dict[str, str] = {
    "password_reset": "Your password has been reset. Please log in.",
    "logged_out": "You have been logged out.",
}


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [C2]

    Rejects absolute URLs (https://attacker.com) and protocol-relative URLs
    (//attacker.com), which would both redirect off-site after login.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return get_settings().home_path


def _login_url(**params: str) -> str:
    query = urlencode({k: v for k, v in params.items() if v}, safe="/")
    return f"{get_settings().login_path}?{query}" if query else get_settings().login_path


def _session_or_login(request: Request) -> tuple[Optional[SessionContext], Optional[RedirectResponse]]:
    """Return the session for a guarded page, or a login redirect if it vanished."""
    session = try_get_session(request)
    if session is None:
        return None, RedirectResponse(_login_url(callbackUrl=request.url.path), status_code=302)
    return session, None


def _signed_in_redirect(identity, next_url: str) -> RedirectResponse:
    token = issue_session_token(identity)
    resp = RedirectResponse(next_url, status_code=302)
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public pages
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request, page: int = 1, tag: Optional[str] = None) -> HTMLResponse:
    page = max(page, 1)
    store: ArticleStore = request.app.state.article_store
    articles, total = store.list_articles(page=page, limit=_PAGE_SIZE, tag=tag)
    total_pages = max(1, (total + _PAGE_SIZE - 1) // _PAGE_SIZE)
    return templates.TemplateResponse(
        request,
        "home.html",
        {"articles": articles, "page": page, "total_pages": total_pages, "tag": tag},
    )


@router.get("/articles/{slug}", response_class=HTMLResponse)
def article_page(request: Request, slug: str) -> HTMLResponse:
    store: ArticleStore = request.app.state.article_store
    article = store.get_by_slug(slug)
    session = try_get_session(request)
    visible = article is not None and (
        article.is_published
        or (session is not None and (session.actor_id == article.author_id or satisfies(session.role, Role.EDITOR)))
    )
    if not visible:
        return templates.TemplateResponse(request, "not_found.html", {}, status_code=404)
    if article.is_published:
        store.increment_views(article.id)
    author = request.app.state.identity_store.get_by_id(article.author_id)
    return templates.TemplateResponse(request, "article.html", {"article": article, "author": author})


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/oauth/{provider}", response_class=HTMLResponse)
async def oauth_redirect(request: Request, provider: str) -> RedirectResponse:
    """Redirect the browser to the OAuth provider's authorization page.

    The provider name is checked against the enabled list so a crafted name
    cannot produce a redirect to an arbitrary client. The post-login target
    travels in the Starlette session because the provider round-trip drops
    our query string.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return RedirectResponse(_login_url(error="oauth_failed"), status_code=302)

    request.session["oauth_next"] = _safe_next(request.query_params.get("callbackUrl"))
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/callback/{provider}", response_class=HTMLResponse, name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Handle the OAuth provider callback and issue a session cookie.

    Flow:
      1. Exchange the authorization code (authlib checks the state value).
      2. Extract a verified profile -- ValueError if unverified [H1].
      3. resolve_federated_identity(): linked, linked-by-email or new USER.
      4. Issue the session token and redirect to the stored target.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return RedirectResponse(_login_url(error="oauth_failed"), status_code=302)

    client = request.app.state.oauth.create_client(provider)
    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        return RedirectResponse(_login_url(error="oauth_failed"), status_code=302)

    try:
        profile = await get_oauth_user_info(client, provider, token)
    except ValueError:
        logger.warning("OAuth login rejected: unverified or missing email from %r", provider)
        return RedirectResponse(_login_url(error="oauth_failed"), status_code=302)

    store: IdentityStore = request.app.state.identity_store
    try:
        identity = resolve_federated_identity(store, provider, profile)
    except AccountDisabled:
        return RedirectResponse(_login_url(error="account_disabled"), status_code=302)

    store.update_last_login(identity.id)
    next_url = _safe_next(request.session.pop("oauth_next", None))  # [C2]
    return _signed_in_redirect(identity, next_url)


# ---------------------------------------------------------------------------
# Password login
# ---------------------------------------------------------------------------


@router.get("/auth/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login page.

    Only whitelisted messages reach the template: guard messages from
    GUARD_MESSAGES and the fixed ?error= / ?notice= mappings [M3].
    """
    params = request.query_params
    message = params.get("message")
    # A guard message explains why a signed-in visitor was sent here.
    if message not in GUARD_MESSAGES and try_get_session(request) is not None:
        return RedirectResponse(get_settings().home_path, status_code=302)

    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "guard_msg": message if message in GUARD_MESSAGES else None,
            "error_msg": _ERROR_MESSAGES.get(params.get("error", "")),
            "notice_msg": _NOTICE_MESSAGES.get(params.get("notice", "")),
            "callback_url": _safe_next(params.get("callbackUrl")),
            "providers": get_enabled_providers(),
        },
    )


@router.post("/auth/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    callbackUrl: str = Form(default=""),  # noqa: N803 -- form field name
) -> RedirectResponse:
    """Handle the email/password login form."""
    next_url = _safe_next(callbackUrl)  # [C2]
    store: IdentityStore = request.app.state.identity_store
    identity = authenticate_identity(store, email, password)  # [C1] timing equalization
    if identity is None:
        return RedirectResponse(_login_url(error="bad_credentials", callbackUrl=next_url), status_code=302)
    if identity.status is not Status.ACTIVE:
        return RedirectResponse(_login_url(error="account_disabled"), status_code=302)

    store.update_last_login(identity.id)
    return _signed_in_redirect(identity, next_url)


@router.post("/auth/logout")
def logout(request: Request) -> RedirectResponse:
    resp = RedirectResponse(_login_url(notice="logged_out"), status_code=302)
    clear_auth_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.get("/auth/forgot-password", response_class=HTMLResponse)
def forgot_password_form(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "forgot_password.html", {})


@router.post("/auth/forgot-password", response_class=HTMLResponse)
def forgot_password_post(request: Request, email: str = Form(...)) -> HTMLResponse:
    message = request_password_reset(request.app.state.identity_store, email, request.app.state.reset_sender)
    return templates.TemplateResponse(request, "forgot_password.html", {"notice_msg": message})


@router.get("/auth/reset-password", response_class=HTMLResponse)
def reset_password_form(request: Request, token: str = "") -> HTMLResponse:
    error_msg = None if token else ResetTokenRejected.message
    return templates.TemplateResponse(request, "reset_password.html", {"token": token, "error_msg": error_msg})


@router.post("/auth/reset-password", response_class=HTMLResponse)
def reset_password_post(
    request: Request,
    token: str = Form(...),
    password: str = Form(...),
    confirm_password: str = Form(...),
) -> HTMLResponse:
    def _again(error_msg: str) -> HTMLResponse:
        return templates.TemplateResponse(
            request,
            "reset_password.html",
            {"token": token, "error_msg": error_msg},
            status_code=400,
        )

    if password != confirm_password:
        return _again("Passwords do not match.")
    problem = password_policy_error(password)
    if problem:
        return _again(problem)
    try:
        redeem_password_reset(request.app.state.identity_store, token, password)
    except (ResetTokenRejected, AccountDisabled) as exc:
        return _again(exc.message)
    return RedirectResponse(_login_url(notice="password_reset"), status_code=302)


# ---------------------------------------------------------------------------
# Account and administration (guarded by auth.guard)
# ---------------------------------------------------------------------------


@router.get("/profile", response_class=HTMLResponse)
def profile(request: Request) -> HTMLResponse:
    session, redirect = _session_or_login(request)
    if redirect:
        return redirect
    articles, _total = request.app.state.article_store.list_articles(
        limit=50, author_id=session.actor_id, include_drafts=True
    )
    return templates.TemplateResponse(request, "profile.html", {"identity": session.identity, "articles": articles})


@router.get("/admin", response_class=HTMLResponse)
def admin_dashboard(request: Request) -> HTMLResponse:
    session, redirect = _session_or_login(request)
    if redirect:
        return redirect
    identities: IdentityStore = request.app.state.identity_store
    articles: ArticleStore = request.app.state.article_store
    stats = {
        "users": identities.count_identities(),
        "active_admins": identities.count_active_admins(),
        "articles": articles.count_articles(),
        "published": articles.count_articles(ArticleStatus.PUBLISHED),
        "drafts": articles.count_articles(ArticleStatus.DRAFT),
    }
    return templates.TemplateResponse(request, "admin/dashboard.html", {"stats": stats})


@router.get("/admin/users", response_class=HTMLResponse)
def admin_users(
    request: Request,
    page: int = 1,
    search: Optional[str] = None,
    role: Optional[str] = None,
    status: Optional[str] = None,
) -> HTMLResponse:
    session, redirect = _session_or_login(request)
    if redirect:
        return redirect
    page = max(page, 1)
    role_filter = Role(role) if role in {r.value for r in Role} else None
    status_filter = Status(status) if status in {s.value for s in Status} else None
    users, total = request.app.state.identity_store.list_identities(
        page=page, limit=_ADMIN_PAGE_SIZE, search=search, role=role_filter, status=status_filter
    )
    return templates.TemplateResponse(
        request,
        "admin/users.html",
        {
            "users": users,
            "page": page,
            "total": total,
            "total_pages": max(1, (total + _ADMIN_PAGE_SIZE - 1) // _ADMIN_PAGE_SIZE),
            "search": search or "",
            "actor_id": session.actor_id,
        },
    )


@router.get("/admin/articles", response_class=HTMLResponse)
def admin_articles(request: Request, page: int = 1, search: Optional[str] = None) -> HTMLResponse:
    session, redirect = _session_or_login(request)
    if redirect:
        return redirect
    page = max(page, 1)
    articles, total = request.app.state.article_store.list_articles(
        page=page, limit=_ADMIN_PAGE_SIZE, search=search, include_drafts=True
    )
    return templates.TemplateResponse(
        request,
        "admin/articles.html",
        {
            "articles": articles,
            "page": page,
            "total": total,
            "total_pages": max(1, (total + _ADMIN_PAGE_SIZE - 1) // _ADMIN_PAGE_SIZE),
            "search": search or "",
        },
    )


# ---------------------------------------------------------------------------
# Demo surface (cookie flag, see auth.guard.evaluate_demo)
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def demo_login_form(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "demo_login.html", {})


@router.post("/login", response_class=HTMLResponse)
def demo_login_post(request: Request, email: str = Form(...), password: str = Form(...)) -> HTMLResponse:
    cfg = get_settings()
    if not demo_credentials_match(email, password, cfg):
        return templates.TemplateResponse(
            request,
            "demo_login.html",
            {"error_msg": "Invalid demo credentials."},
            status_code=401,
        )
    resp = RedirectResponse(cfg.demo_home_path, status_code=302)
    set_demo_cookie(resp, cfg)
    return resp


@router.get("/studio", response_class=HTMLResponse)
def studio(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "studio.html", {})

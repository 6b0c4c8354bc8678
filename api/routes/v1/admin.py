"""
api/routes/v1/admin.py -- Administration REST endpoints. Every route requires ADMIN.

Routes:
  GET    /api/v1/admin/users                -- paginated list (search, role, status)
  GET    /api/v1/admin/users/{id}           -- one identity
  PUT    /api/v1/admin/users/{id}           -- update profile fields, role and/or status
  PATCH  /api/v1/admin/users/{id}/role      -- change role
  PATCH  /api/v1/admin/users/{id}/status    -- change status
  DELETE /api/v1/admin/users/{id}           -- delete identity and its articles
  GET    /api/v1/admin/articles             -- every article, drafts included
  GET    /api/v1/admin/articles/{id}        -- one article by id
  PATCH  /api/v1/admin/articles/{id}        -- update any article
  DELETE /api/v1/admin/articles/{id}        -- delete any article

Security:
  [M4] Every role / status / delete change runs two checks before writing:
       enforce_self_action()  -- 403 self_demotion / self_suspension / self_deletion
       enforce_last_admin()   -- 409 last_admin when no active ADMIN would remain
  A role change does not touch live tokens; the store check in
  auth/dependencies.py ends sessions of suspended, banned or deleted
  identities on their next request.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    ArticlePage,
    ArticleResponse,
    ArticleUpdate,
    IdentityPage,
    IdentityResponse,
    IdentityUpdate,
    MessageResponse,
    Pagination,
    RoleUpdate,
    StatusUpdate,
)
from api.routes.v1.articles import article_update_fields, resolve_author_filter, to_response, to_responses
from auth.dependencies import require_admin
from auth.models import Identity, Role, SessionContext, Status
from auth.policy import (
    SelfAction,
    classify_role_change,
    classify_status_change,
    enforce_last_admin,
    enforce_self_action,
)
from auth.store import IdentityStore
from content.models import Article, ArticleStatus
from content.store import ArticleStore
from core.errors import NotFound, ValidationFailed

logger = logging.getLogger("inkpost.api.admin")

router = APIRouter(prefix="/admin")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_target(request: Request, identity_id: str) -> Identity:
    target = request.app.state.identity_store.get_by_id(identity_id)
    if target is None:
        raise NotFound("User not found.")
    return target


def _check_role_change(store: IdentityStore, session: SessionContext, target: Identity, new_role: Role) -> None:
    action = classify_role_change(target.role, new_role)
    enforce_self_action(session.actor_id, target.id, action)
    enforce_last_admin(store, target, action)


def _check_status_change(store: IdentityStore, session: SessionContext, target: Identity, new_status: Status) -> None:
    action = classify_status_change(target.status, new_status)
    enforce_self_action(session.actor_id, target.id, action)
    enforce_last_admin(store, target, action)


def _updated(request: Request, identity_id: str) -> IdentityResponse:
    return IdentityResponse.from_identity(request.app.state.identity_store.get_by_id(identity_id))


def _get_article(request: Request, article_id: str) -> Article:
    article = request.app.state.article_store.get_by_id(article_id)
    if article is None:
        raise NotFound("Article not found.")
    return article


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/users", response_model=IdentityPage)
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    search: Optional[str] = Query(default=None, max_length=200),
    role: Optional[Role] = None,
    status: Optional[Status] = None,
    session: SessionContext = Depends(require_admin),
) -> IdentityPage:
    store: IdentityStore = request.app.state.identity_store
    identities, total = store.list_identities(page=page, limit=limit, search=search, role=role, status=status)
    return IdentityPage(
        users=[IdentityResponse.from_identity(i) for i in identities],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/users/{identity_id}", response_model=IdentityResponse)
def get_user(
    request: Request,
    identity_id: str,
    session: SessionContext = Depends(require_admin),
) -> IdentityResponse:
    return IdentityResponse.from_identity(_get_target(request, identity_id))


@router.put("/users/{identity_id}", response_model=IdentityResponse)
def update_user(
    request: Request,
    identity_id: str,
    body: IdentityUpdate,
    session: SessionContext = Depends(require_admin),
) -> IdentityResponse:
    store: IdentityStore = request.app.state.identity_store
    target = _get_target(request, identity_id)
    fields = body.model_dump(exclude_unset=True, exclude_none=True)
    if not fields:
        raise ValidationFailed("No fields to update.")

    if "role" in fields:
        _check_role_change(store, session, target, fields["role"])
    if "status" in fields:
        _check_status_change(store, session, target, fields["status"])

    store.update_identity(identity_id, **fields)
    logger.info("Admin %s updated identity %s: %s", session.actor_id, identity_id, sorted(fields))
    return _updated(request, identity_id)


@router.patch("/users/{identity_id}/role", response_model=IdentityResponse)
def change_role(
    request: Request,
    identity_id: str,
    body: RoleUpdate,
    session: SessionContext = Depends(require_admin),
) -> IdentityResponse:
    store: IdentityStore = request.app.state.identity_store
    target = _get_target(request, identity_id)
    _check_role_change(store, session, target, body.role)
    store.update_identity(identity_id, role=body.role)
    logger.info("Admin %s set role of %s to %s", session.actor_id, identity_id, body.role.value)
    return _updated(request, identity_id)


@router.patch("/users/{identity_id}/status", response_model=IdentityResponse)
def change_status(
    request: Request,
    identity_id: str,
    body: StatusUpdate,
    session: SessionContext = Depends(require_admin),
) -> IdentityResponse:
    store: IdentityStore = request.app.state.identity_store
    target = _get_target(request, identity_id)
    _check_status_change(store, session, target, body.status)
    store.update_identity(identity_id, status=body.status)
    logger.info("Admin %s set status of %s to %s", session.actor_id, identity_id, body.status.value)
    return _updated(request, identity_id)


@router.delete("/users/{identity_id}", response_model=MessageResponse)
def delete_user(
    request: Request,
    identity_id: str,
    session: SessionContext = Depends(require_admin),
) -> MessageResponse:
    """Delete an identity together with the articles it wrote."""
    store: IdentityStore = request.app.state.identity_store
    articles: ArticleStore = request.app.state.article_store
    target = _get_target(request, identity_id)
    enforce_self_action(session.actor_id, target.id, SelfAction.DELETE)
    enforce_last_admin(store, target, SelfAction.DELETE)

    removed = articles.delete_by_author(target.id)
    store.delete_identity(target.id)
    logger.warning("Admin %s deleted identity %s (%d articles)", session.actor_id, target.id, removed)
    return MessageResponse(message="User deleted successfully.")


# ---------------------------------------------------------------------------
# Articles
# ---------------------------------------------------------------------------


@router.get("/articles", response_model=ArticlePage)
def list_all_articles(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    search: Optional[str] = Query(default=None, max_length=200),
    status: Optional[ArticleStatus] = None,
    author: Optional[str] = Query(default=None, max_length=100),
    session: SessionContext = Depends(require_admin),
) -> ArticlePage:
    articles, total = request.app.state.article_store.list_articles(
        page=page,
        limit=limit,
        search=search,
        status=status,
        author_id=resolve_author_filter(request, author),
        include_drafts=True,
    )
    return ArticlePage(articles=to_responses(request, articles), pagination=Pagination.build(page, limit, total))


@router.get("/articles/{article_id}", response_model=ArticleResponse)
def get_any_article(
    request: Request,
    article_id: str,
    session: SessionContext = Depends(require_admin),
) -> ArticleResponse:
    return to_response(request, _get_article(request, article_id))


@router.patch("/articles/{article_id}", response_model=ArticleResponse)
def update_any_article(
    request: Request,
    article_id: str,
    body: ArticleUpdate,
    session: SessionContext = Depends(require_admin),
) -> ArticleResponse:
    store: ArticleStore = request.app.state.article_store
    article = _get_article(request, article_id)
    store.update_article(article.id, **article_update_fields(body))
    return to_response(request, store.get_by_id(article.id))


@router.delete("/articles/{article_id}", status_code=204)
def delete_any_article(
    request: Request,
    article_id: str,
    session: SessionContext = Depends(require_admin),
) -> Response:
    article = _get_article(request, article_id)
    request.app.state.article_store.delete_article(article.id)
    logger.info("Admin %s deleted article %s", session.actor_id, article.id)
    return Response(status_code=204)

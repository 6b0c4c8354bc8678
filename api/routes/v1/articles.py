"""
api/routes/v1/articles.py -- Article REST endpoints.

Routes:
  GET    /api/v1/articles          -- paginated list (public; drafts need a session)
  POST   /api/v1/articles          -- create (any signed-in identity)
  GET    /api/v1/articles/{slug}   -- detail; increments views for published articles
  PUT    /api/v1/articles/{slug}   -- update (author, or EDITOR and above)
  DELETE /api/v1/articles/{slug}   -- delete (author or ADMIN)

Visibility:
  anonymous        -- PUBLISHED only; the status filter is ignored
  USER             -- PUBLISHED plus the caller's own drafts
  EDITOR / ADMIN   -- everything
A draft requested by anyone below EDITOR other than its author answers 404,
never 403, so draft slugs are not discoverable.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import ArticleCreate, ArticlePage, ArticleResponse, ArticleUpdate, Pagination
from auth.dependencies import get_session, try_get_session
from auth.models import Identity, Role, SessionContext
from auth.roles import satisfies
from auth.store import IdentityStore
from content.models import Article, ArticleStatus
from content.store import ArticleStore
from core.errors import AuthorizationInsufficient, NotFound, ValidationFailed

router = APIRouter()

MAX_PAGE_SIZE = 50


# ---------------------------------------------------------------------------
# Helpers (shared with api/routes/v1/admin.py)
# ---------------------------------------------------------------------------


def to_responses(request: Request, articles: list[Article]) -> list[ArticleResponse]:
    """Map articles to responses, loading each distinct author once."""
    store: IdentityStore = request.app.state.identity_store
    authors: dict[str, Optional[Identity]] = {}
    for article in articles:
        if article.author_id not in authors:
            authors[article.author_id] = store.get_by_id(article.author_id)
    return [ArticleResponse.from_article(a, authors[a.author_id]) for a in articles]


def to_response(request: Request, article: Article) -> ArticleResponse:
    return to_responses(request, [article])[0]


def resolve_author_filter(request: Request, author: Optional[str]) -> Optional[str]:
    """Accept a username or an identity id for the ?author= filter."""
    if not author:
        return None
    identity = request.app.state.identity_store.get_by_username(author)
    return identity.id if identity is not None else author


def article_update_fields(body: ArticleUpdate) -> dict:
    fields = body.model_dump(exclude_unset=True)
    # featured_image may be cleared with null or ""; the other fields may not.
    fields = {k: v for k, v in fields.items() if v is not None or k == "featured_image"}
    if not fields:
        raise ValidationFailed("No fields to update.")
    return fields


def _get_visible(request: Request, slug: str, session: Optional[SessionContext]) -> Article:
    article = request.app.state.article_store.get_by_slug(slug)
    if article is None:
        raise NotFound("Article not found.")
    if article.is_published:
        return article
    if session is not None and (session.actor_id == article.author_id or satisfies(session.role, Role.EDITOR)):
        return article
    raise NotFound("Article not found.")


def _get_for_write(request: Request, slug: str, session: SessionContext, privileged: Role, message: str) -> Article:
    """Load an article the caller may modify: its author, or anyone ranked privileged or above."""
    article = request.app.state.article_store.get_by_slug(slug)
    if article is None:
        raise NotFound("Article not found.")
    if article.author_id == session.actor_id or satisfies(session.role, privileged):
        return article
    if not article.is_published:
        raise NotFound("Article not found.")
    raise AuthorizationInsufficient(message)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/articles", response_model=ArticlePage)
def list_articles(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=MAX_PAGE_SIZE),
    search: Optional[str] = Query(default=None, max_length=200),
    tag: Optional[str] = Query(default=None, max_length=100),
    status: Optional[ArticleStatus] = None,
    author: Optional[str] = Query(default=None, max_length=100),
) -> ArticlePage:
    session = try_get_session(request)
    store: ArticleStore = request.app.state.article_store

    if session is None:
        status = None
        visible_to, include_drafts = None, False
    elif satisfies(session.role, Role.EDITOR):
        visible_to, include_drafts = None, True
    else:
        visible_to, include_drafts = session.actor_id, False

    articles, total = store.list_articles(
        page=page,
        limit=limit,
        search=search,
        tag=tag,
        status=status,
        author_id=resolve_author_filter(request, author),
        visible_to=visible_to,
        include_drafts=include_drafts,
    )
    return ArticlePage(articles=to_responses(request, articles), pagination=Pagination.build(page, limit, total))


@router.post("/articles", response_model=ArticleResponse, status_code=201)
def create_article(
    request: Request,
    body: ArticleCreate,
    session: SessionContext = Depends(get_session),
) -> ArticleResponse:
    store: ArticleStore = request.app.state.article_store
    article_id = store.create_article(
        Article(
            title=body.title,
            slug=body.slug or "",
            excerpt=body.excerpt,
            content=body.content,
            featured_image=body.featured_image,
            tags=body.tags,
            status=body.status,
            author_id=session.actor_id,
        )
    )
    return to_response(request, store.get_by_id(article_id))


@router.get("/articles/{slug}", response_model=ArticleResponse)
def get_article(request: Request, slug: str) -> ArticleResponse:
    article = _get_visible(request, slug, try_get_session(request))
    if article.is_published:
        request.app.state.article_store.increment_views(article.id)
        article.views += 1
    return to_response(request, article)


@router.put("/articles/{slug}", response_model=ArticleResponse)
def update_article(
    request: Request,
    slug: str,
    body: ArticleUpdate,
    session: SessionContext = Depends(get_session),
) -> ArticleResponse:
    article = _get_for_write(request, slug, session, Role.EDITOR, "You can only edit your own articles.")
    store: ArticleStore = request.app.state.article_store
    store.update_article(article.id, **article_update_fields(body))
    return to_response(request, store.get_by_id(article.id))


@router.delete("/articles/{slug}", status_code=204)
def delete_article(
    request: Request,
    slug: str,
    session: SessionContext = Depends(get_session),
) -> Response:
    article = _get_for_write(request, slug, session, Role.ADMIN, "You can only delete your own articles.")
    request.app.state.article_store.delete_article(article.id)
    return Response(status_code=204)

"""
content/store.py -- SQLAlchemy-backed persistence layer for articles.

Uses SQLAlchemy Core (not ORM) so the dataclasses in content/models.py remain
the authoritative domain representation.

Pattern: Repository + Data Mapper. ArticleStore is the repository;
_row_to_article is the mapper. Route handlers never touch SQL directly.

Slugs:
  UNIQUE(slug) is the enforcement. create_article() picks the first free
  slug from base, base-1, base-2, ... and retries when a concurrent insert
  takes it first. update_article() never renames silently: an explicit slug
  that is already taken raises Conflict(field="slug").

Visibility (list_articles):
  include_drafts=True          -- every article (editors, admins)
  visible_to=<identity id>     -- published articles plus that author's drafts
  neither                      -- published articles only (anonymous)

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = ArticleStore()
    article_id = store.create_article(Article(title="Hello", content="...", author_id=uid))
    articles, total = store.list_articles(page=1, limit=10)
    store.close()
"""

import json
import re
import unicodedata
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from content.models import Article, ArticleStatus
from core.errors import Conflict

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'inkpost_content.db'}"

_SLUG_ATTEMPTS = 5

_MUTABLE_FIELDS = {"title", "slug", "excerpt", "content", "featured_image", "tags", "status"}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_articles = Table(
    "articles",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("title", String(200), nullable=False),
    Column("slug", String(255), nullable=False, unique=True),
    Column("excerpt", Text, nullable=False, server_default=""),
    Column("content", Text, nullable=False),
    Column("featured_image", Text),
    Column("tags", Text),  # JSON array serialized as text
    Column("status", String(16), nullable=False, server_default="DRAFT"),
    Column("author_id", String(32), nullable=False, index=True),
    Column("views", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("published_at", String(32)),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def slugify(text: str) -> str:
    """Lowercase ASCII slug: 'Hello, World!' -> 'hello-world'."""
    ascii_text = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^\w\s-]", "", ascii_text).strip().lower()
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug or "article"


def _normalize_tags(tags: list[str]) -> list[str]:
    """Strip, drop empties and de-duplicate case-insensitively, keeping order."""
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags:
        cleaned = tag.strip()
        if cleaned and cleaned.lower() not in seen:
            seen.add(cleaned.lower())
            result.append(cleaned)
    return result


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ArticleStore:
    """Repository for Article entities."""

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_article(self, article: Article) -> str:
        """Insert a new article and return its id.

        The slug (given, or derived from the title) gets a -1, -2, ... suffix
        when it is already taken.
        """
        article_id = article.id or uuid.uuid4().hex
        base = slugify(article.slug or article.title)
        status = ArticleStatus(article.status)
        now = _now_iso()
        for _ in range(_SLUG_ATTEMPTS):
            slug = self.next_free_slug(base)
            try:
                with self.engine.connect() as conn:
                    conn.execute(
                        _articles.insert().values(
                            id=article_id,
                            title=article.title,
                            slug=slug,
                            excerpt=article.excerpt or "",
                            content=article.content,
                            featured_image=article.featured_image or None,
                            tags=json.dumps(_normalize_tags(article.tags)),
                            status=status.value,
                            author_id=article.author_id,
                            views=0,
                            created_at=now,
                            updated_at=now,
                            published_at=now if status is ArticleStatus.PUBLISHED else None,
                        )
                    )
                    conn.commit()
                return article_id
            except IntegrityError as exc:
                if "slug" not in str(exc.orig).lower():
                    raise
        raise Conflict("Could not allocate a unique slug.", field="slug")

    def update_article(self, article_id: str, **fields) -> bool:
        """Update mutable fields. Returns True if a row was updated.

        Setting status to PUBLISHED for the first time stamps published_at.
        Raises Conflict(field="slug") when the requested slug is taken.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown article fields: {unknown!r}")
        if "slug" in fields:
            fields["slug"] = slugify(fields["slug"])
        if "tags" in fields:
            fields["tags"] = json.dumps(_normalize_tags(fields["tags"]))
        if "featured_image" in fields:
            fields["featured_image"] = fields["featured_image"] or None

        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                current = conn.execute(
                    select(_articles.c.published_at).where(_articles.c.id == article_id)
                ).fetchone()
                if current is None:
                    return False
                if "status" in fields:
                    status = ArticleStatus(fields["status"])
                    fields["status"] = status.value
                    if status is ArticleStatus.PUBLISHED and current.published_at is None:
                        fields["published_at"] = now
                fields["updated_at"] = now
                result = conn.execute(_articles.update().where(_articles.c.id == article_id).values(**fields))
                conn.commit()
        except IntegrityError as exc:
            raise Conflict("An article with this slug already exists.", field="slug") from exc
        return result.rowcount > 0

    def increment_views(self, article_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _articles.update().where(_articles.c.id == article_id).values(views=_articles.c.views + 1)
            )
            conn.commit()

    def delete_article(self, article_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_articles.delete().where(_articles.c.id == article_id))
            conn.commit()
        return result.rowcount > 0

    def delete_by_author(self, author_id: str) -> int:
        """Delete every article written by author_id. Returns the number deleted."""
        with self.engine.connect() as conn:
            result = conn.execute(_articles.delete().where(_articles.c.author_id == author_id))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def next_free_slug(self, base: str) -> str:
        """Return base if unused, otherwise the first free base-N (N >= 1)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_articles.c.slug).where(or_(_articles.c.slug == base, _articles.c.slug.like(f"{base}-%")))
            ).fetchall()
        taken = {r.slug for r in rows}
        if base not in taken:
            return base
        n = 1
        while f"{base}-{n}" in taken:
            n += 1
        return f"{base}-{n}"

    def get_by_id(self, article_id: str) -> Optional[Article]:
        return self._get_one(_articles.c.id == article_id)

    def get_by_slug(self, slug: str) -> Optional[Article]:
        return self._get_one(_articles.c.slug == slug)

    def list_articles(
        self,
        *,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
        tag: Optional[str] = None,
        status: Optional[ArticleStatus] = None,
        author_id: Optional[str] = None,
        visible_to: Optional[str] = None,
        include_drafts: bool = False,
    ) -> tuple[list[Article], int]:
        """Return one page of articles (newest first) and the total match count."""
        conditions = []
        if not include_drafts:
            published = _articles.c.status == ArticleStatus.PUBLISHED.value
            if visible_to:
                conditions.append(or_(published, _articles.c.author_id == visible_to))
            else:
                conditions.append(published)
        if status is not None:
            conditions.append(_articles.c.status == ArticleStatus(status).value)
        if author_id:
            conditions.append(_articles.c.author_id == author_id)
        if search:
            pattern = f"%{search.strip().lower()}%"
            conditions.append(
                or_(
                    func.lower(_articles.c.title).like(pattern),
                    func.lower(_articles.c.excerpt).like(pattern),
                    func.lower(_articles.c.content).like(pattern),
                )
            )
        if tag:
            # Tags are a JSON array of strings; match the quoted element.
            conditions.append(func.lower(_articles.c.tags).like(f"%{json.dumps(tag.strip().lower())}%"))

        query = _articles.select()
        count_query = select(func.count()).select_from(_articles)
        if conditions:
            query = query.where(*conditions)
            count_query = count_query.where(*conditions)

        offset = (max(page, 1) - 1) * limit
        with self.engine.connect() as conn:
            rows = conn.execute(
                query.order_by(_articles.c.created_at.desc(), _articles.c.id).limit(limit).offset(offset)
            ).fetchall()
            total = conn.execute(count_query).scalar() or 0
        return [_row_to_article(r) for r in rows], total

    def count_articles(self, status: Optional[ArticleStatus] = None) -> int:
        query = select(func.count()).select_from(_articles)
        if status is not None:
            query = query.where(_articles.c.status == ArticleStatus(status).value)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def close(self) -> None:
        self.engine.dispose()

    def _get_one(self, condition) -> Optional[Article]:
        with self.engine.connect() as conn:
            row = conn.execute(_articles.select().where(condition)).fetchone()
        return _row_to_article(row) if row is not None else None


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_article(row) -> Article:
    return Article(
        id=row.id,
        title=row.title,
        slug=row.slug,
        excerpt=row.excerpt or "",
        content=row.content,
        featured_image=row.featured_image,
        tags=json.loads(row.tags) if row.tags else [],
        status=ArticleStatus(row.status),
        author_id=row.author_id,
        views=row.views or 0,
        created_at=row.created_at,
        updated_at=row.updated_at,
        published_at=row.published_at,
    )

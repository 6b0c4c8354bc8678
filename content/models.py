"""
content/models.py -- Domain dataclasses for blog articles.

Pure data containers. Slug generation and visibility rules live in
content/store.py; ownership checks live in the API routes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ArticleStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"


@dataclass
class Article:
    """A blog article.

    author_id references an Identity id in the auth database. The two
    databases are independent, so the reference is not a foreign key;
    deleting an identity calls ArticleStore.delete_by_author() explicitly.

    id is None before the record is written to the database.
    """

    title: str
    content: str
    author_id: str
    slug: str = ""  # derived from title when empty
    excerpt: str = ""
    featured_image: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    status: ArticleStatus = ArticleStatus.DRAFT
    views: int = 0
    id: Optional[str] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""
    published_at: Optional[str] = None

    @property
    def is_published(self) -> bool:
        return self.status is ArticleStatus.PUBLISHED

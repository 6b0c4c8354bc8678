"""
API request and response models for Inkpost REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
content/models.py, which own the internal domain representation. Route
handlers map between the two.

IdentityResponse never carries hashed_password, reset-token data or
credentials_changed_at. The from_* factories are the only place the mapping
happens.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Identity, Role, Status
from auth.tokens import PASSWORD_MAX_LENGTH, password_policy_error
from content.models import Article, ArticleStatus

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"


def _strong_password(value: str) -> str:
    problem = password_policy_error(value)
    if problem:
        raise ValueError(problem)
    return value


# ---------------------------------------------------------------------------
# Request models -- accounts
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str
    name: Optional[str] = Field(default=None, max_length=100)

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return _strong_password(v)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password."""

    token: str = Field(min_length=1, max_length=128)
    password: str

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return _strong_password(v)


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/user/profile. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    username: Optional[str] = Field(default=None, min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    image: Optional[str] = Field(default=None, max_length=2048)


class PasswordChange(BaseModel):
    """Request body for PUT /api/v1/user/change-password."""

    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return _strong_password(v)


class DemoLoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


# ---------------------------------------------------------------------------
# Request models -- administration
# ---------------------------------------------------------------------------


class RoleUpdate(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{id}/role."""

    role: Role


class StatusUpdate(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{id}/status."""

    status: Status


class IdentityUpdate(BaseModel):
    """Request body for PUT /api/v1/admin/users/{id}.

    Role and status changes pass through the same self-action and last-admin
    checks as the dedicated PATCH endpoints.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    username: Optional[str] = Field(default=None, min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    role: Optional[Role] = None
    status: Optional[Status] = None


# ---------------------------------------------------------------------------
# Request models -- articles
# ---------------------------------------------------------------------------


class ArticleCreate(BaseModel):
    """Request body for POST /api/v1/articles.

    slug is optional; when omitted it is derived from the title.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    slug: Optional[str] = Field(default=None, max_length=200)
    excerpt: str = Field(default="", max_length=500)
    content: str = Field(min_length=1)
    featured_image: Optional[str] = Field(default=None, max_length=2048)
    tags: list[str] = Field(default_factory=list, max_length=20)
    status: ArticleStatus = ArticleStatus.DRAFT

    @field_validator("featured_image")
    @classmethod
    def check_image_url(cls, v: Optional[str]) -> Optional[str]:
        if v and not v.startswith(("http://", "https://", "/")):
            raise ValueError("featured_image must be an http(s) URL or a site-relative path")
        return v or None


class ArticleUpdate(BaseModel):
    """Request body for PUT /api/v1/articles/{slug} and PATCH /api/v1/admin/articles/{id}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    slug: Optional[str] = Field(default=None, min_length=1, max_length=200)
    excerpt: Optional[str] = Field(default=None, max_length=500)
    content: Optional[str] = Field(default=None, min_length=1)
    featured_image: Optional[str] = Field(default=None, max_length=2048)
    tags: Optional[list[str]] = Field(default=None, max_length=20)
    status: Optional[ArticleStatus] = None

    @field_validator("featured_image")
    @classmethod
    def check_image_url(cls, v: Optional[str]) -> Optional[str]:
        if v and not v.startswith(("http://", "https://", "/")):
            raise ValueError("featured_image must be an http(s) URL or a site-relative path")
        return v


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class IdentityResponse(BaseModel):
    """Public view of an Identity. Secrets are never included."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    username: str
    name: Optional[str]
    image: Optional[str]
    role: Role
    status: Status
    oauth_provider: Optional[str]
    created_at: str
    updated_at: str
    last_login: Optional[str]

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(
            id=identity.id,
            email=identity.email,
            username=identity.username,
            name=identity.name,
            image=identity.image,
            role=identity.role,
            status=identity.status,
            oauth_provider=identity.oauth_provider,
            created_at=identity.created_at or "",
            updated_at=identity.updated_at or "",
            last_login=identity.last_login,
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    expires_in: int
    user: IdentityResponse


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = (total + limit - 1) // limit if limit else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


class IdentityPage(BaseModel):
    """Response for GET /api/v1/admin/users."""

    model_config = ConfigDict(frozen=True)

    users: list[IdentityResponse]
    pagination: Pagination


class AuthorSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    name: Optional[str] = None
    image: Optional[str] = None


class ArticleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    slug: str
    excerpt: str
    content: str
    featured_image: Optional[str]
    tags: list[str]
    status: ArticleStatus
    author_id: str
    author: Optional[AuthorSummary] = None
    views: int
    created_at: str
    updated_at: str
    published_at: Optional[str]

    @classmethod
    def from_article(cls, article: Article, author: Optional[Identity] = None) -> "ArticleResponse":
        return cls(
            id=article.id,
            title=article.title,
            slug=article.slug,
            excerpt=article.excerpt,
            content=article.content,
            featured_image=article.featured_image,
            tags=article.tags,
            status=article.status,
            author_id=article.author_id,
            author=(
                AuthorSummary(id=author.id, username=author.username, name=author.name, image=author.image)
                if author is not None
                else None
            ),
            views=article.views,
            created_at=article.created_at,
            updated_at=article.updated_at,
            published_at=article.published_at,
        )


class ArticlePage(BaseModel):
    """Response for GET /api/v1/articles."""

    model_config = ConfigDict(frozen=True)

    articles: list[ArticleResponse]
    pagination: Pagination


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class OAuthProviderInfo(BaseModel):
    """One entry in GET /api/v1/auth/providers."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    field names the offending input for conflicts; errors carries the
    per-field list for request validation failures.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    field: Optional[str] = None
    errors: Optional[list[dict]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]

"""
tests/conftest.py -- Shared test fixtures for Inkpost integration tests.

This module provides:
  - make_stores(): isolated in-memory DBs for identities + articles
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: Harness around a TestClient for JSON API tests
  - web_client: same, with follow_redirects=False for page and guard tests

Every harness is seeded with four password accounts, all using PASSWORD:
  admin    -- ADMIN  (admin@example.com)
  admin2   -- ADMIN  (admin2@example.com), so last-admin tests can demote one
  editor   -- EDITOR (editor@example.com)
  writer   -- USER   (writer@example.com)

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from unittest.mock import MagicMock

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from asgi import app
from auth.models import Identity, Role, Status
from auth.store import IdentityStore
from auth.tokens import hash_password, issue_session_token
from content.store import ArticleStore

PASSWORD = "Sup3rSecret"

_PASSWORD_HASH = hash_password(PASSWORD)

_SEED_ACCOUNTS = {
    "admin": Role.ADMIN,
    "admin2": Role.ADMIN,
    "editor": Role.EDITOR,
    "writer": Role.USER,
}

_OPEN_CLIENTS: list[TestClient] = []


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class RecordingResetSender:
    """Captures reset links instead of delivering them."""

    def __init__(self) -> None:
        self.sent: list[tuple[Identity, str]] = []

    def send(self, identity: Identity, reset_url: str) -> None:
        self.sent.append((identity, reset_url))

    @property
    def last_token(self) -> Optional[str]:
        if not self.sent:
            return None
        return self.sent[-1][1].split("token=", 1)[1]


@dataclass
class Harness:
    client: TestClient
    identities: IdentityStore
    articles: ArticleStore
    reset_sender: RecordingResetSender
    accounts: dict[str, Identity] = field(default_factory=dict)

    def token(self, name: str, issued_at: Optional[datetime] = None) -> str:
        return issue_session_token(self.identities.get_by_id(self.accounts[name].id), issued_at=issued_at)

    def headers(self, name: str, issued_at: Optional[datetime] = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token(name, issued_at)}"}

    def add_account(
        self,
        username: str,
        role: Role = Role.USER,
        status: Status = Status.ACTIVE,
        password: Optional[str] = PASSWORD,
    ) -> Identity:
        """Create an extra account for tests that mutate or delete it."""
        identity_id = self.identities.create_identity(
            Identity(
                email=f"{username}@example.com",
                username=username,
                name=username.title(),
                role=role,
                status=status,
                hashed_password=_PASSWORD_HASH if password == PASSWORD else (password and hash_password(password)),
            )
        )
        self.accounts[username] = self.identities.get_by_id(identity_id)
        return self.accounts[username]


def make_stores(db_suffix: str) -> tuple[IdentityStore, ArticleStore]:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'web').
    """
    auth_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    content_url = f"sqlite:///file:test_content_{db_suffix}?mode=memory&cache=shared&uri=true"
    return IdentityStore(db_url=auth_url), ArticleStore(db_url=content_url)


def _patch_lifespan(identities: IdentityStore, articles: ArticleStore, sender: RecordingResetSender):
    """Return an async context manager that replaces the real lifespan.

    The OAuth registry is mocked to prevent real network calls.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.identity_store = identities
        app.state.article_store = articles
        app.state.oauth = MagicMock()
        app.state.reset_sender = sender
        yield

    return test_lifespan


def _harness(db_suffix: str, **client_kwargs) -> Generator[Harness, None, None]:
    identities, articles = make_stores(db_suffix)
    sender = RecordingResetSender()
    app.router.lifespan_context = _patch_lifespan(identities, articles, sender)

    with TestClient(app, raise_server_exceptions=True, **client_kwargs) as client:
        harness = Harness(client=client, identities=identities, articles=articles, reset_sender=sender)
        for username, role in _SEED_ACCOUNTS.items():
            harness.add_account(username, role)
        _OPEN_CLIENTS.append(client)
        yield harness
        _OPEN_CLIENTS.remove(client)

    identities.close()
    articles.close()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolate_requests() -> None:
    """Reset rate-limit counters and drop cookies left by a previous test."""
    limiter.reset()
    for client in _OPEN_CLIENTS:
        client.cookies.clear()


@pytest.fixture(scope="module")
def api_client(request) -> Generator[Harness, None, None]:
    """Harness for JSON API tests. One set of stores per test module."""
    yield from _harness(f"api_{request.module.__name__.rsplit('.', 1)[-1]}")


@pytest.fixture(scope="module")
def web_client(request) -> Generator[Harness, None, None]:
    """Harness for page tests.

    follow_redirects=False is essential: tests assert on redirect
    locations, which are invisible once the client follows them.
    """
    yield from _harness(f"web_{request.module.__name__.rsplit('.', 1)[-1]}", follow_redirects=False)


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc)

"""
tests/test_articles.py -- Integration tests for /api/v1/articles.

Coverage:
  - Anonymous readers see published articles only, whatever ?status= says
  - A USER sees its own drafts; EDITOR and ADMIN see every draft
  - A foreign draft answers 404, never 403
  - Create: 201, slug derived from the title and de-duplicated, auth required
  - Update: author or EDITOR+; other users get 403 on published articles
  - Delete: author or ADMIN; an EDITOR cannot delete a foreign article
  - Published detail increments views
"""

from __future__ import annotations

import pytest

from conftest import Harness


def _create(h: Harness, who: str, **body) -> dict:
    body.setdefault("content", "Some words.")
    resp = h.client.post("/api/v1/articles", json=body, headers=h.headers(who))
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.fixture(scope="module")
def seeded(api_client: Harness) -> dict[str, dict]:
    return {
        "public": _create(api_client, "writer", title="Hello World", status="PUBLISHED", tags=["Python", "news"]),
        "draft": _create(api_client, "writer", title="Work In Progress"),
        "editor_draft": _create(api_client, "editor", title="Editorial Draft"),
    }


class TestListing:
    def test_anonymous_sees_published_only(self, api_client: Harness, seeded) -> None:
        resp = api_client.client.get("/api/v1/articles?limit=50")
        assert resp.status_code == 200
        slugs = {a["slug"] for a in resp.json()["articles"]}
        assert seeded["public"]["slug"] in slugs
        assert seeded["draft"]["slug"] not in slugs

    def test_anonymous_status_filter_is_ignored(self, api_client: Harness, seeded) -> None:
        resp = api_client.client.get("/api/v1/articles?status=DRAFT&limit=50")
        assert {a["status"] for a in resp.json()["articles"]} == {"PUBLISHED"}

    def test_user_sees_own_drafts_only(self, api_client: Harness, seeded) -> None:
        resp = api_client.client.get("/api/v1/articles?limit=50", headers=api_client.headers("writer"))
        slugs = {a["slug"] for a in resp.json()["articles"]}
        assert seeded["draft"]["slug"] in slugs
        assert seeded["editor_draft"]["slug"] not in slugs

    def test_editor_sees_all_drafts(self, api_client: Harness, seeded) -> None:
        resp = api_client.client.get("/api/v1/articles?status=DRAFT&limit=50", headers=api_client.headers("editor"))
        slugs = {a["slug"] for a in resp.json()["articles"]}
        assert {seeded["draft"]["slug"], seeded["editor_draft"]["slug"]} <= slugs

    def test_filter_by_tag_is_case_insensitive(self, api_client: Harness, seeded) -> None:
        resp = api_client.client.get("/api/v1/articles?tag=PYTHON")
        assert [a["slug"] for a in resp.json()["articles"]] == [seeded["public"]["slug"]]

    def test_filter_by_author_username(self, api_client: Harness, seeded) -> None:
        resp = api_client.client.get("/api/v1/articles?author=writer&limit=50")
        assert {a["author"]["username"] for a in resp.json()["articles"]} == {"writer"}

    def test_limit_is_capped(self, api_client: Harness) -> None:
        assert api_client.client.get("/api/v1/articles?limit=500").status_code == 400


class TestDetail:
    def test_published_detail_counts_views(self, api_client: Harness, seeded) -> None:
        slug = seeded["public"]["slug"]
        first = api_client.client.get(f"/api/v1/articles/{slug}").json()["views"]
        second = api_client.client.get(f"/api/v1/articles/{slug}").json()["views"]
        assert second == first + 1

    def test_foreign_draft_is_404(self, api_client: Harness, seeded) -> None:
        slug = seeded["draft"]["slug"]
        assert api_client.client.get(f"/api/v1/articles/{slug}").status_code == 404
        resp = api_client.client.get(f"/api/v1/articles/{slug}", headers=api_client.headers("admin2"))
        assert resp.status_code == 200

    def test_own_draft_is_visible(self, api_client: Harness, seeded) -> None:
        slug = seeded["draft"]["slug"]
        resp = api_client.client.get(f"/api/v1/articles/{slug}", headers=api_client.headers("writer"))
        assert resp.status_code == 200
        assert resp.json()["views"] == 0

    def test_unknown_slug_is_404(self, api_client: Harness) -> None:
        resp = api_client.client.get("/api/v1/articles/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"


class TestCreate:
    def test_requires_session(self, api_client: Harness) -> None:
        resp = api_client.client.post("/api/v1/articles", json={"title": "x", "content": "y"})
        assert resp.status_code == 401

    def test_slug_is_derived_and_deduplicated(self, api_client: Harness) -> None:
        first = _create(api_client, "writer", title="Café Society!")
        second = _create(api_client, "writer", title="Cafe society")
        assert first["slug"] == "cafe-society"
        assert second["slug"] == "cafe-society-1"

    def test_author_is_the_caller(self, api_client: Harness) -> None:
        data = _create(api_client, "editor", title="Byline")
        assert data["author_id"] == api_client.accounts["editor"].id
        assert data["author"]["username"] == "editor"
        assert data["status"] == "DRAFT"
        assert data["published_at"] is None

    def test_bad_image_url_is_rejected(self, api_client: Harness) -> None:
        resp = api_client.client.post(
            "/api/v1/articles",
            json={"title": "Img", "content": "x", "featured_image": "javascript:alert(1)"},
            headers=api_client.headers("writer"),
        )
        assert resp.status_code == 400


class TestUpdateAndDelete:
    def test_author_can_publish(self, api_client: Harness) -> None:
        article = _create(api_client, "writer", title="Soon Public")
        resp = api_client.client.put(
            f"/api/v1/articles/{article['slug']}", json={"status": "PUBLISHED"}, headers=api_client.headers("writer")
        )
        assert resp.status_code == 200
        assert resp.json()["published_at"] is not None

    def test_other_user_cannot_edit_published(self, api_client: Harness, seeded) -> None:
        intruder = api_client.add_account("intruder")
        resp = api_client.client.put(
            f"/api/v1/articles/{seeded['public']['slug']}",
            json={"title": "Defaced"},
            headers=api_client.headers(intruder.username),
        )
        assert resp.status_code == 403

    def test_other_user_cannot_find_foreign_draft(self, api_client: Harness, seeded) -> None:
        api_client.add_account("snoop")
        resp = api_client.client.put(
            f"/api/v1/articles/{seeded['editor_draft']['slug']}", json={"title": "Mine"}, headers=api_client.headers("snoop")
        )
        assert resp.status_code == 404

    def test_editor_can_edit_any_article(self, api_client: Harness) -> None:
        article = _create(api_client, "writer", title="Typo Riddled")
        resp = api_client.client.put(
            f"/api/v1/articles/{article['slug']}", json={"title": "Typo Free"}, headers=api_client.headers("editor")
        )
        assert resp.status_code == 200
        assert resp.json()["title"] == "Typo Free"

    def test_empty_update_is_rejected(self, api_client: Harness) -> None:
        article = _create(api_client, "writer", title="Nothing Changes")
        resp = api_client.client.put(f"/api/v1/articles/{article['slug']}", json={}, headers=api_client.headers("writer"))
        assert resp.status_code == 400

    def test_editor_cannot_delete_foreign_article(self, api_client: Harness) -> None:
        article = _create(api_client, "writer", title="Keep Me", status="PUBLISHED")
        resp = api_client.client.delete(f"/api/v1/articles/{article['slug']}", headers=api_client.headers("editor"))
        assert resp.status_code == 403

    def test_author_can_delete(self, api_client: Harness) -> None:
        article = _create(api_client, "writer", title="Regrettable")
        resp = api_client.client.delete(f"/api/v1/articles/{article['slug']}", headers=api_client.headers("writer"))
        assert resp.status_code == 204
        assert api_client.articles.get_by_slug(article["slug"]) is None

    def test_admin_can_delete_any(self, api_client: Harness) -> None:
        article = _create(api_client, "editor", title="Off Topic", status="PUBLISHED")
        resp = api_client.client.delete(f"/api/v1/articles/{article['slug']}", headers=api_client.headers("admin"))
        assert resp.status_code == 204

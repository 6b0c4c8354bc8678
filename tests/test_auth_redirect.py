"""
tests/test_auth_redirect.py -- Integration tests for the route guard redirect chain.

These tests exercise auth.guard end-to-end through the real ASGI stack
using the web_client fixture (follow_redirects=False). We assert on redirect
Location headers directly -- following the redirect would hide them.

Coverage:
  - Unauthenticated -> 302 /auth/login?callbackUrl={path}&message=...
  - Insufficient role -> 302 /auth/login?message=Admin access required, and
    the login page shows that message to the signed-in visitor
  - Stale ADMIN session -> 302 with the expiry message and the cookie deleted
  - Suspended, tampered or stale-credential sessions count as no session
  - Valid sessions pass through; the JSON API is never redirected
  - Demo surface: cookie flag only, login page bounces a flagged visitor
  - The guard's store lookup runs in a worker thread, off the event loop
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

import api.main
from auth.guard import (
    ADMIN_LOGIN_MESSAGE,
    INSUFFICIENT_ROLE_MESSAGE,
    LOGIN_MESSAGE,
    SESSION_EXPIRED_MESSAGE,
    guard_request,
)
from auth.models import Status
from auth.tokens import SESSION_COOKIE
from conftest import Harness


def _location(resp) -> tuple[str, dict[str, list[str]]]:
    parsed = urlparse(resp.headers["location"])
    return parsed.path, parse_qs(parsed.query)


def _sign_in(h: Harness, who: str, issued_at=None) -> None:
    h.client.cookies.set(SESSION_COOKIE, h.token(who, issued_at))


class TestUnauthenticated:
    @pytest.mark.parametrize("path", ["/admin", "/admin/users", "/admin/articles"])
    def test_admin_area_redirects_with_callback(self, web_client: Harness, path: str) -> None:
        resp = web_client.client.get(path)
        assert resp.status_code == 302
        location, query = _location(resp)
        assert location == "/auth/login"
        assert query["callbackUrl"] == [path]
        assert query["message"] == [ADMIN_LOGIN_MESSAGE]

    def test_protected_page_uses_generic_message(self, web_client: Harness) -> None:
        resp = web_client.client.get("/profile")
        _location_path, query = _location(resp)
        assert query["callbackUrl"] == ["/profile"]
        assert query["message"] == [LOGIN_MESSAGE]

    def test_tampered_cookie_is_no_session(self, web_client: Harness) -> None:
        web_client.client.cookies.set(SESSION_COOKIE, web_client.token("admin") + "x")
        resp = web_client.client.get("/admin")
        assert resp.status_code == 302
        assert _location(resp)[1]["message"] == [ADMIN_LOGIN_MESSAGE]

    def test_suspended_identity_is_no_session(self, web_client: Harness) -> None:
        target = web_client.add_account("benched")
        _sign_in(web_client, "benched")
        web_client.identities.update_identity(target.id, status=Status.SUSPENDED)
        resp = web_client.client.get("/profile")
        assert resp.status_code == 302
        assert _location(resp)[1]["message"] == [LOGIN_MESSAGE]

    def test_public_pages_pass(self, web_client: Harness) -> None:
        assert web_client.client.get("/").status_code == 200
        assert web_client.client.get("/auth/login").status_code == 200

    def test_api_is_not_redirected(self, web_client: Harness) -> None:
        resp = web_client.client.get("/api/v1/admin/users")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"


class TestRoleAndExpiry:
    @pytest.mark.parametrize("who", ["writer", "editor"])
    def test_lower_role_is_sent_to_login_without_callback(self, web_client: Harness, who: str) -> None:
        _sign_in(web_client, who)
        resp = web_client.client.get("/admin")
        assert resp.status_code == 302
        location, query = _location(resp)
        assert location == "/auth/login"
        assert query["message"] == [INSUFFICIENT_ROLE_MESSAGE]
        assert "callbackUrl" not in query

    @pytest.mark.parametrize("who", ["writer", "editor"])
    def test_lower_role_sees_the_reason_on_the_login_page(self, web_client: Harness, who: str) -> None:
        _sign_in(web_client, who)
        guarded = web_client.client.get("/admin")
        login_page = web_client.client.get(guarded.headers["location"])
        assert login_page.status_code == 200
        assert INSUFFICIENT_ROLE_MESSAGE in login_page.text

    def test_fresh_admin_session_passes(self, web_client: Harness) -> None:
        _sign_in(web_client, "admin")
        resp = web_client.client.get("/admin")
        assert resp.status_code == 200
        assert "Administration" in resp.text

    def test_admin_session_under_ceiling_passes(self, web_client: Harness) -> None:
        _sign_in(web_client, "admin", datetime.now(timezone.utc) - timedelta(hours=1, minutes=59))
        assert web_client.client.get("/admin/users").status_code == 200

    def test_stale_admin_session_expires(self, web_client: Harness) -> None:
        _sign_in(web_client, "admin", datetime.now(timezone.utc) - timedelta(hours=2, minutes=1))
        resp = web_client.client.get("/admin/users")
        assert resp.status_code == 302
        _path, query = _location(resp)
        assert query["callbackUrl"] == ["/admin/users"]
        assert query["message"] == [SESSION_EXPIRED_MESSAGE]
        set_cookies = [v for k, v in resp.headers.multi_items() if k.lower() == "set-cookie"]
        assert any(c.startswith(f"{SESSION_COOKIE}=") and "max-age=0" in c.lower() for c in set_cookies)

    def test_old_user_session_has_no_ceiling(self, web_client: Harness) -> None:
        _sign_in(web_client, "writer", datetime.now(timezone.utc) - timedelta(hours=5))
        resp = web_client.client.get("/profile")
        assert resp.status_code == 200
        assert "writer@example.com" in resp.text


class TestDemoGate:
    def test_studio_without_flag_goes_to_demo_login(self, web_client: Harness) -> None:
        resp = web_client.client.get("/studio")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"

    def test_studio_with_flag(self, web_client: Harness) -> None:
        web_client.client.cookies.set("authenticated", "true")
        assert web_client.client.get("/studio").status_code == 200

    def test_flagged_visitor_skips_demo_login(self, web_client: Harness) -> None:
        web_client.client.cookies.set("authenticated", "true")
        resp = web_client.client.get("/login")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/studio"

    def test_session_token_does_not_open_studio(self, web_client: Harness) -> None:
        _sign_in(web_client, "admin")
        assert web_client.client.get("/studio").status_code == 302


class TestGuardExecution:
    def test_guard_lookup_runs_in_worker_thread(self, web_client: Harness, monkeypatch) -> None:
        calls: list[bool] = []

        def recording_guard(request):
            try:
                asyncio.get_running_loop()
                calls.append(True)
            except RuntimeError:
                calls.append(False)
            return guard_request(request)

        monkeypatch.setattr(api.main, "guard_request", recording_guard)
        _sign_in(web_client, "writer")
        assert web_client.client.get("/profile").status_code == 200
        assert calls == [False]

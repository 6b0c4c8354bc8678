"""
tests/test_password_reset.py -- Password reset flow (auth/reset.py + API routes).

Coverage:
  - forgot-password answers identically for known and unknown emails
  - only the SHA-256 digest of the token is stored
  - a token redeems once; expired and unknown tokens are rejected
  - redemption ends sessions issued before the reset
  - banned identities get no link and cannot redeem
  - webhook delivery failures are logged, not raised
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import requests

from auth.models import Identity, Status
from auth.reset import (
    RESET_ACKNOWLEDGMENT,
    WebhookResetLinkSender,
    build_reset_url,
    redeem_password_reset,
    request_password_reset,
)
from auth.store import IdentityStore
from auth.tokens import hash_password, hash_reset_token, timestamp_us, verify_password
from core.errors import AccountDisabled, ResetTokenRejected
from conftest import Harness, RecordingResetSender


@pytest.fixture
def store():
    store = IdentityStore("sqlite://")
    store.create_identity(Identity(email="kim@example.com", username="kim", hashed_password=hash_password("Old1Password")))
    yield store
    store.close()


class TestResetService:
    def test_unknown_email_gets_same_answer_and_no_link(self, store):
        sender = RecordingResetSender()
        assert request_password_reset(store, "nobody@example.com", sender) == RESET_ACKNOWLEDGMENT
        assert sender.sent == []

    def test_known_email_gets_link_and_digest_is_stored(self, store):
        sender = RecordingResetSender()
        assert request_password_reset(store, "KIM@example.com", sender) == RESET_ACKNOWLEDGMENT
        identity, url = sender.sent[0]
        assert identity.username == "kim"
        assert url == build_reset_url(sender.last_token)
        stored = store.get_by_email("kim@example.com")
        assert stored.reset_token_hash == hash_reset_token(sender.last_token)
        assert stored.reset_token_hash != sender.last_token

    def test_redeem_once(self, store):
        sender = RecordingResetSender()
        request_password_reset(store, "kim@example.com", sender)
        token = sender.last_token

        redeemed_at = datetime.now(timezone.utc)
        identity = redeem_password_reset(store, token, "New1Password", now=redeemed_at)
        updated = store.get_by_id(identity.id)
        assert verify_password("New1Password", updated.hashed_password)
        assert updated.reset_token_hash is None
        assert updated.credentials_changed_at == timestamp_us(redeemed_at)

        with pytest.raises(ResetTokenRejected):
            redeem_password_reset(store, token, "Another1Password")

    def test_new_request_invalidates_previous_token(self, store):
        sender = RecordingResetSender()
        request_password_reset(store, "kim@example.com", sender)
        first = sender.last_token
        request_password_reset(store, "kim@example.com", sender)
        with pytest.raises(ResetTokenRejected):
            redeem_password_reset(store, first, "New1Password")

    def test_expired_token(self, store):
        sender = RecordingResetSender()
        past = datetime.now(timezone.utc) - timedelta(days=1)
        request_password_reset(store, "kim@example.com", sender, now=past)
        with pytest.raises(ResetTokenRejected) as excinfo:
            redeem_password_reset(store, sender.last_token, "New1Password")
        assert excinfo.value.reason == "expired"
        assert excinfo.value.code == "invalid_reset_token"

    def test_unknown_token(self, store):
        with pytest.raises(ResetTokenRejected):
            redeem_password_reset(store, "f" * 64, "New1Password")

    def test_banned_identity(self, store):
        sender = RecordingResetSender()
        request_password_reset(store, "kim@example.com", sender)
        kim = store.get_by_email("kim@example.com")
        store.update_identity(kim.id, status=Status.BANNED)
        with pytest.raises(AccountDisabled):
            redeem_password_reset(store, sender.last_token, "New1Password")
        sender.sent.clear()
        request_password_reset(store, "kim@example.com", sender)
        assert sender.sent == []


class TestWebhookSender:
    def test_posts_link(self):
        session = MagicMock()
        sender = WebhookResetLinkSender("https://mailer.example/hook", session=session)
        sender.send(Identity(id="i1", email="kim@example.com", username="kim"), "https://site/reset?token=abc")
        _args, kwargs = session.post.call_args
        assert kwargs["json"] == {
            "email": "kim@example.com",
            "username": "kim",
            "reset_url": "https://site/reset?token=abc",
        }

    def test_delivery_failure_is_logged(self, caplog):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("down")
        sender = WebhookResetLinkSender("https://mailer.example/hook", session=session)
        with caplog.at_level(logging.ERROR, logger="inkpost.auth.reset"):
            sender.send(Identity(id="i1", email="kim@example.com", username="kim"), "https://site/reset")
        assert "delivery failed" in caplog.text


class TestResetApi:
    def test_forgot_password_is_enumeration_safe(self, api_client: Harness) -> None:
        known = api_client.client.post("/api/v1/auth/forgot-password", json={"email": "writer@example.com"})
        unknown = api_client.client.post("/api/v1/auth/forgot-password", json={"email": "ghost@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json() == {"message": RESET_ACKNOWLEDGMENT}

    def test_full_reset_ends_old_sessions(self, api_client: Harness) -> None:
        api_client.add_account("amnesiac")
        old_headers = api_client.headers("amnesiac", issued_at=datetime.now(timezone.utc) - timedelta(minutes=5))
        api_client.client.post("/api/v1/auth/forgot-password", json={"email": "amnesiac@example.com"})
        token = api_client.reset_sender.last_token

        resp = api_client.client.post("/api/v1/auth/reset-password", json={"token": token, "password": "Remember3d"})
        assert resp.status_code == 200
        assert resp.json()["message"] == "Password has been reset successfully."

        assert api_client.client.get("/api/v1/auth/me", headers=old_headers).status_code == 401
        login = api_client.client.post(
            "/api/v1/auth/login", json={"email": "amnesiac@example.com", "password": "Remember3d"}
        )
        assert login.status_code == 200

        again = api_client.client.post("/api/v1/auth/reset-password", json={"token": token, "password": "Remember4d"})
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "invalid_reset_token"

    def test_weak_password_is_validation_not_token_error(self, api_client: Harness) -> None:
        resp = api_client.client.post("/api/v1/auth/reset-password", json={"token": "abc", "password": "weak"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_failed"

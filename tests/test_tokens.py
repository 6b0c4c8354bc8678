"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Coverage:
  - bcrypt round trip and rejection of malformed hashes
  - password strength policy messages
  - session token issue / decode, tampering, role and display-field claims
  - refresh keeps role and issuance time
  - disabled identities cannot obtain a token
  - authenticate_identity() returns None for unknown email, federated-only
    accounts and wrong passwords
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.models import Identity, Role, Status
from auth.store import IdentityStore
from auth.tokens import (
    authenticate_identity,
    decode_session_token,
    hash_password,
    hash_reset_token,
    issue_session_token,
    password_policy_error,
    refresh_session_token,
    timestamp_us,
    verify_password,
)
from core.config import get_settings
from core.errors import AccountDisabled


def _identity(**overrides) -> Identity:
    values = dict(
        id="abc123",
        email="ada@example.com",
        username="ada",
        name="Ada",
        role=Role.EDITOR,
        status=Status.ACTIVE,
    )
    values.update(overrides)
    return Identity(**values)


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("Corr3ctHorse")
        assert hashed != "Corr3ctHorse"
        assert verify_password("Corr3ctHorse", hashed)
        assert not verify_password("corr3cthorse", hashed)

    def test_garbage_hash_is_a_mismatch(self):
        assert not verify_password("anything", "not-a-bcrypt-hash")

    @pytest.mark.parametrize(
        ("password", "fragment"),
        [
            ("Sh0rt", "at least 8"),
            ("alllowercase1", "uppercase"),
            ("ALLUPPERCASE1", "lowercase"),
            ("NoDigitsHere", "number"),
            ("A1a" + "x" * 200, "at most 128"),
        ],
    )
    def test_policy_rejections(self, password, fragment):
        assert fragment in password_policy_error(password)

    def test_policy_accepts_strong_password(self):
        assert password_policy_error("Sup3rSecret") is None


class TestSessionTokens:
    def test_round_trip_carries_claims(self):
        issued = datetime.now(timezone.utc).replace(microsecond=0)
        token = issue_session_token(_identity(), issued_at=issued)
        claims = decode_session_token(token)
        assert claims is not None
        assert claims.subject_id == "abc123"
        assert claims.role is Role.EDITOR
        assert claims.username == "ada"
        assert claims.name == "Ada"
        assert claims.issued_at == issued

    def test_issuance_keeps_microseconds(self):
        issued = (datetime.now(timezone.utc) - timedelta(minutes=1)).replace(microsecond=123456)
        claims = decode_session_token(issue_session_token(_identity(), issued_at=issued))
        assert claims.issued_at == issued
        assert timestamp_us(claims.issued_at) == timestamp_us(issued)

    def test_tampered_token_is_rejected(self):
        token = issue_session_token(_identity())
        assert decode_session_token(token[:-2] + ("AA" if not token.endswith("AA") else "BB")) is None

    def test_foreign_key_is_rejected(self):
        payload = {"sub": "abc123", "role": "ADMIN", "iat": int(datetime.now(timezone.utc).timestamp())}
        forged = jwt.encode(payload, "x" * 32, algorithm="HS256")
        assert decode_session_token(forged) is None

    def test_unknown_role_is_rejected(self):
        now = int(datetime.now(timezone.utc).timestamp())
        payload = {"sub": "abc123", "role": "ROOT", "iat": now, "iat_us": now * 1_000_000, "exp": now + 60}
        token = jwt.encode(payload, get_settings().secret_key, algorithm="HS256")
        assert decode_session_token(token) is None

    def test_past_exp_is_rejected(self):
        long_ago = datetime.now(timezone.utc) - timedelta(seconds=get_settings().token_expire_seconds + 60)
        token = issue_session_token(_identity(), issued_at=long_ago)
        assert decode_session_token(token) is None

    @pytest.mark.parametrize("status", [Status.SUSPENDED, Status.BANNED])
    def test_disabled_identity_gets_no_token(self, status):
        with pytest.raises(AccountDisabled):
            issue_session_token(_identity(status=status))

    def test_refresh_keeps_role_and_issuance(self):
        issued = datetime.now(timezone.utc) - timedelta(minutes=30)
        claims = decode_session_token(issue_session_token(_identity(role=Role.ADMIN), issued_at=issued))
        refreshed = decode_session_token(refresh_session_token(claims, name="Countess"))
        assert refreshed.name == "Countess"
        assert refreshed.username == "ada"
        assert refreshed.role is Role.ADMIN
        assert refreshed.issued_at == claims.issued_at


class TestAuthenticateIdentity:
    @pytest.fixture
    def store(self):
        store = IdentityStore("sqlite://")
        store.create_identity(
            Identity(email="grace@example.com", username="grace", hashed_password=hash_password("Navy1906x"))
        )
        store.create_identity(Identity(email="fed@example.com", username="fed", oauth_provider="github"))
        yield store
        store.close()

    def test_correct_password(self, store):
        identity = authenticate_identity(store, "Grace@Example.com", "Navy1906x")
        assert identity is not None
        assert identity.username == "grace"

    def test_wrong_password(self, store):
        assert authenticate_identity(store, "grace@example.com", "Navy1906y") is None

    def test_unknown_email(self, store):
        assert authenticate_identity(store, "nobody@example.com", "Navy1906x") is None

    def test_federated_only_account(self, store):
        assert authenticate_identity(store, "fed@example.com", "") is None


def test_reset_token_digest_is_stable_sha256():
    digest = hash_reset_token("abc")
    assert digest == hash_reset_token("abc")
    assert len(digest) == 64
    assert digest != "abc"

"""
auth/reset.py -- Two-phase password reset.

Request phase: request_password_reset() always returns RESET_ACKNOWLEDGMENT,
whether or not the email belongs to anyone (anti-enumeration). Only an
existing identity that is not banned gets a token; its link is handed to a
ResetLinkSender. Issuing a new token overwrites the previous one.

Redemption phase: redeem_password_reset() looks the token up by digest,
checks expiry and status, then hashes the new password and clears the token
in a single conditional UPDATE. It also stamps credentials_changed_at, which
ends every session issued before the reset (see auth/dependencies.py).

Delivery is a collaborator. LoggingResetLinkSender is the default;
WebhookResetLinkSender POSTs the link to RESET_WEBHOOK_URL for an external
mailer to pick up.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol
from urllib.parse import urlencode

import requests

from auth.models import Identity, Status
from auth.store import IdentityStore
from auth.tokens import generate_reset_token, hash_password, hash_reset_token, reset_token_expiry, timestamp_us
from core.config import get_settings
from core.errors import AccountDisabled, ResetTokenRejected

logger = logging.getLogger("inkpost.auth.reset")

RESET_ACKNOWLEDGMENT = "If an account with that email exists, we've sent you a password reset link."

_WEBHOOK_TIMEOUT_SECONDS = 10


class ResetLinkSender(Protocol):
    def send(self, identity: Identity, reset_url: str) -> None: ...


class LoggingResetLinkSender:
    """Log reset links. The link itself is only logged in debug mode."""

    def send(self, identity: Identity, reset_url: str) -> None:
        if get_settings().debug:
            logger.info("Password reset link for %s: %s", identity.email, reset_url)
        else:
            logger.info("Password reset link issued for identity %s", identity.id)


class WebhookResetLinkSender:
    """POST {"email", "username", "reset_url"} to a delivery webhook."""

    def __init__(self, url: str, session: Optional[requests.Session] = None) -> None:
        self.url = url
        self._session = session or requests.Session()
        self._session.max_redirects = 3

    def send(self, identity: Identity, reset_url: str) -> None:
        payload = {"email": identity.email, "username": identity.username, "reset_url": reset_url}
        try:
            resp = self._session.post(self.url, json=payload, timeout=_WEBHOOK_TIMEOUT_SECONDS)
            resp.raise_for_status()
        except requests.RequestException:
            # The caller's response must stay identical either way, so a
            # delivery failure is logged rather than surfaced.
            logger.exception("Reset link delivery failed for identity %s", identity.id)


def default_sender() -> ResetLinkSender:
    url = get_settings().reset_webhook_url
    if url:
        return WebhookResetLinkSender(url)
    return LoggingResetLinkSender()


def build_reset_url(raw_token: str) -> str:
    base = get_settings().app_base_url.rstrip("/")
    return f"{base}/auth/reset-password?{urlencode({'token': raw_token})}"


def request_password_reset(
    store: IdentityStore,
    email: str,
    sender: ResetLinkSender,
    now: Optional[datetime] = None,
) -> str:
    """Issue a reset token if the email belongs to a usable identity.

    Returns the same acknowledgment string in every case.
    """
    identity = store.get_by_email(email)
    if identity is not None and identity.status is not Status.BANNED:
        raw_token = generate_reset_token()
        store.set_reset_token(identity.id, hash_reset_token(raw_token), reset_token_expiry(now))
        sender.send(identity, build_reset_url(raw_token))
    return RESET_ACKNOWLEDGMENT


def redeem_password_reset(
    store: IdentityStore,
    raw_token: str,
    new_password: str,
    now: Optional[datetime] = None,
) -> Identity:
    """Replace the password of the identity holding raw_token.

    Raises ResetTokenRejected for unknown, expired or already-consumed
    tokens and AccountDisabled for banned identities. The new password must
    already have passed validation.
    """
    now = now or datetime.now(timezone.utc)
    token_hash = hash_reset_token(raw_token)
    identity = store.get_by_reset_token_hash(token_hash)
    if identity is None:
        raise ResetTokenRejected("unknown")

    expiry = identity.reset_token_expiry
    if expiry is None or datetime.fromisoformat(expiry) <= now:
        logger.info("Expired reset token presented for identity %s", identity.id)
        raise ResetTokenRejected("expired")

    if identity.status is Status.BANNED:
        raise AccountDisabled("Account has been banned.")

    consumed = store.consume_reset_token(
        identity.id,
        token_hash,
        hash_password(new_password),
        timestamp_us(now),
    )
    if not consumed:
        raise ResetTokenRejected("unknown")
    logger.info("Password reset completed for identity %s", identity.id)
    return identity

"""
auth/oauth.py -- Authlib OAuth provider configuration and federated sign-in.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered.

Federated sign-in (resolve_federated_identity):
  1. Linked account (provider, subject) -> that identity.
  2. Existing identity with the same verified email -> link it.
  3. Otherwise create a new identity: role USER, status ACTIVE, username
     derived from the provider login or the email local part and made unique.
  Suspended or banned identities are refused with AccountDisabled.

Security notes:
  [H1] Email verification is mandatory. get_oauth_user_info() raises
       ValueError if the provider does not confirm the email is verified.
       Linking by email would otherwise let an attacker claim an account by
       adding the victim's address to their provider profile.

  OAuth state (CSRF protection) is handled by authlib via Starlette
  SessionMiddleware.

Layer rule: no imports from api/, web/ or content/.
"""

from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass
from typing import Optional

from authlib.integrations.starlette_client import OAuth

from auth.models import Identity, Role, Status
from auth.store import IdentityStore
from core.config import get_settings
from core.errors import AccountDisabled, Conflict

logger = logging.getLogger("inkpost.auth.oauth")

_USERNAME_MAX = 50
_USERNAME_ATTEMPTS = 20

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

if _cfg.github_client_id and _cfg.github_client_secret:
    oauth.register(
        name="github",
        client_id=_cfg.github_client_id,
        client_secret=_cfg.github_client_secret,
        access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
        authorize_url="https://github.com/login/oauth/authorize",
        api_base_url="https://api.github.com/",
        client_kwargs={"scope": "read:user user:email"},
    )
    logger.info("GitHub OAuth provider registered")

if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every configured provider."""
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.github_client_id and cfg.github_client_secret:
        providers.append({"name": "github", "label": "GitHub"})
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    return providers


# ---------------------------------------------------------------------------
# Provider profile extraction [H1]
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FederatedProfile:
    email: str
    subject: str
    login: Optional[str] = None
    name: Optional[str] = None
    image: Optional[str] = None


async def get_oauth_user_info(client, provider: str, token: dict) -> FederatedProfile:
    """Normalize a provider token response into a FederatedProfile.

    Raises ValueError if a verified email cannot be confirmed.
    """
    if provider == "github":
        return await _get_github_user_info(client, token)
    if provider == "google":
        return _get_google_user_info(token)
    raise ValueError(f"Unknown OAuth provider: {provider!r}")


async def _get_github_user_info(client, token: dict) -> FederatedProfile:
    """GitHub needs two calls: /user for the stable id, /user/emails for the verified email."""
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()

    email: Optional[str] = None
    for entry in emails_resp.json():
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break
    if not email:
        raise ValueError("GitHub OAuth: no primary verified email found.")

    return FederatedProfile(
        email=email,
        subject=str(profile["id"]),
        login=profile.get("login"),
        name=profile.get("name"),
        image=profile.get("avatar_url"),
    )


def _get_google_user_info(token: dict) -> FederatedProfile:
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")
    if not userinfo.get("email_verified", False):
        raise ValueError("google OAuth: email is not verified.")
    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError("google OAuth: missing email or sub claim in userinfo")
    return FederatedProfile(
        email=email,
        subject=subject,
        name=userinfo.get("name"),
        image=userinfo.get("picture"),
    )


# ---------------------------------------------------------------------------
# Federated sign-in
# ---------------------------------------------------------------------------


def derive_username(profile: FederatedProfile) -> str:
    """Base username from the provider login, else the email local part."""
    base = profile.login or profile.email.split("@")[0]
    base = re.sub(r"[^A-Za-z0-9_.-]", "", base)[: _USERNAME_MAX - 8]
    return base if len(base) >= 3 else f"user{base}"


def _username_candidates(base: str):
    yield base
    for n in range(2, _USERNAME_ATTEMPTS + 1):
        yield f"{base}_{n}"
    yield f"{base}_{secrets.token_hex(3)}"


def resolve_federated_identity(store: IdentityStore, provider: str, profile: FederatedProfile) -> Identity:
    """Find, link or create the identity for a federated sign-in.

    Username uniqueness is settled by the store's UNIQUE constraint: each
    candidate is inserted directly and the next one is tried on a username
    Conflict, so two concurrent sign-ins cannot end up with the same name.
    """
    identity = store.get_by_oauth(provider, profile.subject)

    if identity is None:
        identity = store.get_by_email(profile.email)
        if identity is not None and identity.oauth_subject is None:
            store.link_oauth(identity.id, provider, profile.subject)

    if identity is not None:
        if identity.status is not Status.ACTIVE:
            logger.warning("Federated sign-in refused for disabled identity %s", identity.id)
            raise AccountDisabled()
        return identity

    base = derive_username(profile)
    for candidate in _username_candidates(base):
        new_identity = Identity(
            email=profile.email,
            username=candidate,
            name=profile.name,
            image=profile.image,
            role=Role.USER,
            status=Status.ACTIVE,
            oauth_provider=provider,
            oauth_subject=profile.subject,
        )
        try:
            identity_id = store.create_identity(new_identity)
        except Conflict as exc:
            if exc.field == "username":
                continue
            raise
        logger.info("New user signed up via %s: %s", provider, profile.email)
        return store.get_by_id(identity_id)
    raise Conflict("Could not allocate a unique username.", field="username")

"""
api/routes/v1/users.py -- Self-service account endpoints.

Routes:
  PUT /api/v1/user/profile          -- update name / email / username / image
  PUT /api/v1/user/change-password  -- verify current password, set a new one

Both require a session. Neither can change role or status; those belong to
the admin endpoints.

Session handling:
  A profile update re-signs the caller's token with the new display fields.
  Role and issuance time are carried over, so the elevated-session ceiling
  keeps counting from the original login.

  A password change stamps credentials_changed_at, which ends every other
  session of the identity. The caller has just proven the current password,
  so it receives a freshly issued cookie.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import IdentityResponse, MessageResponse, PasswordChange, ProfileUpdate
from auth.dependencies import get_session
from auth.models import SessionContext
from auth.store import IdentityStore
from auth.tokens import (
    hash_password,
    issue_session_token,
    refresh_session_token,
    set_auth_cookie,
    timestamp_us,
    verify_password,
)
from core.errors import ValidationFailed

logger = logging.getLogger("inkpost.api.users")

router = APIRouter()


@router.put("/user/profile", response_model=IdentityResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    session: SessionContext = Depends(get_session),
) -> JSONResponse:
    store: IdentityStore = request.app.state.identity_store
    fields = body.model_dump(exclude_unset=True, exclude_none=True)
    if not fields:
        raise ValidationFailed("No fields to update.")

    store.update_identity(session.actor_id, **fields)
    updated = store.get_by_id(session.actor_id)

    token = refresh_session_token(
        session.claims,
        username=updated.username,
        name=updated.name,
        image=updated.image,
    )
    resp = JSONResponse(content=IdentityResponse.from_identity(updated).model_dump(mode="json"))
    set_auth_cookie(resp, token)
    return resp


@router.put("/user/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChange,
    session: SessionContext = Depends(get_session),
) -> JSONResponse:
    store: IdentityStore = request.app.state.identity_store
    identity = session.identity
    if identity.hashed_password is None:
        raise ValidationFailed("This account signs in through an external provider and has no password.")
    if not verify_password(body.current_password, identity.hashed_password):
        raise ValidationFailed("Current password is incorrect.")

    now = datetime.now(timezone.utc)
    store.update_identity(
        identity.id,
        hashed_password=hash_password(body.new_password),
        credentials_changed_at=timestamp_us(now),
    )
    logger.info("Password changed for identity %s", identity.id)

    resp = JSONResponse(content={"message": "Password updated successfully."})
    # The replacement session must postdate the stamp it is checked against.
    set_auth_cookie(
        resp, issue_session_token(store.get_by_id(identity.id), issued_at=now + timedelta(microseconds=1))
    )
    return resp

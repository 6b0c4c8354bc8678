"""
api/routes/v1/demo.py -- Demo surface gate.

Routes:
  POST /api/v1/demo/login   -- check the demo credentials; set authenticated=true
  POST /api/v1/demo/logout  -- clear the flag

The demo surface is gated by a plain cookie flag, independent of the JWT
session (see auth/guard.py evaluate_demo). The credentials come from
DEMO_LOGIN_EMAIL / DEMO_LOGIN_PASSWORD; when either is unset the gate cannot
be opened through this endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from api.models import DemoLoginRequest, MessageResponse
from auth.guard import clear_demo_cookie, demo_credentials_match, set_demo_cookie
from core.config import get_settings
from core.errors import BadCredentials, NotFound

router = APIRouter()


@router.post("/demo/login", response_model=MessageResponse)
def demo_login(body: DemoLoginRequest) -> JSONResponse:
    cfg = get_settings()
    if not cfg.demo_login_email or not cfg.demo_login_password:
        raise NotFound("Demo login is not configured.")
    if not demo_credentials_match(body.email, body.password, cfg):
        raise BadCredentials()
    resp = JSONResponse(content={"message": "Demo access granted."})
    set_demo_cookie(resp, cfg)
    return resp


@router.post("/demo/logout", response_model=MessageResponse)
def demo_logout() -> JSONResponse:
    resp = JSONResponse(content={"message": "Demo access revoked."})
    clear_demo_cookie(resp, get_settings())
    return resp

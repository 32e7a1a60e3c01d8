"""Ceremony routes for registration and authentication options/verify."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from passkeyrp.web.auth.session import optional_user

if TYPE_CHECKING:
    from passkeyrp.web.auth.passkey_service import PasskeyService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])


def get_passkey_service(request: Request) -> PasskeyService:
    return request.app.state.passkey_service


class HandleRequest(BaseModel):
    handle: str = Field(min_length=1, max_length=64)


class RegisterVerifyRequest(BaseModel):
    user_id: str = Field(min_length=1)
    response: dict[str, Any]


class LoginVerifyRequest(BaseModel):
    handle: str = Field(min_length=1, max_length=64)
    response: dict[str, Any]


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post("/register/options")
async def register_options(
    body: HandleRequest,
    request: Request,
    session_user_id: str | None = Depends(optional_user),
) -> dict[str, Any]:
    """Issue a registration challenge and creation options."""
    service = get_passkey_service(request)
    return await service.begin_registration(body.handle, authenticated_user_id=session_user_id)


@router.post("/register/verify")
async def register_verify(body: RegisterVerifyRequest, request: Request) -> dict[str, Any]:
    """Verify a registration response and store the passkey."""
    service = get_passkey_service(request)
    await service.complete_registration(body.user_id, body.response)
    return {"verified": True, "message": "Passkey registered successfully"}


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@router.post("/login/options")
async def login_options(body: HandleRequest, request: Request) -> dict[str, Any]:
    """Issue an authentication challenge and the user's allow-list."""
    service = get_passkey_service(request)
    return await service.begin_authentication(body.handle)


@router.post("/login/verify")
async def login_verify(body: LoginVerifyRequest, request: Request) -> dict[str, Any]:
    """Verify an assertion and return a session token."""
    service = get_passkey_service(request)
    result = await service.complete_authentication(body.handle, body.response)
    return {
        "verified": True,
        "message": "Authentication successful",
        "token": result.token,
        "user_id": result.user_id,
    }

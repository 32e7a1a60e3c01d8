"""Session-protected account routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from passkeyrp.models.database import _utc_now
from passkeyrp.web.auth.session import require_user

router = APIRouter(prefix="/api", tags=["account"])


@router.get("/me")
async def me(request: Request, user_id: str = Depends(require_user)) -> dict[str, Any]:
    """Return the authenticated user."""
    user = await request.app.state.user_repo.get_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return {
        "authenticated": True,
        "user_id": user.id,
        "handle": user.handle,
        "timestamp": _utc_now().isoformat(),
    }

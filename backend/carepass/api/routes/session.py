"""
Session routes.

Endpoints:
    POST   /session/login  — Exchange an identity-provider ID token for the session cookie
    GET    /session/login  — Describe the current session
    DELETE /session/login  — Log out (clear the cookie)
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.config import get_settings
from carepass.db.postgres import get_db
from carepass.exceptions import Unauthorized
from carepass.models.user import User
from carepass.api.middleware.auth import (
    get_current_user,
    decode_identity_token,
    create_session_token,
)

router = APIRouter()
settings = get_settings()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class SessionLoginRequest(BaseModel):
    idToken: str


def _session_payload(user: User) -> dict:
    return {
        "uid": user.id,
        "email": user.email,
        "role": user.role.value,
        "hospitalId": user.hospital_id,
        "name": user.full_name,
        "setupComplete": user.setup_complete,
        "requirePasswordReset": user.require_password_reset,
    }


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/session/login")
async def login(
    payload: SessionLoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    claims = decode_identity_token(payload.idToken)
    result = await db.execute(select(User).where(User.id == claims.uid))
    user = result.scalar_one_or_none()
    if user is None:
        raise Unauthorized("User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")

    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=create_session_token(user),
        max_age=settings.SESSION_EXPIRATION_MINUTES * 60,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
        path="/",
    )
    return {"success": True, "data": _session_payload(user)}


@router.get("/session/login")
async def current_session(current_user: User = Depends(get_current_user)):
    return {"success": True, "data": _session_payload(current_user)}


@router.delete("/session/login")
async def logout(response: Response):
    response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
    return {"success": True, "message": "Logged out"}

"""
Session handling.

The identity provider issues ID tokens; this service verifies them once at
login and exchanges them for its own signed session token, stored in the
``session`` cookie. Every authenticated route resolves that token to a
``User`` row, which is then passed explicitly into the service layer.
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.config import get_settings
from carepass.db.postgres import get_db
from carepass.exceptions import Unauthorized
from carepass.models.user import User, UserRole

settings = get_settings()
security = HTTPBearer(auto_error=False)


class IdentityClaims(BaseModel):
    uid: str
    email: Optional[str] = None


class SessionData(BaseModel):
    user_id: str
    role: UserRole
    hospital_id: Optional[str] = None
    expires_at: datetime


def decode_identity_token(token: str) -> IdentityClaims:
    """Verify an ID token minted by the identity provider."""
    options = {"verify_aud": bool(settings.IDENTITY_TOKEN_AUDIENCE)}
    try:
        payload = jwt.decode(
            token,
            settings.IDENTITY_TOKEN_SECRET,
            algorithms=[settings.IDENTITY_TOKEN_ALGORITHM],
            audience=settings.IDENTITY_TOKEN_AUDIENCE or None,
            options=options,
        )
    except JWTError as exc:
        message = "ID token expired" if "expired" in str(exc).lower() else "Invalid ID token"
        raise Unauthorized(message)
    uid = payload.get("sub") or payload.get("uid")
    if not uid:
        raise Unauthorized("Invalid ID token")
    return IdentityClaims(uid=uid, email=payload.get("email"))


def create_session_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.SESSION_EXPIRATION_MINUTES))
    to_encode = {"sub": user.id, "role": user.role.value, "exp": expire}
    if user.hospital_id:
        to_encode["hospital_id"] = user.hospital_id
    return jwt.encode(to_encode, settings.SESSION_SECRET, algorithm=settings.SESSION_ALGORITHM)


def decode_session_token(token: str) -> SessionData:
    try:
        payload = jwt.decode(token, settings.SESSION_SECRET, algorithms=[settings.SESSION_ALGORITHM])
        return SessionData(
            user_id=payload["sub"],
            role=payload["role"],
            hospital_id=payload.get("hospital_id"),
            expires_at=datetime.utcfromtimestamp(payload["exp"]),
        )
    except (JWTError, KeyError, ValueError):
        raise Unauthorized("Invalid session")


def _session_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if token:
        return token
    if credentials is not None:
        return credentials.credentials
    return None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    token = _session_token(request, credentials)
    if not token:
        raise Unauthorized("Unauthorized - No session")

    session_data = decode_session_token(token)
    result = await db.execute(select(User).where(User.id == session_data.user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise Unauthorized("User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")
    return user


def require_role(*roles: UserRole):
    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role {current_user.role.value} not authorized. Required: {[r.value for r in roles]}",
            )
        return current_user
    return role_checker


def require_hospital_user(*roles: UserRole):
    """Like ``require_role`` but also insists on a hospital affiliation."""
    async def hospital_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles or not current_user.hospital_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Forbidden - insufficient permissions or hospital not configured",
            )
        return current_user
    return hospital_checker

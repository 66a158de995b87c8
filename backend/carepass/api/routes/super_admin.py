"""
Super-admin routes.

Endpoints:
    GET    /super-admin/admins        — All hospital and super admins
    POST   /super-admin/admins        — Create another super admin
    GET    /super-admin/admins/{id}   — One admin
    PATCH  /super-admin/admins/{id}   — Activate/deactivate, edit profile or role
    DELETE /super-admin/admins/{id}   — Remove an admin
    GET    /admin/hospital-admins     — Hospital admins with their hospitals
    POST   /admin/hospital-admins     — Provision a hospital and its admin
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.db.postgres import get_db
from carepass.models.user import User, UserRole
from carepass.api.middleware.auth import require_role
from carepass.services import admin_service

router = APIRouter()

super_admin_only = require_role(UserRole.SUPER_ADMIN)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class AdminCreateRequest(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: Optional[str] = None


class AdminUpdateRequest(BaseModel):
    isActive: Optional[bool] = None
    profile: Optional[dict[str, Any]] = None
    role: Optional[UserRole] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/super-admin/admins")
async def list_admins(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(super_admin_only),
):
    return {"success": True, "data": await admin_service.list_admins(db)}


@router.post("/super-admin/admins", status_code=status.HTTP_201_CREATED)
async def create_super_admin(
    payload: AdminCreateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(super_admin_only),
):
    data = await admin_service.create_super_admin(
        db,
        current_user,
        first_name=payload.firstName,
        last_name=payload.lastName,
        email=payload.email,
        request=request,
    )
    return {"success": True, "data": data, "message": "Super admin created"}


@router.get("/super-admin/admins/{user_id}")
async def get_admin(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(super_admin_only),
):
    return {"success": True, "data": await admin_service.get_admin(db, user_id)}


@router.patch("/super-admin/admins/{user_id}")
async def update_admin(
    user_id: str,
    payload: AdminUpdateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(super_admin_only),
):
    data = await admin_service.update_admin(
        db,
        current_user,
        user_id,
        is_active=payload.isActive,
        profile=payload.profile,
        role=payload.role,
        request=request,
    )
    return {"success": True, "data": data, "message": "Admin updated"}


@router.delete("/super-admin/admins/{user_id}")
async def delete_admin(
    user_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(super_admin_only),
):
    await admin_service.delete_admin(db, current_user, user_id, request=request)
    return {"success": True, "message": "Admin deleted"}


@router.get("/admin/hospital-admins")
async def list_hospital_admins(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(super_admin_only),
):
    return {"success": True, "data": await admin_service.list_hospital_admins(db)}


@router.post("/admin/hospital-admins", status_code=status.HTTP_201_CREATED)
async def create_hospital_admin(
    payload: AdminCreateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(super_admin_only),
):
    data = await admin_service.create_hospital_admin(
        db,
        current_user,
        first_name=payload.firstName,
        last_name=payload.lastName,
        email=payload.email,
        request=request,
    )
    return {"success": True, "data": data, "message": "Hospital admin created and invitation logged"}

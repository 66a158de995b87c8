"""
Hospital tenant routes. Everything is scoped to the caller's hospital.

Endpoints:
    GET   /hospital                              — The caller's hospital profile
    PUT   /hospital                              — Edit the profile (hospital_admin)
    GET   /hospital/departments                  — List departments
    POST  /hospital/departments                  — Create a department (hospital_admin)
    PATCH /hospital/departments/{id}/status      — Activate/deactivate (hospital_admin)
    GET   /hospital/patients/{id}/passport       — A patient's passport, needs an active read grant
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.db.postgres import get_db
from carepass.exceptions import Forbidden, NotFound
from carepass.models.access_grant import GrantPermission
from carepass.models.hospital import DepartmentStatus
from carepass.models.user import User, UserRole, HOSPITAL_ROLES
from carepass.api.middleware.auth import require_hospital_user
from carepass.services import access_service, hospital_service, passport_service

router = APIRouter()

hospital_member = require_hospital_user(*HOSPITAL_ROLES)
hospital_admin = require_hospital_user(UserRole.HOSPITAL_ADMIN)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class HospitalUpdateRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[dict[str, Any]] = None


class DepartmentCreateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = ""


class DepartmentStatusRequest(BaseModel):
    status: DepartmentStatus


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/hospital")
async def get_hospital(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(hospital_member),
):
    hospital = await hospital_service.get_own_hospital(db, current_user)
    return {"success": True, "data": hospital_service.hospital_to_dict(hospital)}


@router.put("/hospital")
async def update_hospital(
    payload: HospitalUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(hospital_admin),
):
    hospital = await hospital_service.update_own_hospital(
        db, current_user, payload.model_dump(exclude_unset=True)
    )
    return {"success": True, "data": hospital_service.hospital_to_dict(hospital), "message": "Hospital updated"}


@router.get("/hospital/departments")
async def list_departments(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(hospital_member),
):
    return {"success": True, "data": await hospital_service.list_departments(db, current_user)}


@router.post("/hospital/departments", status_code=status.HTTP_201_CREATED)
async def create_department(
    payload: DepartmentCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(hospital_admin),
):
    department = await hospital_service.create_department(
        db, current_user, name=payload.name, description=payload.description
    )
    return {"success": True, "data": hospital_service.department_to_dict(department)}


@router.patch("/hospital/departments/{department_id}/status")
async def set_department_status(
    department_id: str,
    payload: DepartmentStatusRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(hospital_admin),
):
    department = await hospital_service.set_department_status(db, current_user, department_id, payload.status)
    return {"success": True, "data": hospital_service.department_to_dict(department)}


@router.get("/hospital/patients/{patient_id}/passport")
async def patient_passport(
    patient_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(hospital_member),
):
    if not await access_service.has_active_grant(
        db, patient_id, current_user.hospital_id, GrantPermission.READ
    ):
        raise Forbidden("No active access grant for this patient")

    result = await db.execute(select(User).where(User.id == patient_id, User.role == UserRole.PATIENT))
    patient = result.scalar_one_or_none()
    if patient is None:
        raise NotFound("Patient not found")
    return {"success": True, "data": await passport_service.get_passport_view(db, patient)}

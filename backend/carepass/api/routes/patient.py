"""
Patient self-service routes.

Endpoints:
    GET   /patient/visits           — Visit history with hospital names
    GET   /patient/ehealth-passport — The patient's passport view
    PATCH /patient/ehealth-passport — Edit consent and medical history
    GET   /patient/prescriptions    — Own prescriptions (?status=active|completed|all)
    GET   /patient/scheduler/today  — Today's doses from active prescriptions
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.db.postgres import get_db
from carepass.models.user import User, UserRole
from carepass.api.middleware.auth import require_role
from carepass.services import passport_service, prescription_service, visit_service

router = APIRouter()

patient_only = require_role(UserRole.PATIENT)


class PassportUpdateRequest(BaseModel):
    consent: Optional[dict[str, bool]] = None
    medicalHistory: Optional[dict[str, Any]] = None


@router.get("/patient/visits")
async def my_visits(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(patient_only),
):
    return {"success": True, "data": await visit_service.list_patient_visits(db, current_user)}


@router.get("/patient/ehealth-passport")
async def my_passport(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(patient_only),
):
    return {"success": True, "data": await passport_service.get_passport_view(db, current_user)}


@router.patch("/patient/ehealth-passport")
async def update_my_passport(
    payload: PassportUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(patient_only),
):
    passport = await passport_service.update_passport(db, current_user, payload.model_dump(exclude_none=True))
    return {"success": True, "data": passport_service.passport_to_dict(passport), "message": "Passport updated"}


@router.get("/patient/prescriptions")
async def my_prescriptions(
    status: str = "active",
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(patient_only),
):
    prescriptions = await prescription_service.list_patient_prescriptions(db, current_user, status=status)
    return {"success": True, "data": prescriptions}


@router.get("/patient/scheduler/today")
async def my_schedule_today(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(patient_only),
):
    return {"success": True, "data": await prescription_service.scheduler_today(db, current_user)}

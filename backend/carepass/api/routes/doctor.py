"""
Clinician routes. Scoped to the caller and the caller's hospital.

Endpoints:
    GET /doctor/prescriptions                 — Prescriptions the caller wrote (?patientId, ?status, ?limit)
    GET /doctor/history                       — Consultations the caller recorded (?patientId, ?limit)
    GET /doctor/patients/{id}/history         — The hospital's records on a patient, needs an active read grant
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.db.postgres import get_db
from carepass.models.user import User, CLINICIAN_ROLES
from carepass.api.middleware.auth import require_hospital_user
from carepass.services import prescription_service

router = APIRouter()

clinician_only = require_hospital_user(*CLINICIAN_ROLES)


@router.get("/doctor/prescriptions")
async def my_prescriptions(
    patientId: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(clinician_only),
):
    prescriptions = await prescription_service.list_clinician_prescriptions(
        db, current_user, patient_id=patientId, status=status, limit=limit
    )
    return {"success": True, "data": prescriptions}


@router.get("/doctor/history")
async def my_history(
    patientId: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(clinician_only),
):
    history = await prescription_service.list_clinician_history(
        db, current_user, patient_id=patientId, limit=limit
    )
    return {"success": True, "data": history}


@router.get("/doctor/patients/{patient_id}/history")
async def patient_history(
    patient_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(clinician_only),
):
    return {"success": True, "data": await prescription_service.get_patient_history(db, current_user, patient_id)}

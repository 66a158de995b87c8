"""
Visit lifecycle routes.

Endpoints:
    POST /visits/checkin          — Check a patient in (front desk)
    POST /visits/{id}/checkout    — Check a visit out (front desk)
    POST /visits/self-checkout    — Patient ends their own visit
    GET  /visits/active           — The hospital's open visits
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.db.postgres import get_db
from carepass.models.user import User
from carepass.api.middleware.auth import get_current_user
from carepass.services import visit_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class CheckInRequest(BaseModel):
    patientEmail: Optional[str] = None
    purpose: Optional[str] = None
    department: Optional[str] = None


class SelfCheckOutRequest(BaseModel):
    visitId: Optional[str] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/visits/checkin")
async def check_in(
    payload: CheckInRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    result = await visit_service.check_in(
        db,
        current_user,
        patient_email=payload.patientEmail,
        purpose=payload.purpose,
        department=payload.department,
        request=request,
    )
    data = visit_service.visit_to_dict(result.visit)
    data["eHealthPassportActivated"] = result.passport_activated
    data["visitHistory"] = result.visit_history
    data["accessGrantId"] = result.grant_id
    return {"success": True, "data": data, "message": result.message}


@router.post("/visits/self-checkout")
async def self_check_out(
    payload: SelfCheckOutRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    result = await visit_service.self_check_out(db, current_user, payload.visitId or "", request=request)
    return {
        "success": True,
        "data": visit_service.visit_to_dict(result.visit),
        "message": "Checked out successfully",
    }


@router.post("/visits/{visit_id}/checkout")
async def check_out(
    visit_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    result = await visit_service.check_out(db, current_user, visit_id, request=request)
    data = visit_service.visit_to_dict(result.visit)
    data["revokedGrants"] = result.revoked_grants
    return {"success": True, "data": data, "message": "Patient checked out"}


@router.get("/visits/active")
async def active_visits(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {"success": True, "data": await visit_service.list_active_visits(db, current_user)}

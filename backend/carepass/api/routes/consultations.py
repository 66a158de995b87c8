"""
Consultation routes.

Endpoints:
    POST /consultations/complete  — Record the outcome of a consultation (clinicians)
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.db.postgres import get_db
from carepass.models.user import User, CLINICIAN_ROLES
from carepass.api.middleware.auth import require_role
from carepass.services import consultation_service

router = APIRouter()


class ConsultationRequest(BaseModel):
    visitId: Optional[str] = None
    diagnosis: Optional[str] = None
    symptoms: list[str] = Field(default_factory=list)
    notes: Optional[str] = None
    prescriptions: list[dict[str, Any]] = Field(default_factory=list)


@router.post("/consultations/complete", status_code=status.HTTP_201_CREATED)
async def complete_consultation(
    payload: ConsultationRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(*CLINICIAN_ROLES)),
):
    record = await consultation_service.complete_consultation(
        db,
        current_user,
        visit_id=payload.visitId,
        diagnosis=payload.diagnosis,
        symptoms=payload.symptoms,
        notes=payload.notes,
        prescriptions=payload.prescriptions,
        request=request,
    )
    return {
        "success": True,
        "data": consultation_service.record_to_dict(record),
        "message": "Consultation completed",
    }

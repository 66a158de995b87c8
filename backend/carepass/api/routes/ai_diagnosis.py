"""
AI symptom checker routes.

Endpoints:
    POST /ai-diagnosis/start    — Analyse reported symptoms (patient, rate limited)
    GET  /ai-diagnosis/history  — The patient's past diagnosis sessions
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.db.postgres import get_db
from carepass.models.user import User, UserRole
from carepass.api.middleware.auth import get_current_user, require_role
from carepass.api.middleware.rate_limit import rate_limit
from carepass.services import diagnosis_service
from carepass.services.diagnosis_service import GeminiClient, get_gemini_client

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class Symptom(BaseModel):
    name: str
    severity: Optional[str] = None
    duration: Optional[str] = None


class DiagnosisRequest(BaseModel):
    symptoms: list[Symptom] = Field(default_factory=list)
    age: Optional[int] = None
    gender: Optional[str] = None
    additionalInfo: Optional[str] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/ai-diagnosis/start",
    dependencies=[rate_limit(max_requests=10, window_seconds=60, key_prefix="ai")],
)
async def start_diagnosis(
    payload: DiagnosisRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    client: GeminiClient = Depends(get_gemini_client),
):
    data = await diagnosis_service.start_diagnosis(
        db,
        current_user,
        client,
        symptoms=[s.model_dump(exclude_none=True) for s in payload.symptoms],
        age=payload.age,
        gender=payload.gender,
        additional_info=payload.additionalInfo,
        request=request,
    )
    return {"success": True, "data": data}


@router.get("/ai-diagnosis/history")
async def history(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.PATIENT)),
):
    return {"success": True, "data": await diagnosis_service.list_history(db, current_user)}

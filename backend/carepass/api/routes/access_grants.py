"""
Access grant routes.

Endpoints:
    GET  /access-grants              — The patient's own grants
    POST /access-grants/{id}/revoke  — Revoke a grant (hospital admin / super admin)
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.db.postgres import get_db
from carepass.models.user import User, UserRole, ADMIN_ROLES
from carepass.api.middleware.auth import require_role
from carepass.api.middleware.audit import log_audit
from carepass.services import access_service

router = APIRouter()


@router.get("/access-grants")
async def my_grants(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.PATIENT)),
):
    return {"success": True, "data": await access_service.list_patient_grants(db, current_user.id)}


@router.post("/access-grants/{grant_id}/revoke")
async def revoke_grant(
    grant_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(*ADMIN_ROLES)),
):
    grant = await access_service.revoke_grant(db, grant_id, current_user)
    await log_audit(
        db,
        action="ACCESS_GRANT_REVOKED",
        resource_type="accessGrant",
        resource_id=grant.id,
        user_id=current_user.id,
        hospital_id=grant.hospital_id,
        metadata={"patientId": grant.patient_id, "visitId": grant.visit_id},
        request=request,
    )
    return {"success": True, "data": access_service.grant_to_dict(grant), "message": "Access revoked"}

"""
Access grant service — scopes a hospital's access to a patient's records
to the lifetime of one visit.

Grants only move ``active -> revoked``. They are issued by check-in and
revoked by check-out, or explicitly by an admin.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.exceptions import BadRequest, Forbidden, NotFound
from carepass.models.access_grant import AccessGrant, GrantStatus, GrantPermission, DEFAULT_PERMISSIONS
from carepass.models.user import User, UserRole
from carepass.models.visit import Visit

logger = logging.getLogger(__name__)


def grant_to_dict(grant: AccessGrant) -> dict[str, Any]:
    return {
        "id": grant.id,
        "patientId": grant.patient_id,
        "hospitalId": grant.hospital_id,
        "visitId": grant.visit_id,
        "permissions": list(grant.permissions or []),
        "status": grant.status.value,
        "grantedAt": grant.granted_at.isoformat() if grant.granted_at else None,
        "revokedAt": grant.revoked_at.isoformat() if grant.revoked_at else None,
    }


async def issue_grant(db: AsyncSession, visit: Visit) -> AccessGrant:
    """Open a read/write grant for the hospital of *visit*."""
    grant = AccessGrant(
        patient_id=visit.patient_id,
        hospital_id=visit.hospital_id,
        visit_id=visit.id,
        permissions=list(DEFAULT_PERMISSIONS),
        status=GrantStatus.ACTIVE,
        granted_at=visit.check_in_time or datetime.utcnow(),
    )
    db.add(grant)
    await db.flush()
    logger.info("Issued access grant %s for visit %s", grant.id, visit.id)
    return grant


async def revoke_visit_grants(
    db: AsyncSession,
    visit_id: str,
    *,
    revoked_by: str | None = None,
    when: datetime | None = None,
) -> int:
    """Revoke every active grant tied to *visit_id*. Returns how many were revoked."""
    when = when or datetime.utcnow()
    result = await db.execute(
        select(AccessGrant).where(
            AccessGrant.visit_id == visit_id,
            AccessGrant.status == GrantStatus.ACTIVE,
        )
    )
    grants = result.scalars().all()
    for grant in grants:
        grant.status = GrantStatus.REVOKED
        grant.revoked_at = when
        grant.revoked_by = revoked_by
    await db.flush()
    logger.info("Revoked %d access grant(s) for visit %s", len(grants), visit_id)
    return len(grants)


async def revoke_grant(db: AsyncSession, grant_id: str, admin: User) -> AccessGrant:
    """Explicit revocation by a hospital admin (own hospital) or a super admin."""
    result = await db.execute(select(AccessGrant).where(AccessGrant.id == grant_id))
    grant = result.scalar_one_or_none()
    if grant is None:
        raise NotFound("Access grant not found")
    if admin.role != UserRole.SUPER_ADMIN and grant.hospital_id != admin.hospital_id:
        raise Forbidden("Cannot revoke another hospital's access grant")
    if grant.status == GrantStatus.REVOKED:
        raise BadRequest("Access grant already revoked")

    grant.status = GrantStatus.REVOKED
    grant.revoked_at = datetime.utcnow()
    grant.revoked_by = admin.id
    await db.flush()
    logger.info("Access grant %s revoked by admin %s", grant_id, admin.id)
    return grant


async def has_active_grant(
    db: AsyncSession,
    patient_id: str,
    hospital_id: str,
    permission: GrantPermission = GrantPermission.READ,
) -> bool:
    result = await db.execute(
        select(AccessGrant).where(
            AccessGrant.patient_id == patient_id,
            AccessGrant.hospital_id == hospital_id,
            AccessGrant.status == GrantStatus.ACTIVE,
        )
    )
    return any(permission.value in (g.permissions or []) for g in result.scalars().all())


async def list_patient_grants(db: AsyncSession, patient_id: str) -> list[dict[str, Any]]:
    result = await db.execute(
        select(AccessGrant)
        .where(AccessGrant.patient_id == patient_id)
        .order_by(AccessGrant.granted_at.desc())
    )
    return [grant_to_dict(g) for g in result.scalars().all()]

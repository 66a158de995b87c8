"""
Super-admin provisioning — admin accounts and the hospitals they run.

Credentials live with the identity provider; accounts created here are
directory rows keyed by a fresh uid that the provider adopts on first login
(``require_password_reset``). Invitations are logged, not mailed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.api.middleware.audit import log_audit
from carepass.config import get_settings
from carepass.exceptions import BadRequest, NotFound
from carepass.models.hospital import Hospital, HospitalStatus
from carepass.models.user import User, UserRole

logger = logging.getLogger(__name__)

ADMIN_ROLE_VALUES = (UserRole.HOSPITAL_ADMIN, UserRole.SUPER_ADMIN)


def user_to_dict(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role.value,
        "hospitalId": user.hospital_id,
        "department": user.department,
        "profile": user.profile or {},
        "isActive": user.is_active,
        "setupComplete": user.setup_complete,
        "requirePasswordReset": user.require_password_reset,
        "createdBy": user.created_by,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
        "updatedAt": user.updated_at.isoformat() if user.updated_at else None,
    }


def _require_names(first_name: Optional[str], last_name: Optional[str], email: Optional[str]) -> str:
    if not (first_name or "").strip() or not (last_name or "").strip() or not (email or "").strip():
        raise BadRequest("All fields are required")
    return email.strip().lower()


async def _ensure_email_free(db: AsyncSession, email: str) -> None:
    existing = await db.execute(select(User).where(User.email == email))
    if existing.scalar_one_or_none() is not None:
        raise BadRequest("Email already exists")


async def _get_user(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("Admin not found")
    return user


# ---------------------------------------------------------------------------
# Admin directory
# ---------------------------------------------------------------------------

async def list_admins(db: AsyncSession) -> list[dict[str, Any]]:
    result = await db.execute(
        select(User).where(User.role.in_(ADMIN_ROLE_VALUES)).order_by(User.created_at.desc())
    )
    return [user_to_dict(u) for u in result.scalars().all()]


async def get_admin(db: AsyncSession, user_id: str) -> dict[str, Any]:
    return user_to_dict(await _get_user(db, user_id))


async def update_admin(
    db: AsyncSession,
    super_admin: User,
    user_id: str,
    *,
    is_active: Optional[bool] = None,
    profile: Optional[dict[str, Any]] = None,
    role: Optional[UserRole] = None,
    request: Request | None = None,
) -> dict[str, Any]:
    user = await _get_user(db, user_id)
    updates = []
    if is_active is not None:
        user.is_active = is_active
        updates.append("isActive")
    if profile is not None:
        user.profile = profile
        updates.append("profile")
    if role is not None:
        user.role = role
        updates.append("role")
    user.updated_at = datetime.utcnow()
    await db.flush()

    await log_audit(
        db,
        action="UPDATE_ADMIN",
        resource_type="user",
        resource_id=user_id,
        user_id=super_admin.id,
        metadata={"updates": updates},
        request=request,
    )
    logger.info("Admin %s updated by %s: %s", user_id, super_admin.id, updates)
    return user_to_dict(user)


async def delete_admin(
    db: AsyncSession,
    super_admin: User,
    user_id: str,
    *,
    request: Request | None = None,
) -> None:
    """Hard delete. A hospital left without its admin goes back to pending."""
    if user_id == super_admin.id:
        raise BadRequest("Cannot delete your own account")

    user = await _get_user(db, user_id)
    snapshot = {"email": user.email, "role": user.role.value, "name": user.full_name}

    if user.role == UserRole.HOSPITAL_ADMIN and user.hospital_id:
        result = await db.execute(select(Hospital).where(Hospital.id == user.hospital_id))
        hospital = result.scalar_one_or_none()
        if hospital is not None:
            hospital.admin_user_id = None
            hospital.status = HospitalStatus.PENDING
            hospital.updated_at = datetime.utcnow()

    await db.delete(user)
    await db.flush()

    await log_audit(
        db,
        action="DELETE_ADMIN",
        resource_type="user",
        resource_id=user_id,
        user_id=super_admin.id,
        metadata=snapshot,
        request=request,
    )
    logger.info("Admin %s deleted by %s", user_id, super_admin.id)


async def create_super_admin(
    db: AsyncSession,
    super_admin: User,
    *,
    first_name: Optional[str],
    last_name: Optional[str],
    email: Optional[str],
    request: Request | None = None,
) -> dict[str, Any]:
    email = _require_names(first_name, last_name, email)
    await _ensure_email_free(db, email)

    user = User(
        id=uuid.uuid4().hex,
        email=email,
        role=UserRole.SUPER_ADMIN,
        profile={"firstName": first_name.strip(), "lastName": last_name.strip()},
        setup_complete=True,
        require_password_reset=False,
        is_active=True,
        created_by=super_admin.id,
    )
    db.add(user)
    await db.flush()

    await log_audit(
        db,
        action="CREATE_SUPER_ADMIN",
        resource_type="user",
        resource_id=user.id,
        user_id=super_admin.id,
        metadata={"email": email, "firstName": first_name, "lastName": last_name},
        request=request,
    )
    logger.info("Super admin %s created by %s", user.id, super_admin.id)
    return user_to_dict(user)


# ---------------------------------------------------------------------------
# Hospital admins
# ---------------------------------------------------------------------------

async def list_hospital_admins(db: AsyncSession) -> list[dict[str, Any]]:
    result = await db.execute(
        select(User, Hospital)
        .outerjoin(Hospital, Hospital.id == User.hospital_id)
        .where(User.role == UserRole.HOSPITAL_ADMIN)
        .order_by(User.created_at.desc())
    )
    admins = []
    for user, hospital in result.all():
        entry = user_to_dict(user)
        entry["hospital"] = (
            {"id": hospital.id, "name": hospital.name, "status": hospital.status.value} if hospital else None
        )
        admins.append(entry)
    return admins


def _send_invitation(email: str, name: str, hospital_id: str) -> str:
    setup_url = f"{get_settings().APP_URL.rstrip('/')}/hospital/setup?hospitalId={hospital_id}"
    logger.info("Invitation for %s (%s): set a password, then continue at %s", name, email, setup_url)
    return setup_url


async def create_hospital_admin(
    db: AsyncSession,
    super_admin: User,
    *,
    first_name: Optional[str],
    last_name: Optional[str],
    email: Optional[str],
    request: Request | None = None,
) -> dict[str, Any]:
    """Provision a pending hospital together with its admin account."""
    email = _require_names(first_name, last_name, email)
    await _ensure_email_free(db, email)

    name = f"{first_name.strip()} {last_name.strip()}"
    hospital = Hospital(
        id=uuid.uuid4().hex,
        name=name,
        email=email,
        status=HospitalStatus.PENDING,
        setup_completed=False,
    )
    user = User(
        id=uuid.uuid4().hex,
        email=email,
        role=UserRole.HOSPITAL_ADMIN,
        hospital_id=hospital.id,
        profile={"firstName": first_name.strip(), "lastName": last_name.strip()},
        setup_complete=False,
        require_password_reset=True,
        is_active=True,
        created_by=super_admin.id,
    )
    hospital.admin_user_id = user.id
    db.add_all([hospital, user])
    await db.flush()

    setup_url = _send_invitation(email, name, hospital.id)
    await log_audit(
        db,
        action="CREATE_HOSPITAL_ADMIN",
        resource_type="user",
        resource_id=user.id,
        user_id=super_admin.id,
        hospital_id=hospital.id,
        metadata={"email": email, "firstName": first_name, "lastName": last_name},
        request=request,
    )
    logger.info("Hospital %s and admin %s provisioned by %s", hospital.id, user.id, super_admin.id)
    return {"uid": user.id, "hospitalId": hospital.id, "setupUrl": setup_url}

"""
Hospital tenant service — the caller's hospital profile and its departments.

Everything here is scoped to ``user.hospital_id``; rows of another hospital
are reported as not found.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.exceptions import BadRequest, NotFound
from carepass.models.hospital import Hospital, HospitalStatus, Department, DepartmentStatus
from carepass.models.user import User

logger = logging.getLogger(__name__)


def hospital_to_dict(hospital: Hospital) -> dict[str, Any]:
    return {
        "id": hospital.id,
        "name": hospital.name,
        "email": hospital.email,
        "phone": hospital.phone,
        "address": hospital.address or {},
        "status": hospital.status.value if hospital.status else None,
        "adminUserId": hospital.admin_user_id,
        "setupCompleted": hospital.setup_completed,
        "createdAt": hospital.created_at.isoformat() if hospital.created_at else None,
        "updatedAt": hospital.updated_at.isoformat() if hospital.updated_at else None,
    }


def department_to_dict(department: Department) -> dict[str, Any]:
    return {
        "id": department.id,
        "hospitalId": department.hospital_id,
        "name": department.name,
        "description": department.description or "",
        "status": department.status.value,
        "createdAt": department.created_at.isoformat() if department.created_at else None,
    }


async def get_own_hospital(db: AsyncSession, user: User) -> Hospital:
    result = await db.execute(select(Hospital).where(Hospital.id == user.hospital_id))
    hospital = result.scalar_one_or_none()
    if hospital is None:
        raise NotFound("Hospital not found")
    return hospital


async def update_own_hospital(db: AsyncSession, admin: User, fields: dict[str, Any]) -> Hospital:
    """Admin self-service edit. The first complete setup activates the hospital."""
    hospital = await get_own_hospital(db, admin)
    if not fields:
        raise BadRequest("No fields to update")
    if "name" in fields and not (fields["name"] or "").strip():
        raise BadRequest("Hospital name is required")

    for key in ("name", "phone", "email", "address"):
        if key in fields:
            setattr(hospital, key, fields[key].strip() if isinstance(fields[key], str) else fields[key])

    if not hospital.setup_completed and hospital.name and hospital.phone and hospital.address:
        hospital.setup_completed = True
        hospital.status = HospitalStatus.ACTIVE
        admin.setup_complete = True
        logger.info("Hospital %s completed setup and is now active", hospital.id)

    hospital.updated_at = datetime.utcnow()
    await db.flush()
    return hospital


async def list_departments(db: AsyncSession, user: User) -> list[dict[str, Any]]:
    result = await db.execute(
        select(Department).where(Department.hospital_id == user.hospital_id).order_by(Department.name)
    )
    return [department_to_dict(d) for d in result.scalars().all()]


async def create_department(
    db: AsyncSession,
    admin: User,
    *,
    name: Optional[str],
    description: Optional[str] = "",
) -> Department:
    if not (name or "").strip():
        raise BadRequest("Department name is required")
    department = Department(
        hospital_id=admin.hospital_id,
        name=name.strip(),
        description=(description or "").strip(),
        status=DepartmentStatus.ACTIVE,
    )
    db.add(department)
    await db.flush()
    logger.info("Department %s (%s) created for hospital %s", department.id, department.name, admin.hospital_id)
    return department


async def set_department_status(
    db: AsyncSession,
    admin: User,
    department_id: str,
    new_status: DepartmentStatus,
) -> Department:
    result = await db.execute(
        select(Department).where(Department.id == department_id, Department.hospital_id == admin.hospital_id)
    )
    department = result.scalar_one_or_none()
    if department is None:
        raise NotFound("Department not found")
    department.status = new_status
    department.updated_at = datetime.utcnow()
    await db.flush()
    return department

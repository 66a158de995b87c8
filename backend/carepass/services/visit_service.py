"""
Visit lifecycle — patient check-in, staff and self check-out, and queue reads.

All public functions accept an ``AsyncSession`` so the caller (route layer)
controls the transaction boundary. Every write of one check-in or check-out
shares that transaction: the visit, its access grant, the passport and the
audit entry are committed together or not at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import Request
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.api.middleware.audit import log_audit
from carepass.exceptions import BadRequest, Forbidden, NotFound
from carepass.models.hospital import Hospital
from carepass.models.user import User, UserRole, CHECK_IN_ROLES, CHECK_OUT_ROLES, HOSPITAL_ROLES
from carepass.models.visit import Visit, VisitStatus, CheckOutMethod
from carepass.services import access_service, passport_service

logger = logging.getLogger(__name__)

ALREADY_CHECKED_IN = "Patient already checked in"


@dataclass
class CheckInResult:
    visit: Visit
    passport_activated: bool
    visit_history: dict[str, Any]
    grant_id: str

    @property
    def message(self) -> str:
        if self.passport_activated:
            return "Patient checked in + E-Health Passport activated!"
        return "Patient checked in successfully"


@dataclass
class CheckOutResult:
    visit: Visit
    revoked_grants: int


def visit_to_dict(visit: Visit) -> dict[str, Any]:
    return {
        "id": visit.id,
        "visitId": visit.id,
        "patientId": visit.patient_id,
        "hospitalId": visit.hospital_id,
        "status": visit.status.value,
        "purpose": visit.purpose,
        "department": visit.department,
        "isFirstVisit": visit.is_first_visit,
        "checkInTime": visit.check_in_time.isoformat() if visit.check_in_time else None,
        "checkOutTime": visit.check_out_time.isoformat() if visit.check_out_time else None,
        "checkOutMethod": visit.check_out_method.value if visit.check_out_method else None,
        "diagnosis": visit.diagnosis,
    }


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

async def find_patient_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(
        select(User)
        .where(func.lower(User.email) == email.strip().lower(), User.role == UserRole.PATIENT)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_open_visit(db: AsyncSession, patient_id: str, hospital_id: str) -> Visit | None:
    result = await db.execute(
        select(Visit)
        .where(
            Visit.patient_id == patient_id,
            Visit.hospital_id == hospital_id,
            Visit.status == VisitStatus.CHECKED_IN,
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_visit(db: AsyncSession, visit_id: str) -> Visit | None:
    result = await db.execute(select(Visit).where(Visit.id == visit_id))
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Check-in
# ---------------------------------------------------------------------------

async def check_in(
    db: AsyncSession,
    staff: User,
    *,
    patient_email: Optional[str],
    purpose: Optional[str],
    department: Optional[str],
    request: Request | None = None,
) -> CheckInResult:
    if staff.role not in CHECK_IN_ROLES or not staff.hospital_id:
        raise Forbidden("Unauthorized or hospital not configured")
    if not (patient_email or "").strip() or not (purpose or "").strip() or not (department or "").strip():
        raise BadRequest("Missing fields")

    hospital_id = staff.hospital_id
    patient = await find_patient_by_email(db, patient_email)
    if patient is None:
        raise NotFound("Patient not found")

    patient_id = patient.id
    if await find_open_visit(db, patient_id, hospital_id) is not None:
        raise BadRequest(ALREADY_CHECKED_IN)

    now = datetime.utcnow()
    passport = await passport_service.get_passport(db, patient_id)
    first_activation = passport_service.is_first_activation(passport)
    if first_activation:
        passport = await passport_service.activate_passport(db, patient, hospital_id, passport, when=now)

    # Ids are per-millisecond; step past one this patient already holds.
    visit_id = Visit.make_id(patient_id, now)
    offset = 0
    while await get_visit(db, visit_id) is not None:
        offset += 1
        visit_id = Visit.make_id(patient_id, now + timedelta(milliseconds=offset))

    visit = Visit(
        id=visit_id,
        patient_id=patient_id,
        hospital_id=hospital_id,
        status=VisitStatus.CHECKED_IN,
        purpose=purpose.strip(),
        department=department.strip(),
        is_first_visit=first_activation,
        check_in_time=now,
        checked_in_by=staff.id,
        created_at=now,
    )
    db.add(visit)
    try:
        # The partial unique index catches a concurrent check-in that
        # slipped past the read above; get_db rolls the request back. The
        # session is unusable after a failed flush, so only locals below.
        await db.flush()
    except IntegrityError:
        logger.warning("Concurrent check-in rejected for patient %s at hospital %s", patient_id, hospital_id)
        raise BadRequest(ALREADY_CHECKED_IN)

    grant = await access_service.issue_grant(db, visit)
    history = passport_service.record_visit(passport, hospital_id, now)
    await db.flush()

    await log_audit(
        db,
        action="EHEALTH_PASSPORT_ACTIVATED" if first_activation else "PATIENT_CHECK_IN",
        resource_type="visit",
        resource_id=visit.id,
        user_id=staff.id,
        hospital_id=hospital_id,
        metadata={
            "patientId": patient_id,
            "hospitalId": hospital_id,
            "purpose": visit.purpose,
            "department": visit.department,
            "isFirstVisit": first_activation,
        },
        request=request,
    )
    logger.info(
        "Patient %s checked in at hospital %s (visit %s, first=%s)",
        patient_id, hospital_id, visit.id, first_activation,
    )
    return CheckInResult(visit=visit, passport_activated=first_activation, visit_history=history, grant_id=grant.id)


# ---------------------------------------------------------------------------
# Check-out
# ---------------------------------------------------------------------------

async def _close_visit(
    db: AsyncSession,
    visit: Visit,
    *,
    closed_by: str,
    method: CheckOutMethod,
) -> CheckOutResult:
    now = datetime.utcnow()
    visit.status = VisitStatus.CHECKED_OUT
    visit.check_out_time = now
    visit.checked_out_by = closed_by
    visit.check_out_method = method
    visit.updated_at = now
    await db.flush()
    revoked = await access_service.revoke_visit_grants(db, visit.id, revoked_by=closed_by, when=now)
    return CheckOutResult(visit=visit, revoked_grants=revoked)


def _duration_seconds(visit: Visit) -> int | None:
    if visit.check_in_time and visit.check_out_time:
        return int((visit.check_out_time - visit.check_in_time).total_seconds())
    return None


async def check_out(
    db: AsyncSession,
    staff: User,
    visit_id: str,
    *,
    request: Request | None = None,
) -> CheckOutResult:
    if not (visit_id or "").strip():
        raise BadRequest("Visit ID required")
    if staff.role not in CHECK_OUT_ROLES or not staff.hospital_id:
        raise Forbidden("Forbidden")

    visit = await get_visit(db, visit_id)
    if visit is None:
        raise NotFound("Visit not found")
    if visit.hospital_id != staff.hospital_id or visit.status != VisitStatus.CHECKED_IN:
        raise Forbidden("Unauthorized to check out this visit")

    result = await _close_visit(db, visit, closed_by=staff.id, method=CheckOutMethod.STAFF)
    await log_audit(
        db,
        action="PATIENT_CHECK_OUT",
        resource_type="visit",
        resource_id=visit.id,
        user_id=staff.id,
        hospital_id=staff.hospital_id,
        metadata={
            "patientId": visit.patient_id,
            "hospitalId": visit.hospital_id,
            "durationSeconds": _duration_seconds(visit),
            "revokedGrants": result.revoked_grants,
        },
        request=request,
    )
    logger.info("Visit %s checked out by staff %s", visit.id, staff.id)
    return result


async def self_check_out(
    db: AsyncSession,
    patient: User,
    visit_id: str,
    *,
    request: Request | None = None,
) -> CheckOutResult:
    if patient.role != UserRole.PATIENT:
        raise Forbidden("Forbidden - Patient access only")
    if not (visit_id or "").strip():
        raise BadRequest("Visit ID required")

    visit = await get_visit(db, visit_id)
    if visit is None:
        raise NotFound("Visit not found")
    if visit.patient_id != patient.id:
        raise Forbidden("Not your visit")
    if visit.status != VisitStatus.CHECKED_IN:
        raise BadRequest("Visit already ended")

    result = await _close_visit(db, visit, closed_by=patient.id, method=CheckOutMethod.SELF_SERVICE)
    await log_audit(
        db,
        action="PATIENT_SELF_CHECKOUT",
        resource_type="visit",
        resource_id=visit.id,
        user_id=patient.id,
        hospital_id=visit.hospital_id,
        metadata={"patientId": patient.id, "hospitalId": visit.hospital_id},
        request=request,
    )
    logger.info("Visit %s self-checked-out by patient %s", visit.id, patient.id)
    return result


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def list_active_visits(db: AsyncSession, staff: User, *, limit: int = 50) -> list[dict[str, Any]]:
    """The hospital's current queue, most recent check-in first."""
    if staff.role not in HOSPITAL_ROLES or not staff.hospital_id:
        raise Forbidden("Forbidden - insufficient permissions")

    result = await db.execute(
        select(Visit, User)
        .outerjoin(User, User.id == Visit.patient_id)
        .where(Visit.hospital_id == staff.hospital_id, Visit.status == VisitStatus.CHECKED_IN)
        .order_by(Visit.check_in_time.desc())
        .limit(limit)
    )
    queue = []
    for visit, patient in result.all():
        entry = visit_to_dict(visit)
        entry["patient"] = {
            "name": (patient.full_name if patient else "") or "Unknown Patient",
            "email": patient.email if patient else "",
        }
        queue.append(entry)
    return queue


async def list_patient_visits(db: AsyncSession, patient: User, *, limit: int = 50) -> list[dict[str, Any]]:
    if patient.role != UserRole.PATIENT:
        raise Forbidden("Forbidden")

    result = await db.execute(
        select(Visit, Hospital)
        .outerjoin(Hospital, Hospital.id == Visit.hospital_id)
        .where(Visit.patient_id == patient.id)
        .order_by(Visit.check_in_time.desc())
        .limit(limit)
    )
    visits = []
    for visit, hospital in result.all():
        entry = visit_to_dict(visit)
        entry["hospital"] = {
            "name": hospital.name if hospital else "Unknown Hospital",
            "address": (hospital.address if hospital else None) or {},
        }
        visits.append(entry)
    return visits

"""
Consultation completion for clinicians working an open visit.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.api.middleware.audit import log_audit
from carepass.exceptions import BadRequest, Forbidden, NotFound
from carepass.models.access_grant import GrantPermission
from carepass.models.medical_record import MedicalRecord
from carepass.models.user import User, CLINICIAN_ROLES
from carepass.models.visit import VisitStatus
from carepass.services import access_service, passport_service, visit_service

logger = logging.getLogger(__name__)


def record_to_dict(record: MedicalRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "patientId": record.patient_id,
        "hospitalId": record.hospital_id,
        "visitId": record.visit_id,
        "doctorId": record.doctor_id,
        "doctorName": record.doctor_name,
        "type": record.type,
        "diagnosis": record.diagnosis,
        "symptoms": record.symptoms or [],
        "notes": record.notes,
        "prescriptions": record.prescriptions or [],
        "createdAt": record.created_at.isoformat() if record.created_at else None,
    }


async def complete_consultation(
    db: AsyncSession,
    clinician: User,
    *,
    visit_id: Optional[str],
    diagnosis: Optional[str],
    symptoms: Optional[list[str]] = None,
    notes: Optional[str] = None,
    prescriptions: Optional[list[dict[str, Any]]] = None,
    request: Request | None = None,
) -> MedicalRecord:
    if clinician.role not in CLINICIAN_ROLES or not clinician.hospital_id:
        raise Forbidden("Forbidden - clinician access only")
    if not (visit_id or "").strip() or not (diagnosis or "").strip():
        raise BadRequest("Missing fields")

    visit = await visit_service.get_visit(db, visit_id)
    if visit is None:
        raise NotFound("Visit not found")
    if visit.hospital_id != clinician.hospital_id:
        raise Forbidden("Visit belongs to another hospital")
    if visit.status != VisitStatus.CHECKED_IN:
        raise BadRequest("Visit already ended")
    if not await access_service.has_active_grant(
        db, visit.patient_id, visit.hospital_id, GrantPermission.WRITE
    ):
        raise Forbidden("No active access grant for this patient")

    now = datetime.utcnow()
    prescriptions = [
        {**p, "status": p.get("status", "active"), "prescribedAt": now.isoformat(), "visitId": visit.id}
        for p in (prescriptions or [])
    ]
    record = MedicalRecord(
        patient_id=visit.patient_id,
        hospital_id=visit.hospital_id,
        visit_id=visit.id,
        doctor_id=clinician.id,
        doctor_name=clinician.full_name,
        type="Consultation",
        diagnosis=diagnosis.strip(),
        symptoms=symptoms or [],
        notes=notes,
        prescriptions=prescriptions,
        created_at=now,
    )
    db.add(record)
    visit.diagnosis = record.diagnosis
    visit.updated_at = now

    passport = await passport_service.get_passport(db, visit.patient_id)
    if passport is not None:
        passport_service.append_consultation(
            passport,
            diagnosis={
                "condition": record.diagnosis,
                "date": now.isoformat(),
                "hospitalId": visit.hospital_id,
                "visitId": visit.id,
                "doctorName": record.doctor_name,
            },
            prescriptions=prescriptions,
            when=now,
        )
    await db.flush()

    await log_audit(
        db,
        action="CONSULTATION_COMPLETED",
        resource_type="medicalRecord",
        resource_id=record.id,
        user_id=clinician.id,
        hospital_id=visit.hospital_id,
        metadata={"patientId": visit.patient_id, "visitId": visit.id, "prescriptionCount": len(prescriptions)},
        request=request,
    )
    logger.info("Consultation recorded for visit %s by %s", visit.id, clinician.id)
    return record

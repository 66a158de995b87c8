"""
Prescriptions and clinical history — read models over consultation records.

Prescriptions live inside ``MedicalRecord.prescriptions``; each one is
addressed as ``{recordId}:{index}``. Clinicians see what they prescribed at
their own hospital, and a patient-wide history only while the hospital
holds an active read grant. Patients see their own prescriptions across
hospitals and a dose schedule for today derived from the active ones.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.exceptions import Forbidden, NotFound
from carepass.models.access_grant import GrantPermission
from carepass.models.hospital import Hospital
from carepass.models.medical_record import MedicalRecord
from carepass.models.user import User, UserRole, CLINICIAN_ROLES
from carepass.models.visit import Visit
from carepass.services import access_service, visit_service
from carepass.services.consultation_service import record_to_dict

logger = logging.getLogger(__name__)

DEFAULT_DOSE_TIMES = ["08:00"]

# Checked in order, first match wins
FREQUENCY_TIMES: tuple[tuple[re.Pattern, list[str]], ...] = (
    (re.compile(r"\b(four times|4x|qid)\b", re.I), ["06:00", "12:00", "18:00", "22:00"]),
    (re.compile(r"\b(three times|thrice|3x|tid|tds)\b", re.I), ["08:00", "14:00", "20:00"]),
    (re.compile(r"\b(twice|two times|2x|bid|bd)\b", re.I), ["08:00", "20:00"]),
    (re.compile(r"\b(night|bedtime|nocte)\b", re.I), ["21:00"]),
)

_TIME = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def prescription_entries(record: MedicalRecord) -> list[dict[str, Any]]:
    """Flatten one record's prescriptions, each tagged with where it came from."""
    entries = []
    for index, item in enumerate(record.prescriptions or []):
        entries.append({
            **item,
            "id": f"{record.id}:{index}",
            "recordId": record.id,
            "visitId": item.get("visitId") or record.visit_id,
            "patientId": record.patient_id,
            "hospitalId": record.hospital_id,
            "status": item.get("status", "active"),
            "doctorId": record.doctor_id,
            "doctorName": record.doctor_name,
            "diagnosis": record.diagnosis,
            "createdAt": item.get("prescribedAt") or _iso(record.created_at),
        })
    return entries


def _matches_status(entry: dict[str, Any], status: Optional[str]) -> bool:
    return not status or status == "all" or entry["status"] == status


async def _patients_by_id(db: AsyncSession, patient_ids: set[str]) -> dict[str, User]:
    if not patient_ids:
        return {}
    result = await db.execute(select(User).where(User.id.in_(patient_ids)))
    return {user.id: user for user in result.scalars().all()}


async def _hospital_names(db: AsyncSession, hospital_ids: set[str]) -> dict[str, str]:
    if not hospital_ids:
        return {}
    result = await db.execute(select(Hospital.id, Hospital.name).where(Hospital.id.in_(hospital_ids)))
    return {row.id: row.name for row in result.all()}


def _patient_summary(patient_id: str, patient: Optional[User]) -> dict[str, Any]:
    return {
        "id": patient_id,
        "name": patient.full_name if patient else "",
        "email": patient.email if patient else "",
    }


def _require_clinician(user: User) -> None:
    if user.role not in CLINICIAN_ROLES or not user.hospital_id:
        raise Forbidden("Forbidden - clinician access only")


# ---------------------------------------------------------------------------
# Clinician reads
# ---------------------------------------------------------------------------

async def _authored_records(
    db: AsyncSession,
    clinician: User,
    patient_id: Optional[str],
    limit: int,
) -> list[MedicalRecord]:
    query = select(MedicalRecord).where(
        MedicalRecord.doctor_id == clinician.id,
        MedicalRecord.hospital_id == clinician.hospital_id,
    )
    if patient_id:
        query = query.where(MedicalRecord.patient_id == patient_id)
    result = await db.execute(query.order_by(MedicalRecord.created_at.desc()).limit(limit))
    return list(result.scalars().all())


async def list_clinician_prescriptions(
    db: AsyncSession,
    clinician: User,
    *,
    patient_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Prescriptions the clinician wrote at their hospital, newest first."""
    _require_clinician(clinician)

    records = await _authored_records(db, clinician, patient_id, limit)
    patients = await _patients_by_id(db, {r.patient_id for r in records})
    prescriptions = []
    for record in records:
        for entry in prescription_entries(record):
            if not _matches_status(entry, status):
                continue
            entry["patient"] = _patient_summary(record.patient_id, patients.get(record.patient_id))
            prescriptions.append(entry)
    return prescriptions[:limit]


async def list_clinician_history(
    db: AsyncSession,
    clinician: User,
    *,
    patient_id: Optional[str] = None,
    limit: int = 100,
) -> list[dict[str, Any]]:
    """Consultations the clinician recorded, each with its prescriptions."""
    _require_clinician(clinician)

    records = await _authored_records(db, clinician, patient_id, limit)
    patients = await _patients_by_id(db, {r.patient_id for r in records})
    history = []
    for record in records:
        entry = record_to_dict(record)
        entry["patient"] = _patient_summary(record.patient_id, patients.get(record.patient_id))
        entry["prescriptions"] = [
            {"id": p["id"], "medication": p.get("medication"), "dosage": p.get("dosage")}
            for p in prescription_entries(record)
        ]
        history.append(entry)
    return history


async def get_patient_history(db: AsyncSession, clinician: User, patient_id: str) -> dict[str, Any]:
    """Everything the clinician's hospital holds on one patient.

    Needs an active read grant: once the visit is closed the hospital loses
    sight of the patient's history, including records it wrote itself.
    """
    _require_clinician(clinician)
    hospital_id = clinician.hospital_id
    if not await access_service.has_active_grant(db, patient_id, hospital_id, GrantPermission.READ):
        raise Forbidden("No active access grant for this patient")

    result = await db.execute(select(User).where(User.id == patient_id, User.role == UserRole.PATIENT))
    patient = result.scalar_one_or_none()
    if patient is None:
        raise NotFound("Patient not found")

    records = (
        await db.execute(
            select(MedicalRecord)
            .where(MedicalRecord.patient_id == patient_id, MedicalRecord.hospital_id == hospital_id)
            .order_by(MedicalRecord.created_at.desc())
        )
    ).scalars().all()
    visits = (
        await db.execute(
            select(Visit)
            .where(Visit.patient_id == patient_id, Visit.hospital_id == hospital_id)
            .order_by(Visit.check_in_time.desc())
        )
    ).scalars().all()

    logger.info("Clinician %s read history of patient %s", clinician.id, patient_id)
    return {
        "patient": _patient_summary(patient_id, patient),
        "records": [record_to_dict(r) for r in records],
        "prescriptions": [p for r in records for p in prescription_entries(r)],
        "visits": [visit_service.visit_to_dict(v) for v in visits],
    }


# ---------------------------------------------------------------------------
# Patient reads
# ---------------------------------------------------------------------------

async def list_patient_prescriptions(
    db: AsyncSession,
    patient: User,
    *,
    status: Optional[str] = "active",
) -> list[dict[str, Any]]:
    if patient.role != UserRole.PATIENT:
        raise Forbidden("Forbidden")

    records = (
        await db.execute(
            select(MedicalRecord)
            .where(MedicalRecord.patient_id == patient.id)
            .order_by(MedicalRecord.created_at.desc())
        )
    ).scalars().all()
    names = await _hospital_names(db, {r.hospital_id for r in records})

    prescriptions = []
    for record in records:
        for entry in prescription_entries(record):
            if _matches_status(entry, status):
                entry["hospital"] = names.get(record.hospital_id, "Unknown Hospital")
                prescriptions.append(entry)
    return prescriptions


def dose_times(prescription: dict[str, Any]) -> list[str]:
    """Clock times (``HH:MM``) a prescription is taken at during one day."""
    explicit = [t for t in prescription.get("specificTimes") or [] if isinstance(t, str) and _TIME.match(t)]
    if explicit:
        return sorted(set(explicit))
    frequency = str(prescription.get("frequency") or "")
    for pattern, times in FREQUENCY_TIMES:
        if pattern.search(frequency):
            return list(times)
    return list(DEFAULT_DOSE_TIMES)


async def scheduler_today(db: AsyncSession, patient: User, *, now: datetime | None = None) -> dict[str, Any]:
    """Today's doses for every active prescription, with adherence stats.

    No intake log is kept, so a dose is ``missed`` once its time has passed
    and ``pending`` until then.
    """
    now = now or datetime.utcnow()
    current = now.strftime("%H:%M")
    prescriptions = await list_patient_prescriptions(db, patient, status="active")

    schedule = []
    for prescription in prescriptions:
        for time in dose_times(prescription):
            schedule.append({
                "id": f"{prescription['id']}-{time}",
                "prescriptionId": prescription["id"],
                "medicationName": prescription.get("medication"),
                "dosage": prescription.get("dosage"),
                "time": time,
                "status": "missed" if time < current else "pending",
            })
    schedule.sort(key=lambda dose: dose["time"])

    taken = sum(1 for dose in schedule if dose["status"] == "taken")
    missed = sum(1 for dose in schedule if dose["status"] == "missed")
    return {
        "date": now.date().isoformat(),
        "schedule": schedule,
        "upcoming": [dose for dose in schedule if dose["status"] == "pending"],
        "stats": {
            "totalMedications": len(prescriptions),
            "todayDoses": len(schedule),
            "takenToday": taken,
            "missedToday": missed,
            "adherenceRate": round(taken / len(schedule) * 100) if schedule else 100,
        },
    }

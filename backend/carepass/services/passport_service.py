"""
E-Health passport service — lazy activation on first check-in, visit-history
bookkeeping, and the patient-facing passport view.

Passport fields are resolved from two profile documents: the dedicated
``patients`` row and the ``users`` row. Each field has an ordered tuple of
resolvers; the first one yielding a non-empty value wins, otherwise the
field default applies. Missing source data never raises.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.config import get_settings
from carepass.exceptions import BadRequest, NotFound
from carepass.models.ehealth_passport import (
    EHealthPassport,
    empty_medical_history,
    empty_visit_history,
    default_consent,
)
from carepass.models.hospital import Hospital
from carepass.models.medical_record import MedicalRecord
from carepass.models.patient import PatientProfile
from carepass.models.user import User
from carepass.models.visit import Visit

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Profile sources and resolvers
# ---------------------------------------------------------------------------

_EMPTY = (None, "", [], {})


@dataclass
class ProfileSource:
    """The two documents a passport is assembled from, as plain dicts."""
    patient: dict[str, Any] = field(default_factory=dict)
    user: dict[str, Any] = field(default_factory=dict)


Resolver = Callable[[ProfileSource], Any]


def _dig(document: dict[str, Any], path: str) -> Any:
    value: Any = document
    for key in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def from_patient(path: str) -> Resolver:
    return lambda source: _dig(source.patient, path)


def from_user(path: str) -> Resolver:
    return lambda source: _dig(source.user, path)


def resolve(source: ProfileSource, resolvers: tuple[Resolver, ...], default: Any = "") -> Any:
    for resolver in resolvers:
        value = resolver(source)
        if value not in _EMPTY:
            return value
    return default() if callable(default) else default


PERSONAL_INFO_RESOLVERS: dict[str, tuple[tuple[Resolver, ...], Any]] = {
    "firstName": ((from_patient("firstName"), from_user("profile.firstName"), from_user("firstName")), ""),
    "lastName": ((from_patient("lastName"), from_user("profile.lastName"), from_user("lastName")), ""),
    "dateOfBirth": ((from_patient("dateOfBirth"), from_user("profile.dateOfBirth"), from_user("profile.dob")), None),
    "gender": ((from_patient("gender"), from_user("profile.gender")), ""),
    "bloodType": ((from_patient("bloodType"), from_user("profile.bloodType")), ""),
    "phone": ((from_patient("phone"), from_user("profile.phone"), from_user("profile.phoneNumber")), ""),
    "email": ((from_user("email"),), ""),
    "nationalId": ((from_patient("nationalId"), from_user("profile.nationalId")), ""),
}

ADDRESS_FIELDS = ("street", "city", "state", "zipCode")


def build_source(user: User, profile: Optional[PatientProfile]) -> ProfileSource:
    patient: dict[str, Any] = {}
    if profile is not None:
        patient = {
            "firstName": profile.first_name,
            "lastName": profile.last_name,
            "phone": profile.phone,
            "dateOfBirth": profile.date_of_birth,
            "gender": profile.gender,
            "bloodType": profile.blood_type,
            "nationalId": profile.national_id,
            "address": profile.address or {},
            "emergencyContacts": profile.emergency_contacts or [],
        }
    return ProfileSource(
        patient=patient,
        user={"email": user.email, "profile": dict(user.profile or {})},
    )


def resolve_personal_info(source: ProfileSource) -> dict[str, Any]:
    return {
        name: resolve(source, resolvers, default)
        for name, (resolvers, default) in PERSONAL_INFO_RESOLVERS.items()
    }


def resolve_primary_address(source: ProfileSource) -> dict[str, Any]:
    address = {
        name: resolve(source, (from_patient(f"address.{name}"), from_user(f"profile.address.{name}")))
        for name in ADDRESS_FIELDS
    }
    address["country"] = resolve(
        source,
        (from_patient("address.country"), from_user("profile.address.country")),
        get_settings().DEFAULT_COUNTRY,
    )
    address["type"] = "home"
    return address


def resolve_emergency_contacts(source: ProfileSource) -> list[dict[str, Any]]:
    return resolve(
        source,
        (from_patient("emergencyContacts"), from_user("profile.emergencyContacts")),
        list,
    )


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------

def passport_to_dict(passport: EHealthPassport) -> dict[str, Any]:
    return {
        "patientId": passport.patient_id,
        "isActive": passport.is_active,
        "activatedAt": passport.activated_at.isoformat() if passport.activated_at else None,
        "activatedBy": passport.activated_by,
        "personalInfo": passport.personal_info or {},
        "addresses": passport.addresses or {},
        "emergencyContacts": passport.emergency_contacts or [],
        "medicalHistory": passport.medical_history or empty_medical_history(),
        "diagnoses": passport.diagnoses or [],
        "prescriptions": passport.prescriptions or [],
        "visitHistory": passport.visit_history or empty_visit_history(),
        "consent": passport.consent or default_consent(),
        "version": passport.version,
        "createdAt": passport.created_at.isoformat() if passport.created_at else None,
        "updatedAt": passport.updated_at.isoformat() if passport.updated_at else None,
    }


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

async def get_passport(db: AsyncSession, patient_id: str) -> EHealthPassport | None:
    result = await db.execute(select(EHealthPassport).where(EHealthPassport.patient_id == patient_id))
    return result.scalar_one_or_none()


def is_first_activation(passport: EHealthPassport | None) -> bool:
    return passport is None or not passport.is_active


async def activate_passport(
    db: AsyncSession,
    patient: User,
    hospital_id: str,
    existing: EHealthPassport | None = None,
    *,
    when: datetime | None = None,
) -> EHealthPassport:
    """Create (or re-activate) the passport of *patient*.

    A re-activated passport keeps its medical history, consent and
    already-populated personal fields; only blanks are filled from the
    profile documents.
    """
    when = when or datetime.utcnow()
    result = await db.execute(select(PatientProfile).where(PatientProfile.user_id == patient.id))
    source = build_source(patient, result.scalar_one_or_none())

    personal_info = resolve_personal_info(source)
    addresses = {"primary": resolve_primary_address(source)}
    emergency_contacts = resolve_emergency_contacts(source)

    if existing is None:
        passport = EHealthPassport(
            patient_id=patient.id,
            personal_info=personal_info,
            addresses=addresses,
            emergency_contacts=emergency_contacts,
            medical_history=empty_medical_history(),
            diagnoses=[],
            prescriptions=[],
            visit_history=empty_visit_history(),
            consent=default_consent(),
            version=1,
        )
        db.add(passport)
    else:
        passport = existing
        merged = dict(personal_info)
        merged.update({k: v for k, v in (passport.personal_info or {}).items() if v not in _EMPTY})
        passport.personal_info = merged
        if not passport.addresses:
            passport.addresses = addresses
        if not passport.emergency_contacts:
            passport.emergency_contacts = emergency_contacts
        history = empty_medical_history()
        history.update(passport.medical_history or {})
        passport.medical_history = history
        passport.visit_history = passport.visit_history or empty_visit_history()
        passport.consent = passport.consent or default_consent()
        passport.version = (passport.version or 1) + 1

    passport.is_active = True
    passport.activated_at = when
    passport.activated_by = hospital_id
    passport.updated_at = when
    await db.flush()
    logger.info("E-Health passport activated for patient %s by hospital %s", patient.id, hospital_id)
    return passport


def record_visit(passport: EHealthPassport, hospital_id: str, when: datetime) -> dict[str, Any]:
    """Count one visit and remember *hospital_id*. Returns the new visit history."""
    history = copy.deepcopy(passport.visit_history or empty_visit_history())
    history["totalVisits"] = int(history.get("totalVisits") or 0) + 1
    hospitals = list(history.get("hospitals") or [])
    if hospital_id not in hospitals:
        hospitals.append(hospital_id)
    history["hospitals"] = hospitals
    history["lastVisit"] = when.isoformat()
    # JSON columns only notice reassignment
    passport.visit_history = history
    passport.updated_at = when
    return history


def append_consultation(
    passport: EHealthPassport,
    *,
    diagnosis: dict[str, Any],
    prescriptions: list[dict[str, Any]],
    when: datetime,
) -> None:
    passport.diagnoses = list(passport.diagnoses or []) + [diagnosis]
    passport.prescriptions = list(passport.prescriptions or []) + prescriptions
    passport.updated_at = when


async def update_passport(db: AsyncSession, patient: User, changes: dict[str, Any]) -> EHealthPassport:
    """Patient self-service edits, limited to consent and medical history."""
    passport = await get_passport(db, patient.id)
    if is_first_activation(passport):
        raise NotFound("PASSPORT_NOT_ACTIVATED")

    consent = changes.get("consent")
    history = changes.get("medicalHistory")
    if consent is None and history is None:
        raise BadRequest("No fields to update")

    if consent is not None:
        merged = dict(passport.consent or default_consent())
        merged.update(consent)
        passport.consent = merged
    if history is not None:
        unknown = set(history) - set(empty_medical_history())
        if unknown:
            raise BadRequest(f"Unknown medical history sections: {sorted(unknown)}")
        merged = dict(passport.medical_history or empty_medical_history())
        merged.update(history)
        passport.medical_history = merged

    passport.version = (passport.version or 1) + 1
    passport.updated_at = datetime.utcnow()
    await db.flush()
    logger.info("Patient %s updated passport (version %d)", patient.id, passport.version)
    return passport


# ---------------------------------------------------------------------------
# Read model
# ---------------------------------------------------------------------------

async def _hospital_names(db: AsyncSession, hospital_ids: set[str]) -> dict[str, str]:
    if not hospital_ids:
        return {}
    result = await db.execute(select(Hospital.id, Hospital.name).where(Hospital.id.in_(hospital_ids)))
    return {row.id: row.name for row in result.all()}


async def get_passport_view(db: AsyncSession, patient: User) -> dict[str, Any]:
    passport = await get_passport(db, patient.id)
    if is_first_activation(passport):
        raise NotFound("PASSPORT_NOT_ACTIVATED")

    visits = (
        await db.execute(
            select(Visit).where(Visit.patient_id == patient.id).order_by(Visit.check_in_time.desc())
        )
    ).scalars().all()
    records = (
        await db.execute(
            select(MedicalRecord)
            .where(MedicalRecord.patient_id == patient.id)
            .order_by(MedicalRecord.created_at.desc())
        )
    ).scalars().all()
    names = await _hospital_names(db, {v.hospital_id for v in visits} | {r.hospital_id for r in records})

    diagnoses = [
        {
            "condition": r.diagnosis,
            "date": r.created_at.isoformat() if r.created_at else None,
            "diagnosedBy": r.doctor_name or "Unknown Doctor",
            "hospital": names.get(r.hospital_id, "Unknown Hospital"),
            "notes": r.notes or "",
            "source": "medical_record",
            "recordId": r.id,
        }
        for r in records
    ]
    recorded_visits = {r.visit_id for r in records if r.visit_id}
    diagnoses.extend(
        {
            "condition": v.diagnosis,
            "date": v.check_in_time.isoformat() if v.check_in_time else None,
            "diagnosedBy": "Unknown Doctor",
            "hospital": names.get(v.hospital_id, "Unknown Hospital"),
            "notes": "",
            "source": "visit",
            "visitId": v.id,
        }
        for v in visits
        if v.diagnosis and v.diagnosis.strip() and v.id not in recorded_visits
    )
    diagnoses.sort(key=lambda d: d["date"] or "", reverse=True)

    profile = await db.execute(select(PatientProfile).where(PatientProfile.user_id == patient.id))
    fresh = resolve_personal_info(build_source(patient, profile.scalar_one_or_none()))
    personal_info = dict(passport.personal_info or {})
    personal_info.update({k: v for k, v in fresh.items() if v not in _EMPTY})

    history = passport.medical_history or empty_medical_history()
    return {
        "isActive": passport.is_active,
        "activatedAt": passport.activated_at.isoformat() if passport.activated_at else None,
        "personalInfo": personal_info,
        "addresses": passport.addresses or {},
        "emergencyContacts": passport.emergency_contacts or [],
        "diagnoses": diagnoses,
        "prescriptions": [p for p in (passport.prescriptions or []) if p.get("status", "active") == "active"],
        "visits": [
            {
                "id": v.id,
                "date": v.check_in_time.isoformat() if v.check_in_time else None,
                "hospital": names.get(v.hospital_id, "Unknown Hospital"),
                "department": v.department or "Unknown",
                "purpose": v.purpose or "General consultation",
                "status": v.status.value,
            }
            for v in visits[:10]
        ],
        "allergies": history.get("allergies", []),
        "immunizations": history.get("immunizations", []),
        "medicalHistory": history,
        "visitHistory": passport.visit_history or empty_visit_history(),
        "consent": passport.consent or default_consent(),
    }

from datetime import datetime

from sqlalchemy import Column, String, DateTime, Boolean, Integer

from carepass.db.postgres import Base, JSONType


def empty_medical_history() -> dict:
    return {
        "allergies": [],
        "chronicConditions": [],
        "surgeries": [],
        "familyHistory": [],
        "immunizations": [],
        "currentMedications": [],
    }


def empty_visit_history() -> dict:
    return {"totalVisits": 0, "hospitals": [], "lastVisit": None}


def default_consent() -> dict:
    return {"dataSharing": True, "researchParticipation": False, "emergencyAccess": True}


class EHealthPassport(Base):
    """Cross-hospital medical record, one per patient, activated on first check-in."""
    __tablename__ = "ehealth_passports"

    patient_id = Column(String, primary_key=True)
    is_active = Column(Boolean, default=False)
    activated_at = Column(DateTime, nullable=True)
    activated_by = Column(String, nullable=True)  # hospital id

    personal_info = Column(JSONType, default=dict)
    addresses = Column(JSONType, default=dict)
    emergency_contacts = Column(JSONType, default=list)
    medical_history = Column(JSONType, default=empty_medical_history)
    diagnoses = Column(JSONType, default=list)
    prescriptions = Column(JSONType, default=list)
    visit_history = Column(JSONType, default=empty_visit_history)
    consent = Column(JSONType, default=default_consent)

    version = Column(Integer, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

from datetime import datetime

from sqlalchemy import Column, String, DateTime

from carepass.db.postgres import Base, JSONType


class PatientProfile(Base):
    """Dedicated patient profile, filled in by the patient after registration.

    Keyed by the owning user's id. Any field may be missing; the health
    passport falls back to the user document when it is.
    """
    __tablename__ = "patients"

    user_id = Column(String, primary_key=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    date_of_birth = Column(String, nullable=True)  # ISO date as entered
    gender = Column(String, nullable=True)
    blood_type = Column(String, nullable=True)
    national_id = Column(String, nullable=True)
    address = Column(JSONType, nullable=True)  # street, city, state, zipCode, country
    emergency_contacts = Column(JSONType, default=list)
    allergies = Column(JSONType, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

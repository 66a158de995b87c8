import enum
from datetime import datetime

from sqlalchemy import Column, String, Enum, DateTime, Boolean

from carepass.db.postgres import Base, JSONType, enum_values


class UserRole(str, enum.Enum):
    PATIENT = "patient"
    SUPER_ADMIN = "super_admin"
    HOSPITAL_ADMIN = "hospital_admin"
    HOSPITAL_STAFF = "hospital_staff"
    RECEPTIONIST = "receptionist"
    DOCTOR = "doctor"
    NURSE = "nurse"
    PHARMACIST = "pharmacist"
    LAB_TECH = "lab_tech"
    BILLING = "billing"
    RECORDS_OFFICER = "records_officer"


# Roles allowed to check patients in and out at their hospital
CHECK_IN_ROLES = frozenset({
    UserRole.HOSPITAL_ADMIN,
    UserRole.HOSPITAL_STAFF,
    UserRole.RECEPTIONIST,
})
CHECK_OUT_ROLES = CHECK_IN_ROLES

# Every role that belongs to a hospital tenant
HOSPITAL_ROLES = frozenset({
    UserRole.HOSPITAL_ADMIN,
    UserRole.HOSPITAL_STAFF,
    UserRole.RECEPTIONIST,
    UserRole.DOCTOR,
    UserRole.NURSE,
    UserRole.PHARMACIST,
    UserRole.LAB_TECH,
    UserRole.BILLING,
    UserRole.RECORDS_OFFICER,
})

CLINICIAN_ROLES = frozenset({UserRole.DOCTOR, UserRole.HOSPITAL_ADMIN})

ADMIN_ROLES = frozenset({UserRole.HOSPITAL_ADMIN, UserRole.SUPER_ADMIN})


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)  # identity-provider uid
    email = Column(String, unique=True, nullable=False, index=True)
    role = Column(
        Enum(UserRole, name="userrole", values_callable=enum_values),
        nullable=False,
        default=UserRole.PATIENT,
    )
    hospital_id = Column(String, nullable=True, index=True)
    department = Column(String, nullable=True)
    profile = Column(JSONType, default=dict)  # firstName, lastName, phone, dateOfBirth...
    is_active = Column(Boolean, default=True)
    setup_complete = Column(Boolean, default=False)
    require_password_reset = Column(Boolean, default=False)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def full_name(self) -> str:
        profile = self.profile or {}
        return f"{profile.get('firstName') or ''} {profile.get('lastName') or ''}".strip()

from carepass.models.user import User, UserRole
from carepass.models.patient import PatientProfile
from carepass.models.hospital import Hospital, HospitalStatus, Department, DepartmentStatus
from carepass.models.visit import Visit, VisitStatus, CheckOutMethod
from carepass.models.access_grant import AccessGrant, GrantStatus, GrantPermission
from carepass.models.ehealth_passport import EHealthPassport
from carepass.models.diagnosis_session import DiagnosisSession
from carepass.models.medical_record import MedicalRecord
from carepass.models.audit_log import AuditLog

__all__ = [
    "User",
    "UserRole",
    "PatientProfile",
    "Hospital",
    "HospitalStatus",
    "Department",
    "DepartmentStatus",
    "Visit",
    "VisitStatus",
    "CheckOutMethod",
    "AccessGrant",
    "GrantStatus",
    "GrantPermission",
    "EHealthPassport",
    "DiagnosisSession",
    "MedicalRecord",
    "AuditLog",
]

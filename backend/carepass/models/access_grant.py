import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Enum, DateTime

from carepass.db.postgres import Base, JSONType, enum_values


class GrantStatus(str, enum.Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class GrantPermission(str, enum.Enum):
    READ = "read"
    WRITE = "write"


DEFAULT_PERMISSIONS = [GrantPermission.READ.value, GrantPermission.WRITE.value]


class AccessGrant(Base):
    """A hospital's permission to a patient's records for the lifetime of one visit."""
    __tablename__ = "access_grants"

    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    patient_id = Column(String, nullable=False, index=True)
    hospital_id = Column(String, nullable=False, index=True)
    visit_id = Column(String, nullable=False, index=True)
    permissions = Column(JSONType, default=lambda: list(DEFAULT_PERMISSIONS))
    status = Column(
        Enum(GrantStatus, name="grantstatus", values_callable=enum_values),
        nullable=False,
        default=GrantStatus.ACTIVE,
    )
    granted_at = Column(DateTime, default=datetime.utcnow)
    revoked_at = Column(DateTime, nullable=True)
    revoked_by = Column(String, nullable=True)

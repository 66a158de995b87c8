import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Enum, DateTime, Boolean

from carepass.db.postgres import Base, JSONType, enum_values


class HospitalStatus(str, enum.Enum):
    ACTIVE = "active"
    PENDING = "pending"
    INACTIVE = "inactive"


class DepartmentStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Hospital(Base):
    __tablename__ = "hospitals"

    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    address = Column(JSONType, default=dict)
    status = Column(
        Enum(HospitalStatus, name="hospitalstatus", values_callable=enum_values),
        default=HospitalStatus.PENDING,
    )
    admin_user_id = Column(String, nullable=True)
    setup_completed = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Department(Base):
    __tablename__ = "departments"

    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    hospital_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String, default="")
    status = Column(
        Enum(DepartmentStatus, name="departmentstatus", values_callable=enum_values),
        default=DepartmentStatus.ACTIVE,
    )
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

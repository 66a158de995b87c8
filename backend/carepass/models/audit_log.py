import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime

from carepass.db.postgres import Base, JSONType


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    user_id = Column(String, nullable=True, index=True)
    action = Column(String, nullable=False)  # "PATIENT_CHECK_IN", "PATIENT_CHECK_OUT", ...
    resource_type = Column(String, nullable=False)  # "visit", "user", "diagnosisSession"
    resource_id = Column(String, nullable=True)
    hospital_id = Column(String, nullable=True)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSONType, default=dict)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime

from carepass.db.postgres import Base, JSONType


class MedicalRecord(Base):
    __tablename__ = "medical_records"

    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    patient_id = Column(String, nullable=False, index=True)
    hospital_id = Column(String, nullable=False, index=True)
    visit_id = Column(String, nullable=True, index=True)
    doctor_id = Column(String, nullable=False)
    doctor_name = Column(String, nullable=True)
    type = Column(String, default="Consultation")
    diagnosis = Column(String, nullable=False)
    symptoms = Column(JSONType, default=list)
    notes = Column(String, nullable=True)
    prescriptions = Column(JSONType, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)

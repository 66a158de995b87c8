from datetime import datetime

from sqlalchemy import Column, String, DateTime, Integer

from carepass.db.postgres import Base, JSONType


class DiagnosisSession(Base):
    """One AI symptom analysis. Written once, never updated."""
    __tablename__ = "diagnosis_sessions"

    id = Column(String, primary_key=True)  # diag_{patientId}_{epochMillis}
    patient_id = Column(String, nullable=False, index=True)
    symptoms = Column(JSONType, default=list)
    age = Column(Integer, nullable=True)
    gender = Column(String, nullable=True)
    additional_info = Column(String, nullable=True)
    possible_conditions = Column(JSONType, default=list)
    recommendations = Column(JSONType, default=list)
    urgency_level = Column(String, nullable=True)
    raw_response = Column(JSONType, nullable=True)  # parsed model output, verbatim
    status = Column(String, default="completed")
    created_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

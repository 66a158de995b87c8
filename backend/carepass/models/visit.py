import enum
from datetime import datetime, timezone

from sqlalchemy import Column, String, Enum, DateTime, Boolean, Index, text

from carepass.db.postgres import Base, enum_values


class VisitStatus(str, enum.Enum):
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"


class CheckOutMethod(str, enum.Enum):
    STAFF = "staff"
    SELF_SERVICE = "self_service"


class Visit(Base):
    __tablename__ = "visits"
    __table_args__ = (
        # One open visit per patient per hospital
        Index(
            "uq_visits_open_per_hospital",
            "patient_id",
            "hospital_id",
            unique=True,
            postgresql_where=text("status = 'checked_in'"),
            sqlite_where=text("status = 'checked_in'"),
        ),
    )

    id = Column(String, primary_key=True)  # visit_{patientId}_{epochMillis}
    patient_id = Column(String, nullable=False, index=True)
    hospital_id = Column(String, nullable=False, index=True)
    status = Column(
        Enum(VisitStatus, name="visitstatus", values_callable=enum_values),
        nullable=False,
        default=VisitStatus.CHECKED_IN,
    )
    purpose = Column(String, nullable=False)
    department = Column(String, nullable=False)
    is_first_visit = Column(Boolean, default=False)
    check_in_time = Column(DateTime, default=datetime.utcnow)
    check_out_time = Column(DateTime, nullable=True)
    checked_in_by = Column(String, nullable=True)
    checked_out_by = Column(String, nullable=True)
    check_out_method = Column(
        Enum(CheckOutMethod, name="checkoutmethod", values_callable=enum_values),
        nullable=True,
    )
    diagnosis = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @staticmethod
    def make_id(patient_id: str, when: datetime) -> str:
        # Naive datetimes here are UTC
        millis = int(when.replace(tzinfo=timezone.utc).timestamp() * 1000)
        return f"visit_{patient_id}_{millis}"

"""Treatment model definitions."""

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, String, func
from sqlalchemy.orm import relationship

from rehab_clinic.database import Base
from rehab_clinic.scheduling import format_minutes


TREATMENT_STATUSES = ("Scheduled", "In Progress", "Completed", "Cancelled", "No Show")
TREATMENT_OUTCOMES = ("Excellent", "Good", "Fair", "Poor", "No Change", "Deteriorated")


class Treatment(Base):
    """Represents a delivered (or planned) treatment session and its clinical record."""
    __tablename__ = "treatments"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"))
    date = Column(Date, nullable=False, index=True)
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="Scheduled", index=True)
    notes = Column(String)
    clinical_notes = Column(JSON, nullable=False, default=dict)  # assessment/intervention/progress/recommendations
    outcome = Column(String)
    pain_level_before = Column(Integer)
    pain_level_after = Column(Integer)
    next_appointment_recommended = Column(Boolean, nullable=False, default=False)
    next_appointment_date = Column(Date)
    billing_amount = Column(Float)
    billing_paid = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    staff = relationship("Staff")
    service = relationship("Service")

    @property
    def start_time(self) -> str:
        return format_minutes(self.start_minute)

    @property
    def end_time(self) -> str:
        return format_minutes(self.end_minute)

    @property
    def duration_minutes(self) -> int:
        return self.end_minute - self.start_minute

    @property
    def pain_improvement(self) -> int | None:
        if self.pain_level_before is None or self.pain_level_after is None:
            return None
        return self.pain_level_before - self.pain_level_after

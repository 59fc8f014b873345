"""Appointment model definitions."""

from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
    text,
)
from sqlalchemy.orm import relationship

from rehab_clinic.database import Base
from rehab_clinic.scheduling import TimeRange, format_minutes


APPOINTMENT_STATUSES = (
    "Scheduled",
    "Confirmed",
    "In Progress",
    "Completed",
    "Cancelled",
    "No Show",
    "Rescheduled",
)
# Appointments in these states no longer hold the staff member's time
INACTIVE_STATUSES = ("Cancelled", "No Show")
APPOINTMENT_PRIORITIES = ("Low", "Normal", "High", "Urgent")
APPOINTMENT_TYPES = ("Initial Consultation", "Follow-up", "Treatment", "Assessment", "Emergency")
PAYMENT_METHODS = ("Cash", "Card", "Insurance", "Transfer", "Online", "Pending")
PAYMENT_STATUSES = ("Pending", "Paid", "Partially Paid", "Refunded", "Failed")

_active_booking = text("status NOT IN ('Cancelled', 'No Show')")


class Appointment(Base):
    """Represents a booked block of a staff member's time for one patient."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_appointments_staff_slot",
            "staff_id",
            "appointment_date",
            "start_minute",
            "end_minute",
            unique=True,
            sqlite_where=_active_booking,
            postgresql_where=_active_booking,
        ),
        Index("idx_appointments_patient_date", "patient_id", "appointment_date"),
        Index("idx_appointments_date_status", "appointment_date", "status"),
        Index("idx_appointments_staff_status", "staff_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    appointment_date = Column(Date, nullable=False)
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="Scheduled")
    priority = Column(String, nullable=False, default="Normal")
    appointment_type = Column(String, nullable=False, default="Treatment")
    notes = Column(String)
    patient_notes = Column(String)
    symptoms = Column(JSON, nullable=False, default=list)
    reason_for_visit = Column(String, nullable=False)
    is_first_visit = Column(Boolean, nullable=False, default=False)
    reminder_sent = Column(Boolean, nullable=False, default=False)
    reminder_date = Column(DateTime)
    confirmation_required = Column(Boolean, nullable=False, default=True)
    confirmed_at = Column(DateTime)
    confirmed_by = Column(String)
    cancellation_reason = Column(String)
    cancelled_at = Column(DateTime)
    rescheduled_from_date = Column(Date)
    rescheduled_from_minute = Column(Integer)
    rescheduled_reason = Column(String)
    attendance_history = Column(JSON, nullable=False, default=list)
    payment_amount = Column(Float)
    payment_method = Column(String)
    payment_status = Column(String, nullable=False, default="Pending")
    payment_transaction_id = Column(String)
    paid_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient")
    staff = relationship("Staff")
    service = relationship("Service")

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(self.start_minute, self.end_minute)

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
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    @property
    def rescheduled_from_time(self) -> str | None:
        if self.rescheduled_from_minute is None:
            return None
        return format_minutes(self.rescheduled_from_minute)

    def is_on(self, day: date) -> bool:
        return self.appointment_date == day

    def confirm(self, confirmed_by: str, now: datetime | None = None) -> None:
        self.status = "Confirmed"
        self.confirmed_at = now or datetime.now()
        self.confirmed_by = confirmed_by

    def cancel(self, reason: str, now: datetime | None = None) -> None:
        self.status = "Cancelled"
        self.cancellation_reason = reason
        self.cancelled_at = now or datetime.now()

    def reschedule(self, new_date: date, new_range: TimeRange, reason: str) -> None:
        self.rescheduled_from_date = self.appointment_date
        self.rescheduled_from_minute = self.start_minute
        self.rescheduled_reason = reason
        self.appointment_date = new_date
        self.start_minute = new_range.start
        self.end_minute = new_range.end
        self.status = "Rescheduled"

    def complete(self, now: datetime | None = None) -> None:
        self.status = "Completed"
        record = {
            "date": (now or datetime.now()).isoformat(),
            "status": "Present",
            "notes": "Appointment completed successfully",
        }
        # Reassign so the JSON column is flagged as modified
        self.attendance_history = [*(self.attendance_history or []), record]

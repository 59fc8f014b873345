"""Staff and weekly availability model definitions."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import relationship

from rehab_clinic.database import Base


STAFF_ROLES = ("Doctor", "Therapist", "Admin")
DAYS_OF_WEEK = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


class Staff(Base):
    """Represents a clinician or administrator who can be booked."""
    __tablename__ = "staff"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String, nullable=False, index=True)
    last_name = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False, index=True)
    specialty = Column(String, index=True)
    phone = Column(String)
    email = Column(String, index=True)
    qualifications = Column(JSON, nullable=False, default=list)
    experience = Column(Integer)
    bio = Column(String)
    profile_image = Column(String)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    availability = relationship(
        "StaffAvailability",
        back_populates="staff",
        cascade="all, delete-orphan",
        order_by=lambda: [StaffAvailability.day_index, StaffAvailability.start_minute],
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def available_days(self) -> list[str]:
        return [window.day_of_week for window in self.availability]

    def windows_for(self, day_of_week: str) -> list["StaffAvailability"]:
        return [window for window in self.availability if window.day_of_week == day_of_week]


class StaffAvailability(Base):
    """One recurring working window, ``[start_minute, end_minute)`` on a weekday."""
    __tablename__ = "staff_availability"

    id = Column(Integer, primary_key=True)
    staff_id = Column(Integer, ForeignKey("staff.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = Column(String, nullable=False)
    day_index = Column(Integer, nullable=False)  # 0 = Monday, matches date.weekday()
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)

    staff = relationship("Staff", back_populates="availability")

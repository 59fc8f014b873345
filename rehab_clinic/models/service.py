"""Service model definitions."""

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, String, func

from rehab_clinic.database import Base


SERVICE_CATEGORIES = (
    "Physiotherapy",
    "Occupational Therapy",
    "Speech Therapy",
    "Rehabilitation",
    "Consultation",
    "Other",
)


class Service(Base):
    """Represents a bookable clinic service with a nominal duration."""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False, index=True)
    description = Column(String, nullable=False)
    category = Column(String, nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=False)
    price = Column(Float, nullable=False, index=True)
    specialty_required = Column(String, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    prerequisites = Column(JSON, nullable=False, default=list)
    contraindications = Column(JSON, nullable=False, default=list)
    benefits = Column(JSON, nullable=False, default=list)
    equipment = Column(JSON, nullable=False, default=list)
    session_count = Column(Integer, nullable=False, default=1)
    image = Column(String)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def duration_hours(self) -> float:
        return self.duration_minutes / 60

    def can_be_provided_by(self, staff) -> bool:
        if not self.specialty_required:
            return True
        return staff.specialty == self.specialty_required

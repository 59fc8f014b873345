"""Patient model definitions."""

from datetime import date

from sqlalchemy import JSON, Column, Date, DateTime, Integer, String, func

from rehab_clinic.database import Base


GENDERS = ("Male", "Female", "Other")


class Patient(Base):
    """Represents a clinic patient and their contact details."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String, nullable=False, index=True)
    last_name = Column(String, nullable=False, index=True)
    date_of_birth = Column(Date, nullable=False)
    gender = Column(String, nullable=False)
    phone = Column(String)
    email = Column(String, unique=True, index=True)
    address = Column(String)
    medical_history = Column(JSON, nullable=False, default=list)
    emergency_contact_name = Column(String)
    emergency_contact_relation = Column(String)
    emergency_contact_phone = Column(String)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def age_on(self, today: date) -> int | None:
        if self.date_of_birth is None:
            return None
        age = today.year - self.date_of_birth.year
        if (today.month, today.day) < (self.date_of_birth.month, self.date_of_birth.day):
            age -= 1
        return age

    @property
    def age(self) -> int | None:
        return self.age_on(date.today())

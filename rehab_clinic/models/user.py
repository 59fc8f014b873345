"""User model definitions."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, func

from rehab_clinic.database import Base


USER_ROLES = ("patient", "staff", "admin")


class User(Base):
    """Represents an account that can sign in to the API."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(String, nullable=False, default="patient", index=True)  # patient/staff/admin
    phone = Column(String)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login = Column(DateTime)
    reset_password_token = Column(String, index=True)
    reset_password_expires = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

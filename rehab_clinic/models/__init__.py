"""ORM models. Importing this package registers every table on ``Base.metadata``."""

from rehab_clinic.models.user import User
from rehab_clinic.models.patient import Patient
from rehab_clinic.models.staff import Staff, StaffAvailability
from rehab_clinic.models.service import Service
from rehab_clinic.models.appointment import Appointment
from rehab_clinic.models.treatment import Treatment

__all__ = [
    "Appointment",
    "Patient",
    "Service",
    "Staff",
    "StaffAvailability",
    "Treatment",
    "User",
]

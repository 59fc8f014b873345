import logging
from datetime import date

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy import or_
from sqlalchemy.orm import Session

from rehab_clinic.auth.dependencies import get_current_user, owns_patient, require_roles
from rehab_clinic.database import get_db
from rehab_clinic.models.appointment import Appointment
from rehab_clinic.models.patient import GENDERS, Patient
from rehab_clinic.models.treatment import Treatment
from rehab_clinic.models.user import User
from rehab_clinic.routes.common import (
    MessageResponse,
    Page,
    Pagination,
    bad_request,
    build_page,
    database_errors,
    forbidden,
    normalize_phone,
    normalize_string_list,
    not_found,
    paginate,
    pagination_params,
    require_text,
)
from rehab_clinic.routes.schemas import AppointmentResponse, TreatmentResponse, appointment_to_response

router = APIRouter(tags=['patients'])
logger = logging.getLogger(__name__)


class EmergencyContact(BaseModel):
    name: str | None = None
    relation: str | None = None
    phone: str | None = None


class PatientRequest(BaseModel):
    first_name: str
    last_name: str
    date_of_birth: date
    gender: str
    phone: str | None = None
    email: EmailStr | None = None
    address: str | None = None
    medical_history: list[str] = []
    emergency_contact: EmergencyContact | None = None

    @field_validator('first_name')
    @classmethod
    def validate_first_name(cls, value: str) -> str:
        return require_text(value, 'First name', 2, 50)

    @field_validator('last_name')
    @classmethod
    def validate_last_name(cls, value: str) -> str:
        return require_text(value, 'Last name', 2, 50)

    @field_validator('date_of_birth')
    @classmethod
    def validate_date_of_birth(cls, value: date) -> date:
        if value >= date.today():
            raise ValueError('Date of birth must be in the past.')
        return value

    @field_validator('gender')
    @classmethod
    def validate_gender(cls, value: str) -> str:
        normalized = value.strip().capitalize()
        if normalized not in GENDERS:
            raise ValueError('Gender must be Male, Female, or Other.')
        return normalized

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, value: str | None) -> str | None:
        return normalize_phone(value)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str | None) -> str | None:
        return value.strip().lower() if value else None

    @field_validator('medical_history')
    @classmethod
    def validate_medical_history(cls, value: list[str]) -> list[str]:
        return normalize_string_list(value)


class MedicalHistoryRequest(BaseModel):
    medical_history: list[str]

    @field_validator('medical_history')
    @classmethod
    def validate_medical_history(cls, value: list[str]) -> list[str]:
        return normalize_string_list(value)


class PatientSummaryResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    full_name: str
    date_of_birth: date
    gender: str
    age: int | None = None
    phone: str | None = None
    email: str | None = None

    class Config:
        from_attributes = True


class PatientResponse(PatientSummaryResponse):
    address: str | None = None
    medical_history: list[str] = []
    emergency_contact: EmergencyContact | None = None


def patient_to_response(patient: Patient) -> PatientResponse:
    return PatientResponse(
        id=patient.id,
        first_name=patient.first_name,
        last_name=patient.last_name,
        full_name=patient.full_name,
        date_of_birth=patient.date_of_birth,
        gender=patient.gender,
        age=patient.age,
        phone=patient.phone,
        email=patient.email,
        address=patient.address,
        medical_history=patient.medical_history or [],
        emergency_contact=EmergencyContact(
            name=patient.emergency_contact_name,
            relation=patient.emergency_contact_relation,
            phone=patient.emergency_contact_phone,
        ),
    )


def apply_patient_request(patient: Patient, data: PatientRequest) -> None:
    contact = data.emergency_contact or EmergencyContact()
    patient.first_name = data.first_name
    patient.last_name = data.last_name
    patient.date_of_birth = data.date_of_birth
    patient.gender = data.gender
    patient.phone = data.phone
    patient.email = data.email
    patient.address = data.address
    patient.medical_history = data.medical_history
    patient.emergency_contact_name = contact.name
    patient.emergency_contact_relation = contact.relation
    patient.emergency_contact_phone = contact.phone


def get_patient_or_404(db: Session, patient_id: int) -> Patient:
    patient = db.get(Patient, patient_id)
    if patient is None:
        raise not_found('Patient')
    return patient


def ensure_patient_access(current_user: User, patient_id: int, db: Session, action: str = 'access') -> None:
    """Staff and admins see every patient; patients only their own record."""
    if current_user.role == 'patient' and not owns_patient(current_user, patient_id, db):
        raise forbidden(f'Not authorized to {action} this patient data')


def ensure_unique_email(db: Session, email: str | None, exclude_id: int | None = None) -> None:
    if not email:
        return
    query = db.query(Patient).filter(Patient.email == email)
    if exclude_id is not None:
        query = query.filter(Patient.id != exclude_id)
    if query.first():
        raise bad_request('Patient with this email already exists')


@router.get('/', response_model=Page[PatientSummaryResponse])
def list_patients(
    search: str = Query(default=''),
    pagination: Pagination = Depends(pagination_params),
    current_user: User = Depends(require_roles('staff', 'admin')),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        query = db.query(Patient)
        term = search.strip()
        if term:
            pattern = f'%{term}%'
            query = query.filter(
                or_(
                    Patient.first_name.ilike(pattern),
                    Patient.last_name.ilike(pattern),
                    Patient.email.ilike(pattern),
                    Patient.phone.ilike(pattern),
                )
            )
        query = query.order_by(Patient.last_name.asc(), Patient.first_name.asc())
        patients, total = paginate(query, pagination)
        return build_page([PatientSummaryResponse.model_validate(patient) for patient in patients], total, pagination)


@router.get('/{patient_id}', response_model=PatientResponse)
def get_patient(patient_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    with database_errors(db):
        patient = get_patient_or_404(db, patient_id)
        ensure_patient_access(current_user, patient_id, db)
        return patient_to_response(patient)


@router.post('/', response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
def create_patient(
    data: PatientRequest,
    current_user: User = Depends(require_roles('staff', 'admin')),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        ensure_unique_email(db, data.email)
        patient = Patient()
        apply_patient_request(patient, data)
        db.add(patient)
        db.commit()
        db.refresh(patient)

    logger.info('Patient %s created by user %s', patient.id, current_user.id)
    return patient_to_response(patient)


@router.put('/{patient_id}', response_model=PatientResponse)
def update_patient(
    patient_id: int,
    data: PatientRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        patient = get_patient_or_404(db, patient_id)
        ensure_patient_access(current_user, patient_id, db, action='update')
        if current_user.role == 'patient' and data.email != patient.email:
            raise forbidden('Patients cannot change the email linked to their record')
        if data.email != patient.email:
            ensure_unique_email(db, data.email, exclude_id=patient_id)

        apply_patient_request(patient, data)
        db.commit()
        db.refresh(patient)
        return patient_to_response(patient)


@router.delete('/{patient_id}', response_model=MessageResponse)
def delete_patient(
    patient_id: int,
    current_user: User = Depends(require_roles('admin')),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        patient = get_patient_or_404(db, patient_id)
        history = (
            db.query(Appointment).filter(Appointment.patient_id == patient_id).count()
            + db.query(Treatment).filter(Treatment.patient_id == patient_id).count()
        )
        if history:
            raise bad_request('Patient has appointment or treatment history and cannot be deleted')

        db.delete(patient)
        db.commit()

    logger.info('Patient %s deleted by user %s', patient_id, current_user.id)
    return MessageResponse(message='Patient deleted successfully')


@router.get('/{patient_id}/appointments', response_model=list[AppointmentResponse])
def list_patient_appointments(
    patient_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        get_patient_or_404(db, patient_id)
        ensure_patient_access(current_user, patient_id, db)
        appointments = db.query(Appointment).filter(
            Appointment.patient_id == patient_id,
        ).order_by(Appointment.appointment_date.desc(), Appointment.start_minute.desc()).all()
        return [appointment_to_response(appointment) for appointment in appointments]


@router.get('/{patient_id}/treatments', response_model=list[TreatmentResponse])
def list_patient_treatments(
    patient_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        get_patient_or_404(db, patient_id)
        ensure_patient_access(current_user, patient_id, db)
        treatments = db.query(Treatment).filter(
            Treatment.patient_id == patient_id,
        ).order_by(Treatment.date.desc()).all()
        return [TreatmentResponse.model_validate(treatment) for treatment in treatments]


@router.put('/{patient_id}/medical-history', response_model=PatientResponse)
def update_medical_history(
    patient_id: int,
    data: MedicalHistoryRequest,
    current_user: User = Depends(require_roles('staff', 'admin')),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        patient = get_patient_or_404(db, patient_id)
        patient.medical_history = data.medical_history
        db.commit()
        db.refresh(patient)
        return patient_to_response(patient)

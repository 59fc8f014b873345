import logging
from datetime import date, datetime

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rehab_clinic.auth.dependencies import (
    ensure_role,
    get_current_user,
    patient_for_user,
    require_roles,
    staff_for_user,
)
from rehab_clinic.database import get_db
from rehab_clinic.models.appointment import (
    APPOINTMENT_PRIORITIES,
    APPOINTMENT_STATUSES,
    APPOINTMENT_TYPES,
    INACTIVE_STATUSES,
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    Appointment,
)
from rehab_clinic.models.patient import Patient
from rehab_clinic.models.service import Service
from rehab_clinic.models.staff import Staff
from rehab_clinic.models.user import User
from rehab_clinic.routes.common import (
    Page,
    Pagination,
    bad_request,
    build_page,
    database_errors,
    forbidden,
    normalize_string_list,
    normalize_time,
    not_found,
    paginate,
    pagination_params,
)
from rehab_clinic.routes.schemas import (
    AppointmentResponse,
    AvailabilityWindowResponse,
    SlotResponse,
    appointment_to_response,
    slot_to_response,
)
from rehab_clinic.scheduling import TimeRange, duration_within_tolerance, format_minutes, parse_range
from rehab_clinic.services import availability

router = APIRouter(tags=['appointments'])
logger = logging.getLogger(__name__)

SLOT_UNAVAILABLE_DETAIL = 'This time slot is already booked. Please choose a different time.'
RESCHEDULE_UNAVAILABLE_DETAIL = 'The new time slot is already booked. Please choose a different time.'
PATIENT_EDITABLE_FIELDS = {'patient_notes', 'symptoms', 'reason_for_visit'}
CLOSED_STATUSES = ('Cancelled', 'Completed', 'No Show')
MAX_REASON_LENGTH = 500
MAX_PATIENT_NOTES_LENGTH = 500
MAX_NOTES_LENGTH = 1000


def _validate_reason(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError('Reason for visit is required.')
    if not 5 <= len(normalized) <= MAX_REASON_LENGTH:
        raise ValueError(f'Reason for visit must be between 5-{MAX_REASON_LENGTH} characters.')
    return normalized


def _validate_optional_text(value: str | None, field: str, max_length: int) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    if len(normalized) > max_length:
        raise ValueError(f'{field} cannot exceed {max_length} characters.')
    return normalized


def _validate_choice(value: str | None, choices: tuple[str, ...], label: str) -> str | None:
    if value is not None and value not in choices:
        raise ValueError(f'Invalid {label}.')
    return value


class CreateAppointmentRequest(BaseModel):
    patient_id: int
    staff_id: int
    service_id: int
    appointment_date: date
    start_time: str
    end_time: str
    reason_for_visit: str
    appointment_type: str = 'Treatment'
    priority: str = 'Normal'
    notes: str | None = None
    patient_notes: str | None = None
    symptoms: list[str] = []
    is_first_visit: bool = False

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        return normalize_time(value)

    @field_validator('appointment_date')
    @classmethod
    def validate_date(cls, value: date) -> date:
        if value < date.today():
            raise ValueError('Appointment date cannot be in the past.')
        return value

    @field_validator('reason_for_visit')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        return _validate_reason(value)

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str) -> str:
        return _validate_choice(value, APPOINTMENT_TYPES, 'appointment type')

    @field_validator('priority')
    @classmethod
    def validate_priority(cls, value: str) -> str:
        return _validate_choice(value, APPOINTMENT_PRIORITIES, 'priority level')

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _validate_optional_text(value, 'Notes', MAX_NOTES_LENGTH)

    @field_validator('patient_notes')
    @classmethod
    def validate_patient_notes(cls, value: str | None) -> str | None:
        return _validate_optional_text(value, 'Patient notes', MAX_PATIENT_NOTES_LENGTH)

    @field_validator('symptoms')
    @classmethod
    def validate_symptoms(cls, value: list[str]) -> list[str]:
        return normalize_string_list(value)

    @model_validator(mode='after')
    def validate_range(self) -> 'CreateAppointmentRequest':
        parse_range(self.start_time, self.end_time)
        return self

    @property
    def time_range(self) -> TimeRange:
        return parse_range(self.start_time, self.end_time)


class UpdateAppointmentRequest(BaseModel):
    staff_id: int | None = None
    appointment_date: date | None = None
    start_time: str | None = None
    end_time: str | None = None
    reason_for_visit: str | None = None
    appointment_type: str | None = None
    priority: str | None = None
    status: str | None = None
    notes: str | None = None
    patient_notes: str | None = None
    symptoms: list[str] | None = None
    payment_method: str | None = None
    payment_status: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time(cls, value: str | None) -> str | None:
        return normalize_time(value) if value is not None else None

    @field_validator('appointment_date')
    @classmethod
    def validate_date(cls, value: date | None) -> date | None:
        if value is not None and value < date.today():
            raise ValueError('Appointment date cannot be in the past.')
        return value

    @field_validator('reason_for_visit')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _validate_reason(value) if value is not None else None

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str | None) -> str | None:
        return _validate_choice(value, APPOINTMENT_TYPES, 'appointment type')

    @field_validator('priority')
    @classmethod
    def validate_priority(cls, value: str | None) -> str | None:
        return _validate_choice(value, APPOINTMENT_PRIORITIES, 'priority level')

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        return _validate_choice(value, APPOINTMENT_STATUSES, 'status')

    @field_validator('payment_method')
    @classmethod
    def validate_payment_method(cls, value: str | None) -> str | None:
        return _validate_choice(value, PAYMENT_METHODS, 'payment method')

    @field_validator('payment_status')
    @classmethod
    def validate_payment_status(cls, value: str | None) -> str | None:
        return _validate_choice(value, PAYMENT_STATUSES, 'payment status')

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _validate_optional_text(value, 'Notes', MAX_NOTES_LENGTH)

    @field_validator('patient_notes')
    @classmethod
    def validate_patient_notes(cls, value: str | None) -> str | None:
        return _validate_optional_text(value, 'Patient notes', MAX_PATIENT_NOTES_LENGTH)

    @field_validator('symptoms')
    @classmethod
    def validate_symptoms(cls, value: list[str] | None) -> list[str] | None:
        return normalize_string_list(value) if value is not None else None

    def changes_schedule(self) -> bool:
        return bool({'staff_id', 'appointment_date', 'start_time', 'end_time'} & self.model_fields_set)


class CancelAppointmentRequest(BaseModel):
    reason: str = 'No reason provided'


class ConfirmAppointmentRequest(BaseModel):
    confirmed_by: str | None = None


class RescheduleAppointmentRequest(BaseModel):
    new_date: date
    new_start_time: str
    new_end_time: str
    reason: str = 'Rescheduled by request'

    @field_validator('new_start_time', 'new_end_time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        return normalize_time(value)

    @field_validator('new_date')
    @classmethod
    def validate_date(cls, value: date) -> date:
        if value < date.today():
            raise ValueError('New appointment date cannot be in the past.')
        return value

    @model_validator(mode='after')
    def validate_range(self) -> 'RescheduleAppointmentRequest':
        parse_range(self.new_start_time, self.new_end_time)
        return self


class AppointmentActionResponse(BaseModel):
    message: str
    data: AppointmentResponse


class StatusCount(BaseModel):
    status: str
    count: int


class TopService(BaseModel):
    id: int
    name: str
    count: int


class AppointmentStatsResponse(BaseModel):
    total_appointments: int
    monthly_appointments: int
    today_appointments: int
    status_stats: list[StatusCount]
    top_services: list[TopService]


class SlotServiceInfo(BaseModel):
    id: int
    name: str
    duration_minutes: int


class SlotStaffInfo(BaseModel):
    id: int
    name: str
    specialty: str | None = None


class AvailableSlotsResponse(BaseModel):
    date: date
    day_of_week: str
    service: SlotServiceInfo
    staff: SlotStaffInfo
    availability: list[AvailabilityWindowResponse] = []
    existing_appointments: int = 0
    available_slots: list[SlotResponse] = []


def get_appointment_or_404(db: Session, appointment_id: int) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise not_found('Appointment')
    return appointment


def ensure_appointment_access(current_user: User, appointment: Appointment, db: Session, action: str) -> None:
    """Patients may only touch appointments booked for their own patient record."""
    if current_user.role != 'patient':
        return
    patient = patient_for_user(current_user, db)
    if patient is None or patient.id != appointment.patient_id:
        raise forbidden(f'Not authorized to {action} this appointment')


def ensure_open(appointment: Appointment) -> None:
    if appointment.status in CLOSED_STATUSES:
        raise bad_request(f'Appointment is already {appointment.status.lower()}')


def reactivates(appointment: Appointment, new_status: str | None) -> bool:
    return (
        new_status is not None
        and appointment.status in INACTIVE_STATUSES
        and new_status not in INACTIVE_STATUSES
    )


def ensure_slot_bookable(
    db: Session,
    staff: Staff,
    service: Service,
    day: date,
    requested: TimeRange,
    exclude_appointment_id: int | None = None,
    conflict_detail: str = SLOT_UNAVAILABLE_DETAIL,
) -> None:
    """Reject a requested interval that the staff member cannot take.

    The interval must sit inside one of the staff member's windows for that
    weekday, must not overlap another active booking, and must last within
    the allowed tolerance of the service's nominal duration.
    """
    day_of_week = availability.day_name(day)
    windows = availability.windows_for_date(staff, day)
    if not windows:
        raise bad_request(f'Staff member is not available on {day_of_week}')

    if availability.containing_window(staff, day, requested) is None:
        hours = ', '.join(f'{format_minutes(window.start)} and {format_minutes(window.end)}' for window in windows)
        raise bad_request(f'Appointment time must be between {hours}')

    if availability.check_conflict(db, staff.id, day, requested, exclude_appointment_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=conflict_detail)

    if not duration_within_tolerance(requested.duration, service.duration_minutes):
        raise bad_request(
            f'Appointment duration ({requested.duration} minutes) should match service duration '
            f'({service.duration_minutes} minutes)'
        )


def commit_booking(db: Session, appointment: Appointment, conflict_detail: str = SLOT_UNAVAILABLE_DETAIL) -> None:
    """Commit, mapping the double-booking index violation onto a conflict."""
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning(
            'Concurrent booking rejected by storage for staff %s on %s',
            appointment.staff_id,
            appointment.appointment_date,
        )
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=conflict_detail) from exc
    db.refresh(appointment)


def load_booking_parties(db: Session, data: CreateAppointmentRequest) -> tuple[Patient, Staff, Service]:
    patient = db.get(Patient, data.patient_id)
    if patient is None:
        raise not_found('Patient')

    staff = db.get(Staff, data.staff_id)
    if staff is None or not staff.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Staff member not found or inactive')

    service = db.get(Service, data.service_id)
    if service is None or not service.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Service not found or inactive')

    if not service.can_be_provided_by(staff):
        raise bad_request(
            f'This service requires {service.specialty_required} specialty, but the selected staff member '
            f'specializes in {staff.specialty}'
        )
    return patient, staff, service


@router.get('/', response_model=Page[AppointmentResponse])
def list_appointments(
    status_filter: str = Query(default='', alias='status'),
    staff_id: int | None = Query(default=None),
    patient_id: int | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    pagination: Pagination = Depends(pagination_params),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        query = db.query(Appointment)
        if current_user.role == 'patient':
            patient = patient_for_user(current_user, db)
            if patient is None:
                return build_page([], 0, pagination)
            query = query.filter(Appointment.patient_id == patient.id)
        else:
            if patient_id is not None:
                query = query.filter(Appointment.patient_id == patient_id)
            if staff_id is not None:
                query = query.filter(Appointment.staff_id == staff_id)

        if status_filter:
            query = query.filter(Appointment.status == status_filter)
        if start_date is not None:
            query = query.filter(Appointment.appointment_date >= start_date)
        if end_date is not None:
            query = query.filter(Appointment.appointment_date <= end_date)

        query = query.order_by(Appointment.appointment_date.asc(), Appointment.start_minute.asc())
        appointments, total = paginate(query, pagination)
        return build_page([appointment_to_response(appointment) for appointment in appointments], total, pagination)


@router.get('/today', response_model=list[AppointmentResponse])
def list_todays_appointments(
    staff_id: int | None = Query(default=None),
    current_user: User = Depends(require_roles('staff', 'admin')),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        if staff_id is None and current_user.role == 'staff':
            own_record = staff_for_user(current_user, db)
            staff_id = own_record.id if own_record else None

        query = db.query(Appointment).filter(Appointment.appointment_date == date.today())
        if staff_id is not None:
            query = query.filter(Appointment.staff_id == staff_id)
        appointments = query.order_by(Appointment.start_minute.asc()).all()
        return [appointment_to_response(appointment) for appointment in appointments]


@router.get('/stats', response_model=AppointmentStatsResponse)
def appointment_stats(
    current_user: User = Depends(require_roles('admin')),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        today = date.today()
        month_start = today.replace(day=1)
        if month_start.month == 12:
            next_month = month_start.replace(year=month_start.year + 1, month=1)
        else:
            next_month = month_start.replace(month=month_start.month + 1)

        total = db.query(func.count(Appointment.id)).scalar() or 0
        monthly = db.query(func.count(Appointment.id)).filter(
            Appointment.appointment_date >= month_start,
            Appointment.appointment_date < next_month,
        ).scalar() or 0
        todays = db.query(func.count(Appointment.id)).filter(Appointment.appointment_date == today).scalar() or 0

        by_status = (
            db.query(Appointment.status, func.count(Appointment.id))
            .group_by(Appointment.status)
            .order_by(Appointment.status)
            .all()
        )
        top_services = (
            db.query(Service.id, Service.name, func.count(Appointment.id))
            .join(Appointment, Appointment.service_id == Service.id)
            .group_by(Service.id, Service.name)
            .order_by(func.count(Appointment.id).desc())
            .limit(5)
            .all()
        )

        return AppointmentStatsResponse(
            total_appointments=total,
            monthly_appointments=monthly,
            today_appointments=todays,
            status_stats=[StatusCount(status=name, count=count) for name, count in by_status],
            top_services=[TopService(id=service_id, name=name, count=count) for service_id, name, count in top_services],
        )


@router.get('/available-slots', response_model=AvailableSlotsResponse)
def list_available_slots(
    staff_id: int = Query(...),
    service_id: int = Query(...),
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        service = db.get(Service, service_id)
        if service is None:
            raise not_found('Service')
        staff = db.get(Staff, staff_id)
        if staff is None:
            raise not_found('Staff member')

        windows = staff.windows_for(availability.day_name(slot_date))
        existing = availability.active_bookings_query(db, staff_id, slot_date).count() if windows else 0
        slots = availability.available_slots(db, staff, slot_date, service.duration_minutes)

        return AvailableSlotsResponse(
            date=slot_date,
            day_of_week=availability.day_name(slot_date),
            service=SlotServiceInfo(id=service.id, name=service.name, duration_minutes=service.duration_minutes),
            staff=SlotStaffInfo(id=staff.id, name=staff.full_name, specialty=staff.specialty),
            availability=[
                AvailabilityWindowResponse(
                    day_of_week=window.day_of_week,
                    start_time=format_minutes(window.start_minute),
                    end_time=format_minutes(window.end_minute),
                )
                for window in windows
            ],
            existing_appointments=existing,
            available_slots=[slot_to_response(slot) for slot in slots],
        )


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        appointment = get_appointment_or_404(db, appointment_id)
        ensure_appointment_access(current_user, appointment, db, 'access')
        return appointment_to_response(appointment)


@router.post('/', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        if current_user.role == 'patient':
            own_record = patient_for_user(current_user, db)
            if own_record is None or own_record.id != data.patient_id:
                raise forbidden('You can only book appointments for yourself')

        patient, staff, service = load_booking_parties(db, data)
        requested = data.time_range
        ensure_slot_bookable(db, staff, service, data.appointment_date, requested)

        appointment = Appointment(
            patient_id=patient.id,
            staff_id=staff.id,
            service_id=service.id,
            appointment_date=data.appointment_date,
            start_minute=requested.start,
            end_minute=requested.end,
            status='Scheduled',
            priority=data.priority,
            appointment_type=data.appointment_type,
            reason_for_visit=data.reason_for_visit,
            notes=data.notes,
            patient_notes=data.patient_notes,
            symptoms=data.symptoms,
            is_first_visit=data.is_first_visit,
            payment_amount=service.price,
            payment_status='Pending',
        )
        db.add(appointment)
        commit_booking(db, appointment)

        logger.info(
            'Booked appointment %s for patient %s with staff %s on %s %s-%s',
            appointment.id,
            patient.id,
            staff.id,
            appointment.appointment_date,
            appointment.start_time,
            appointment.end_time,
        )
        return appointment_to_response(appointment)


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        appointment = get_appointment_or_404(db, appointment_id)
        ensure_appointment_access(current_user, appointment, db, 'update')

        requested_fields = data.model_fields_set
        if current_user.role == 'patient' and not requested_fields <= PATIENT_EDITABLE_FIELDS:
            raise forbidden('Patients can only update patient notes, symptoms, and reason for visit')

        if data.changes_schedule():
            staff = appointment.staff
            if data.staff_id is not None and data.staff_id != appointment.staff_id:
                staff = db.get(Staff, data.staff_id)
                if staff is None or not staff.is_active:
                    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Staff member not found or inactive')
                if not appointment.service.can_be_provided_by(staff):
                    raise bad_request(f'This service requires {appointment.service.specialty_required} specialty')

            day = data.appointment_date or appointment.appointment_date
            try:
                requested = parse_range(data.start_time or appointment.start_time, data.end_time or appointment.end_time)
            except ValueError as exc:
                raise bad_request(str(exc)) from exc
            ensure_slot_bookable(db, staff, appointment.service, day, requested, exclude_appointment_id=appointment.id)

            appointment.staff_id = staff.id
            appointment.appointment_date = day
            appointment.start_minute = requested.start
            appointment.end_minute = requested.end
        elif reactivates(appointment, data.status):
            if availability.check_conflict(
                db,
                appointment.staff_id,
                appointment.appointment_date,
                appointment.time_range,
                exclude_appointment_id=appointment.id,
            ):
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=SLOT_UNAVAILABLE_DETAIL)

        for field in requested_fields - {'staff_id', 'appointment_date', 'start_time', 'end_time'}:
            value = getattr(data, field)
            if value is not None:
                setattr(appointment, field, value)

        commit_booking(db, appointment)
        return appointment_to_response(appointment)


@router.delete('/{appointment_id}', response_model=AppointmentActionResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest | None = Body(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        appointment = get_appointment_or_404(db, appointment_id)
        ensure_appointment_access(current_user, appointment, db, 'cancel')
        if appointment.status == 'Cancelled':
            raise bad_request('Appointment is already cancelled')

        reason = (data or CancelAppointmentRequest()).reason
        appointment.cancel(reason)
        db.commit()
        db.refresh(appointment)

    logger.info('Appointment %s cancelled by user %s', appointment_id, current_user.id)
    return AppointmentActionResponse(
        message='Appointment cancelled successfully',
        data=appointment_to_response(appointment),
    )


@router.put('/{appointment_id}/confirm', response_model=AppointmentActionResponse)
def confirm_appointment(
    appointment_id: int,
    data: ConfirmAppointmentRequest | None = Body(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        appointment = get_appointment_or_404(db, appointment_id)
        ensure_appointment_access(current_user, appointment, db, 'confirm')
        ensure_open(appointment)

        confirmed_by = (data.confirmed_by if data else None) or current_user.email or 'system'
        appointment.confirm(confirmed_by)
        db.commit()
        db.refresh(appointment)

    return AppointmentActionResponse(
        message='Appointment confirmed successfully',
        data=appointment_to_response(appointment),
    )


@router.put('/{appointment_id}/reschedule', response_model=AppointmentActionResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        appointment = get_appointment_or_404(db, appointment_id)
        ensure_appointment_access(current_user, appointment, db, 'reschedule')
        ensure_open(appointment)

        requested = parse_range(data.new_start_time, data.new_end_time)
        ensure_slot_bookable(
            db,
            appointment.staff,
            appointment.service,
            data.new_date,
            requested,
            exclude_appointment_id=appointment.id,
            conflict_detail=RESCHEDULE_UNAVAILABLE_DETAIL,
        )

        appointment.reschedule(data.new_date, requested, data.reason)
        commit_booking(db, appointment, conflict_detail=RESCHEDULE_UNAVAILABLE_DETAIL)

    logger.info('Appointment %s rescheduled to %s %s', appointment_id, data.new_date, data.new_start_time)
    return AppointmentActionResponse(
        message='Appointment rescheduled successfully',
        data=appointment_to_response(appointment),
    )


@router.put('/{appointment_id}/complete', response_model=AppointmentActionResponse)
def complete_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_role(current_user, 'staff', 'admin')
    with database_errors(db):
        appointment = get_appointment_or_404(db, appointment_id)
        ensure_open(appointment)

        appointment.complete(datetime.now())
        db.commit()
        db.refresh(appointment)

    return AppointmentActionResponse(
        message='Appointment marked as completed',
        data=appointment_to_response(appointment),
    )

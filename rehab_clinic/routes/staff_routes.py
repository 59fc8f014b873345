import logging
from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, EmailStr, field_validator, model_validator
from sqlalchemy import or_
from sqlalchemy.orm import Session

from rehab_clinic.auth.dependencies import get_current_user, get_optional_user, is_clinic_user, owns_staff, require_roles
from rehab_clinic.database import get_db
from rehab_clinic.models.appointment import Appointment
from rehab_clinic.models.staff import DAYS_OF_WEEK, STAFF_ROLES, Staff, StaffAvailability
from rehab_clinic.models.user import User
from rehab_clinic.routes.common import (
    MessageResponse,
    Page,
    Pagination,
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
from rehab_clinic.routes.schemas import (
    AppointmentResponse,
    AvailabilityWindowResponse,
    SlotResponse,
    appointment_to_response,
    slot_to_response,
)
from rehab_clinic.scheduling import format_minutes, parse_range
from rehab_clinic.services import availability

router = APIRouter(tags=['staff'])
logger = logging.getLogger(__name__)

DEFAULT_SLOT_QUERY_DURATION = 60
DEFAULT_APPOINTMENT_RANGE_DAYS = 30


class AvailabilityWindowRequest(BaseModel):
    day_of_week: str
    start_time: str
    end_time: str

    @field_validator('day_of_week')
    @classmethod
    def validate_day(cls, value: str) -> str:
        normalized = value.strip().capitalize()
        if normalized not in DAYS_OF_WEEK:
            raise ValueError('Invalid day of week.')
        return normalized

    @model_validator(mode='after')
    def validate_times(self) -> 'AvailabilityWindowRequest':
        window = parse_range(self.start_time, self.end_time)
        self.start_time = format_minutes(window.start)
        self.end_time = format_minutes(window.end)
        return self


class AvailabilityRequest(BaseModel):
    availability: list[AvailabilityWindowRequest]

    @model_validator(mode='after')
    def validate_no_overlap(self) -> 'AvailabilityRequest':
        validate_windows(self.availability)
        return self


class StaffRequest(BaseModel):
    first_name: str
    last_name: str
    role: str
    specialty: str | None = None
    phone: str | None = None
    email: EmailStr | None = None
    availability: list[AvailabilityWindowRequest] = []
    qualifications: list[str] = []
    experience: int | None = None
    bio: str | None = None
    profile_image: str | None = None

    @field_validator('first_name')
    @classmethod
    def validate_first_name(cls, value: str) -> str:
        return require_text(value, 'First name', 2, 50)

    @field_validator('last_name')
    @classmethod
    def validate_last_name(cls, value: str) -> str:
        return require_text(value, 'Last name', 2, 50)

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().capitalize()
        if normalized not in STAFF_ROLES:
            raise ValueError('Role must be Doctor, Therapist, or Admin.')
        return normalized

    @field_validator('specialty')
    @classmethod
    def validate_specialty(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return require_text(value, 'Specialty', 2, 100)

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, value: str | None) -> str | None:
        return normalize_phone(value)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str | None) -> str | None:
        return value.strip().lower() if value else None

    @field_validator('qualifications')
    @classmethod
    def validate_qualifications(cls, value: list[str]) -> list[str]:
        return normalize_string_list(value)

    @field_validator('experience')
    @classmethod
    def validate_experience(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError('Experience must be a non-negative integer.')
        return value

    @model_validator(mode='after')
    def validate_specialty_for_clinicians(self) -> 'StaffRequest':
        if self.role in ('Doctor', 'Therapist') and not self.specialty:
            raise ValueError('Specialty is required for doctors and therapists.')
        validate_windows(self.availability)
        return self


class StaffResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    full_name: str
    role: str
    specialty: str | None = None
    experience: int | None = None
    profile_image: str | None = None
    bio: str | None = None
    qualifications: list[str] = []
    available_days: list[str] = []
    # Contact details and weekly hours are only filled in for staff/admin callers
    phone: str | None = None
    email: str | None = None
    is_active: bool | None = None
    availability: list[AvailabilityWindowResponse] | None = None


class ScheduleResponse(BaseModel):
    date: date
    day_of_week: str
    available: bool
    availability: list[AvailabilityWindowResponse] = []
    appointments: list[AppointmentResponse] = []
    appointment_count: int = 0


class StaffSlotsResponse(BaseModel):
    date: date
    day_of_week: str
    duration_minutes: int
    availability: list[AvailabilityWindowResponse] = []
    existing_appointments: int = 0
    available_slots: list[SlotResponse] = []


def validate_windows(windows: list[AvailabilityWindowRequest]) -> None:
    """Windows on the same weekday must not overlap each other."""
    by_day: dict[str, list] = {}
    for window in windows:
        by_day.setdefault(window.day_of_week, []).append(parse_range(window.start_time, window.end_time))
    for day, ranges in by_day.items():
        ranges.sort(key=lambda item: item.start)
        for previous, current in zip(ranges, ranges[1:]):
            if previous.overlaps(current):
                raise ValueError(f'Availability windows on {day} overlap.')


def window_to_response(window: StaffAvailability) -> AvailabilityWindowResponse:
    return AvailabilityWindowResponse(
        day_of_week=window.day_of_week,
        start_time=format_minutes(window.start_minute),
        end_time=format_minutes(window.end_minute),
    )


def build_windows(windows: list[AvailabilityWindowRequest]) -> list[StaffAvailability]:
    result = []
    for window in windows:
        time_range = parse_range(window.start_time, window.end_time)
        result.append(
            StaffAvailability(
                day_of_week=window.day_of_week,
                day_index=DAYS_OF_WEEK.index(window.day_of_week),
                start_minute=time_range.start,
                end_minute=time_range.end,
            )
        )
    return result


def staff_to_response(staff: Staff, full: bool = True) -> StaffResponse:
    response = StaffResponse(
        id=staff.id,
        first_name=staff.first_name,
        last_name=staff.last_name,
        full_name=staff.full_name,
        role=staff.role,
        specialty=staff.specialty,
        experience=staff.experience,
        profile_image=staff.profile_image,
        bio=staff.bio,
        qualifications=staff.qualifications or [],
        available_days=list(dict.fromkeys(staff.available_days)),
    )
    if full:
        response.phone = staff.phone
        response.email = staff.email
        response.is_active = staff.is_active
        response.availability = [window_to_response(window) for window in staff.availability]
    return response


def get_staff_or_404(db: Session, staff_id: int) -> Staff:
    staff = db.get(Staff, staff_id)
    if staff is None:
        raise not_found('Staff member')
    return staff


def ensure_admin_or_self(current_user: User, staff_id: int, db: Session, detail: str) -> None:
    if current_user.role != 'admin' and not owns_staff(current_user, staff_id, db):
        raise forbidden(detail)


@router.get('/', response_model=Page[StaffResponse], response_model_exclude_none=True)
def list_staff(
    search: str = Query(default=''),
    role: str = Query(default=''),
    specialty: str = Query(default=''),
    active: bool = Query(default=True),
    pagination: Pagination = Depends(pagination_params),
    current_user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        query = db.query(Staff).filter(Staff.is_active.is_(active))
        term = search.strip()
        if term:
            pattern = f'%{term}%'
            query = query.filter(
                or_(
                    Staff.first_name.ilike(pattern),
                    Staff.last_name.ilike(pattern),
                    Staff.specialty.ilike(pattern),
                )
            )
        if role:
            query = query.filter(Staff.role == role)
        if specialty:
            query = query.filter(Staff.specialty.ilike(f'%{specialty}%'))

        staff_members, total = paginate(query.order_by(Staff.last_name.asc(), Staff.first_name.asc()), pagination)
        full = is_clinic_user(current_user)
        return build_page([staff_to_response(staff, full=full) for staff in staff_members], total, pagination)


@router.get('/{staff_id}', response_model=StaffResponse, response_model_exclude_none=True)
def get_staff(
    staff_id: int,
    current_user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        staff = get_staff_or_404(db, staff_id)
        if not staff.is_active and not is_clinic_user(current_user):
            raise not_found('Staff member')
        return staff_to_response(staff, full=is_clinic_user(current_user))


@router.post('/', response_model=StaffResponse, status_code=status.HTTP_201_CREATED)
def create_staff(
    data: StaffRequest,
    current_user: User = Depends(require_roles('admin')),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        staff = Staff(
            **data.model_dump(exclude={'availability'}),
            is_active=True,
            availability=build_windows(data.availability),
        )
        db.add(staff)
        db.commit()
        db.refresh(staff)

    logger.info('Staff member %s created by user %s', staff.id, current_user.id)
    return staff_to_response(staff)


@router.put('/{staff_id}', response_model=StaffResponse)
def update_staff(
    staff_id: int,
    data: StaffRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        staff = get_staff_or_404(db, staff_id)
        ensure_admin_or_self(current_user, staff_id, db, 'Not authorized to update this staff member')

        changes = data.model_dump(exclude={'availability'})
        if current_user.role != 'admin':
            # Clinicians edit their profile, not their role or linked email
            changes.pop('role', None)
            changes.pop('email', None)
        for field, value in changes.items():
            setattr(staff, field, value)
        if 'availability' in data.model_fields_set:
            staff.availability = build_windows(data.availability)
        db.commit()
        db.refresh(staff)
        return staff_to_response(staff)


@router.delete('/{staff_id}', response_model=MessageResponse)
def deactivate_staff(
    staff_id: int,
    current_user: User = Depends(require_roles('admin')),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        staff = get_staff_or_404(db, staff_id)
        staff.is_active = False
        db.commit()

    logger.info('Staff member %s deactivated by user %s', staff_id, current_user.id)
    return MessageResponse(message='Staff member deactivated successfully')


@router.get('/{staff_id}/appointments', response_model=list[AppointmentResponse])
def list_staff_appointments(
    staff_id: int,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        get_staff_or_404(db, staff_id)
        ensure_admin_or_self(current_user, staff_id, db, 'Not authorized to access these appointments')

        range_start = start_date or date.today()
        range_end = end_date or range_start + timedelta(days=DEFAULT_APPOINTMENT_RANGE_DAYS)
        appointments = db.query(Appointment).filter(
            Appointment.staff_id == staff_id,
            Appointment.appointment_date >= range_start,
            Appointment.appointment_date <= range_end,
        ).order_by(Appointment.appointment_date.asc(), Appointment.start_minute.asc()).all()
        return [appointment_to_response(appointment) for appointment in appointments]


@router.get('/{staff_id}/schedule', response_model=ScheduleResponse)
def get_staff_schedule(
    staff_id: int,
    schedule_date: date | None = Query(default=None, alias='date'),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        staff = get_staff_or_404(db, staff_id)
        ensure_admin_or_self(current_user, staff_id, db, 'Not authorized to access this schedule')

        day = schedule_date or date.today()
        day_of_week = availability.day_name(day)
        windows = staff.windows_for(day_of_week)
        if not windows:
            return ScheduleResponse(date=day, day_of_week=day_of_week, available=False)

        appointments = availability.active_bookings_query(db, staff_id, day).order_by(
            Appointment.start_minute.asc()
        ).all()
        return ScheduleResponse(
            date=day,
            day_of_week=day_of_week,
            available=True,
            availability=[window_to_response(window) for window in windows],
            appointments=[appointment_to_response(appointment) for appointment in appointments],
            appointment_count=len(appointments),
        )


@router.put('/{staff_id}/availability', response_model=StaffResponse)
def update_staff_availability(
    staff_id: int,
    data: AvailabilityRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        staff = get_staff_or_404(db, staff_id)
        ensure_admin_or_self(current_user, staff_id, db, 'Not authorized to update this availability')

        staff.availability = build_windows(data.availability)
        db.commit()
        db.refresh(staff)

    logger.info('Availability for staff %s replaced with %s windows', staff_id, len(data.availability))
    return staff_to_response(staff)


@router.get('/{staff_id}/available-slots', response_model=StaffSlotsResponse)
def list_staff_available_slots(
    staff_id: int,
    slot_date: date | None = Query(default=None, alias='date'),
    duration: int = Query(default=DEFAULT_SLOT_QUERY_DURATION, ge=1, le=480),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        staff = db.get(Staff, staff_id)
        if staff is None or not staff.is_active:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Staff member not found or inactive')

        day = slot_date or date.today()
        windows = staff.windows_for(availability.day_name(day))
        existing = availability.active_bookings_query(db, staff_id, day).count() if windows else 0
        slots = availability.available_slots(db, staff, day, duration)
        return StaffSlotsResponse(
            date=day,
            day_of_week=availability.day_name(day),
            duration_minutes=duration,
            availability=[window_to_response(window) for window in windows],
            existing_appointments=existing,
            available_slots=[slot_to_response(slot) for slot in slots],
        )

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy import String, cast, func, or_
from sqlalchemy.orm import Session

from rehab_clinic.auth.dependencies import require_roles
from rehab_clinic.database import get_db
from rehab_clinic.models.appointment import Appointment
from rehab_clinic.models.service import SERVICE_CATEGORIES, Service
from rehab_clinic.models.staff import Staff
from rehab_clinic.models.user import User
from rehab_clinic.routes.common import (
    MessageResponse,
    Page,
    Pagination,
    bad_request,
    build_page,
    database_errors,
    normalize_string_list,
    not_found,
    paginate,
    pagination_params,
    require_text,
)
from rehab_clinic.routes.staff_routes import StaffResponse, staff_to_response

router = APIRouter(tags=['services'])
logger = logging.getLogger(__name__)

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 480


class ServiceRequest(BaseModel):
    name: str
    description: str
    category: str
    duration_minutes: int
    price: float
    specialty_required: str | None = None
    session_count: int = 1
    prerequisites: list[str] = []
    contraindications: list[str] = []
    benefits: list[str] = []
    equipment: list[str] = []
    tags: list[str] = []
    image: str | None = None
    is_active: bool = True

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        return require_text(value, 'Service name', 2, 100)

    @field_validator('description')
    @classmethod
    def validate_description(cls, value: str) -> str:
        return require_text(value, 'Service description', 10, 1000)

    @field_validator('category')
    @classmethod
    def validate_category(cls, value: str) -> str:
        if value not in SERVICE_CATEGORIES:
            raise ValueError('Invalid service category.')
        return value

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        if not MIN_DURATION_MINUTES <= value <= MAX_DURATION_MINUTES:
            raise ValueError(f'Duration must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes.')
        return value

    @field_validator('price')
    @classmethod
    def validate_price(cls, value: float) -> float:
        if value < 0:
            raise ValueError('Price must be a positive number.')
        return value

    @field_validator('session_count')
    @classmethod
    def validate_session_count(cls, value: int) -> int:
        if value < 1:
            raise ValueError('Session count must be at least 1.')
        return value

    @field_validator('specialty_required')
    @classmethod
    def validate_specialty(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return require_text(value, 'Specialty', 2, 100)

    @field_validator('prerequisites', 'contraindications', 'benefits', 'equipment', 'tags')
    @classmethod
    def validate_lists(cls, value: list[str]) -> list[str]:
        return normalize_string_list(value)


class ServiceResponse(BaseModel):
    id: int
    name: str
    description: str
    category: str
    duration_minutes: int
    duration_hours: float
    price: float
    specialty_required: str | None = None
    session_count: int
    prerequisites: list[str] = []
    contraindications: list[str] = []
    benefits: list[str] = []
    equipment: list[str] = []
    tags: list[str] = []
    image: str | None = None
    is_active: bool

    class Config:
        from_attributes = True


class ServicePage(Page[ServiceResponse]):
    categories: list[str] = []


class CategoryStat(BaseModel):
    category: str
    count: int
    avg_price: float
    avg_duration: float


class PriceStats(BaseModel):
    min_price: float
    max_price: float
    avg_price: float


class PopularService(BaseModel):
    id: int
    name: str
    category: str
    appointment_count: int


class ServiceStatsResponse(BaseModel):
    total_services: int
    services_by_category: list[CategoryStat]
    price_stats: PriceStats
    popular_services: list[PopularService]


class CompatibleStaffResponse(BaseModel):
    service_id: int
    service_name: str
    specialty_required: str | None = None
    count: int
    data: list[StaffResponse]


def get_service_or_404(db: Session, service_id: int) -> Service:
    service = db.get(Service, service_id)
    if service is None:
        raise not_found('Service')
    return service


def ensure_unique_name(db: Session, name: str, exclude_id: int | None = None) -> None:
    query = db.query(Service).filter(func.lower(Service.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Service.id != exclude_id)
    if query.first():
        raise bad_request('A service with this name already exists')


def search_filter(term: str):
    pattern = f'%{term}%'
    # list columns are stored as JSON text
    return or_(
        Service.name.ilike(pattern),
        Service.description.ilike(pattern),
        Service.category.ilike(pattern),
        cast(Service.tags, String).ilike(pattern),
        cast(Service.benefits, String).ilike(pattern),
    )


@router.get('/', response_model=ServicePage)
def list_services(
    search: str = Query(default=''),
    category: str = Query(default=''),
    active: bool = Query(default=True),
    min_price: float = Query(default=0, ge=0),
    max_price: float | None = Query(default=None, ge=0),
    pagination: Pagination = Depends(pagination_params),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        query = db.query(Service).filter(Service.is_active.is_(active), Service.price >= min_price)
        if max_price is not None:
            query = query.filter(Service.price <= max_price)
        if search.strip():
            query = query.filter(search_filter(search.strip()))
        if category:
            query = query.filter(Service.category == category)

        services, total = paginate(query.order_by(Service.category.asc(), Service.name.asc()), pagination)
        categories = [
            row[0]
            for row in db.query(Service.category).filter(Service.is_active.is_(True)).distinct().order_by(Service.category)
        ]
        page = build_page([ServiceResponse.model_validate(service) for service in services], total, pagination)
        return ServicePage(**page, categories=categories)


@router.get('/stats', response_model=ServiceStatsResponse)
def service_stats(
    current_user: User = Depends(require_roles('admin')),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        active = db.query(Service).filter(Service.is_active.is_(True))
        total_services = active.count()

        by_category = (
            db.query(
                Service.category,
                func.count(Service.id),
                func.avg(Service.price),
                func.avg(Service.duration_minutes),
            )
            .filter(Service.is_active.is_(True))
            .group_by(Service.category)
            .order_by(func.count(Service.id).desc())
            .all()
        )

        min_price, max_price, avg_price = (
            db.query(func.min(Service.price), func.max(Service.price), func.avg(Service.price))
            .filter(Service.is_active.is_(True))
            .one()
        )

        popular = (
            db.query(Service.id, Service.name, Service.category, func.count(Appointment.id).label('appointment_count'))
            .join(Appointment, Appointment.service_id == Service.id)
            .group_by(Service.id, Service.name, Service.category)
            .order_by(func.count(Appointment.id).desc())
            .limit(5)
            .all()
        )

        return ServiceStatsResponse(
            total_services=total_services,
            services_by_category=[
                CategoryStat(category=category, count=count, avg_price=float(avg_p or 0), avg_duration=float(avg_d or 0))
                for category, count, avg_p, avg_d in by_category
            ],
            price_stats=PriceStats(
                min_price=float(min_price or 0),
                max_price=float(max_price or 0),
                avg_price=float(avg_price or 0),
            ),
            popular_services=[
                PopularService(id=service_id, name=name, category=category, appointment_count=count)
                for service_id, name, category, count in popular
            ],
        )


@router.get('/category/{category}', response_model=Page[ServiceResponse])
def list_services_by_category(
    category: str,
    pagination: Pagination = Depends(pagination_params),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        query = db.query(Service).filter(
            Service.category.ilike(f'%{category}%'),
            Service.is_active.is_(True),
        ).order_by(Service.name.asc())
        services, total = paginate(query, pagination)
        return build_page([ServiceResponse.model_validate(service) for service in services], total, pagination)


@router.get('/search/{query}', response_model=Page[ServiceResponse])
def search_services(
    query: str,
    pagination: Pagination = Depends(pagination_params),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        results = db.query(Service).filter(
            Service.is_active.is_(True),
            search_filter(query.strip()),
        ).order_by(Service.name.asc())
        services, total = paginate(results, pagination)
        return build_page([ServiceResponse.model_validate(service) for service in services], total, pagination)


@router.get('/{service_id}', response_model=ServiceResponse)
def get_service(service_id: int, db: Session = Depends(get_db)):
    with database_errors(db):
        return get_service_or_404(db, service_id)


@router.post('/', response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
def create_service(
    data: ServiceRequest,
    current_user: User = Depends(require_roles('admin')),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        ensure_unique_name(db, data.name)
        service = Service(**data.model_dump())
        db.add(service)
        db.commit()
        db.refresh(service)

    logger.info('Service %s created by user %s', service.id, current_user.id)
    return service


@router.put('/{service_id}', response_model=ServiceResponse)
def update_service(
    service_id: int,
    data: ServiceRequest,
    current_user: User = Depends(require_roles('admin')),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        service = get_service_or_404(db, service_id)
        ensure_unique_name(db, data.name, exclude_id=service_id)
        for field, value in data.model_dump().items():
            setattr(service, field, value)
        db.commit()
        db.refresh(service)
        return service


@router.delete('/{service_id}', response_model=MessageResponse)
def delete_service(
    service_id: int,
    current_user: User = Depends(require_roles('admin')),
    db: Session = Depends(get_db),
):
    with database_errors(db):
        service = get_service_or_404(db, service_id)
        active_appointments = db.query(Appointment).filter(
            Appointment.service_id == service_id,
            Appointment.status.notin_(('Cancelled', 'No Show', 'Completed')),
            Appointment.appointment_date >= date.today(),
        ).count()
        any_history = db.query(Appointment).filter(Appointment.service_id == service_id).count()

        if active_appointments or any_history:
            # Appointments still reference this row
            service.is_active = False
            db.commit()
            logger.info('Service %s deactivated (%s active appointments)', service_id, active_appointments)
            if active_appointments:
                return MessageResponse(
                    message=f'Service deactivated successfully ({active_appointments} active appointments found)'
                )
            return MessageResponse(message='Service deactivated successfully (appointment history retained)')

        db.delete(service)
        db.commit()

    logger.info('Service %s deleted by user %s', service_id, current_user.id)
    return MessageResponse(message='Service deleted successfully')


@router.get('/{service_id}/compatible-staff', response_model=CompatibleStaffResponse, response_model_exclude_none=True)
def list_compatible_staff(service_id: int, db: Session = Depends(get_db)):
    with database_errors(db):
        service = db.get(Service, service_id)
        if service is None or not service.is_active:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Service not found or inactive')

        query = db.query(Staff).filter(Staff.is_active.is_(True))
        if service.specialty_required:
            query = query.filter(Staff.specialty == service.specialty_required)
        staff_members = query.order_by(Staff.experience.desc(), Staff.last_name.asc()).all()

        return CompatibleStaffResponse(
            service_id=service.id,
            service_name=service.name,
            specialty_required=service.specialty_required,
            count=len(staff_members),
            data=[staff_to_response(staff, full=False) for staff in staff_members],
        )

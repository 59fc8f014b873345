import logging
import math
import re
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generic, TypeVar

from fastapi import HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rehab_clinic.core import config
from rehab_clinic.database import DATABASE_UNAVAILABLE_DETAIL
from rehab_clinic.scheduling import format_minutes, parse_time

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r'\d{10,15}')

T = TypeVar('T')


class Page(BaseModel, Generic[T]):
    count: int
    total: int
    page: int
    pages: int
    limit: int
    data: list[T]


class MessageResponse(BaseModel):
    message: str


@dataclass
class Pagination:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def pagination_params(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
) -> Pagination:
    return Pagination(page=page, limit=limit)


def paginate(query, pagination: Pagination) -> tuple[list, int]:
    total = query.order_by(None).count()
    items = query.offset(pagination.offset).limit(pagination.limit).all()
    return items, total


def build_page(items: list, total: int, pagination: Pagination) -> dict:
    return {
        'count': len(items),
        'total': total,
        'page': pagination.page,
        'pages': math.ceil(total / pagination.limit) if total else 0,
        'limit': pagination.limit,
        'data': items,
    }


@contextmanager
def database_errors(db: Session | None = None):
    """Turn storage failures into a 503 after rolling back the session."""
    try:
        yield
    except SQLAlchemyError as exc:
        if db is not None:
            db.rollback()
        logger.exception('Database operation failed.')
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def not_found(entity: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f'{entity} not found')


def forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def normalize_time(value: str) -> str:
    return format_minutes(parse_time(value))


def normalize_phone(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    if not PHONE_PATTERN.search(normalized):
        raise ValueError('Please provide a valid phone number.')
    return normalized


def normalize_string_list(values: list[str] | None) -> list[str]:
    if not values:
        return []
    return [value.strip() for value in values if value and value.strip()]


def require_text(value: str, field: str, min_length: int, max_length: int) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f'{field} is required.')
    if not min_length <= len(normalized) <= max_length:
        raise ValueError(f'{field} must be between {min_length}-{max_length} characters.')
    return normalized

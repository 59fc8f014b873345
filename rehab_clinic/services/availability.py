"""Availability and conflict queries for staff bookings."""

import logging
from datetime import date

from sqlalchemy.orm import Session

from rehab_clinic.models.appointment import INACTIVE_STATUSES, Appointment
from rehab_clinic.models.staff import DAYS_OF_WEEK, Staff
from rehab_clinic.scheduling import TimeRange, generate_slots_for_windows


logger = logging.getLogger(__name__)


def day_name(day: date) -> str:
    return DAYS_OF_WEEK[day.weekday()]


def active_bookings_query(db: Session, staff_id: int, day: date, exclude_appointment_id: int | None = None):
    query = db.query(Appointment).filter(
        Appointment.staff_id == staff_id,
        Appointment.appointment_date == day,
        Appointment.status.notin_(INACTIVE_STATUSES),
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)
    return query


def booked_ranges(db: Session, staff_id: int, day: date, exclude_appointment_id: int | None = None) -> list[TimeRange]:
    rows = (
        active_bookings_query(db, staff_id, day, exclude_appointment_id)
        .with_entities(Appointment.start_minute, Appointment.end_minute)
        .order_by(Appointment.start_minute.asc())
        .all()
    )
    return [TimeRange(start, end) for start, end in rows]


def find_conflict(
    db: Session,
    staff_id: int,
    day: date,
    requested: TimeRange,
    exclude_appointment_id: int | None = None,
) -> Appointment | None:
    """First active booking of ``staff_id`` on ``day`` overlapping ``requested``."""
    return (
        active_bookings_query(db, staff_id, day, exclude_appointment_id)
        .filter(
            Appointment.start_minute < requested.end,
            Appointment.end_minute > requested.start,
        )
        .order_by(Appointment.start_minute.asc())
        .first()
    )


def check_conflict(
    db: Session,
    staff_id: int,
    day: date,
    requested: TimeRange,
    exclude_appointment_id: int | None = None,
) -> bool:
    conflict = find_conflict(db, staff_id, day, requested, exclude_appointment_id)
    if conflict is not None:
        logger.info(
            'Booking %s-%s on %s for staff %s overlaps appointment %s',
            requested.start,
            requested.end,
            day,
            staff_id,
            conflict.id,
        )
    return conflict is not None


def windows_for_date(staff: Staff, day: date) -> list[TimeRange]:
    return [TimeRange(window.start_minute, window.end_minute) for window in staff.windows_for(day_name(day))]


def containing_window(staff: Staff, day: date, requested: TimeRange) -> TimeRange | None:
    for window in windows_for_date(staff, day):
        if window.contains(requested):
            return window
    return None


def available_slots(db: Session, staff: Staff, day: date, duration_minutes: int) -> list[TimeRange]:
    """Free slots for ``staff`` on ``day``; empty when they do not work that weekday."""
    windows = windows_for_date(staff, day)
    if not windows:
        return []
    return generate_slots_for_windows(windows, duration_minutes, booked_ranges(db, staff.id, day))

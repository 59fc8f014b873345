"""Response models shared by several routers."""

from datetime import date, datetime

from pydantic import BaseModel

from rehab_clinic.models.appointment import Appointment
from rehab_clinic.scheduling import TimeRange, format_minutes


class PatientRef(BaseModel):
    id: int
    full_name: str
    phone: str | None = None
    email: str | None = None


class StaffRef(BaseModel):
    id: int
    full_name: str
    specialty: str | None = None


class ServiceRef(BaseModel):
    id: int
    name: str
    duration_minutes: int
    price: float
    category: str


class AttendanceRecord(BaseModel):
    date: datetime
    status: str
    notes: str | None = None


class PaymentInfo(BaseModel):
    amount: float | None = None
    method: str | None = None
    status: str
    transaction_id: str | None = None
    paid_at: datetime | None = None


class RescheduledFrom(BaseModel):
    date: date
    time: str
    reason: str | None = None


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    staff_id: int
    service_id: int
    patient: PatientRef | None = None
    staff: StaffRef | None = None
    service: ServiceRef | None = None
    appointment_date: date
    start_time: str
    end_time: str
    duration_minutes: int
    status: str
    priority: str
    appointment_type: str
    reason_for_visit: str
    notes: str | None = None
    patient_notes: str | None = None
    symptoms: list[str] = []
    is_first_visit: bool = False
    confirmed_at: datetime | None = None
    confirmed_by: str | None = None
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    rescheduled_from: RescheduledFrom | None = None
    attendance_history: list[AttendanceRecord] = []
    payment: PaymentInfo


class TreatmentResponse(BaseModel):
    id: int
    patient_id: int
    staff_id: int
    service_id: int
    appointment_id: int | None = None
    date: date
    start_time: str
    end_time: str
    duration_minutes: int
    status: str
    notes: str | None = None
    clinical_notes: dict = {}
    outcome: str | None = None
    pain_level_before: int | None = None
    pain_level_after: int | None = None
    pain_improvement: int | None = None
    next_appointment_recommended: bool = False
    next_appointment_date: date | None = None

    class Config:
        from_attributes = True


class SlotResponse(BaseModel):
    start_time: str
    end_time: str


class AvailabilityWindowResponse(BaseModel):
    day_of_week: str
    start_time: str
    end_time: str


def slot_to_response(slot: TimeRange) -> SlotResponse:
    return SlotResponse(**slot.as_strings())


def appointment_to_response(appointment: Appointment) -> AppointmentResponse:
    patient = appointment.patient
    staff = appointment.staff
    service = appointment.service

    rescheduled_from = None
    if appointment.rescheduled_from_date is not None:
        rescheduled_from = RescheduledFrom(
            date=appointment.rescheduled_from_date,
            time=format_minutes(appointment.rescheduled_from_minute),
            reason=appointment.rescheduled_reason,
        )

    return AppointmentResponse(
        id=appointment.id,
        patient_id=appointment.patient_id,
        staff_id=appointment.staff_id,
        service_id=appointment.service_id,
        patient=PatientRef(id=patient.id, full_name=patient.full_name, phone=patient.phone, email=patient.email)
        if patient else None,
        staff=StaffRef(id=staff.id, full_name=staff.full_name, specialty=staff.specialty) if staff else None,
        service=ServiceRef(
            id=service.id,
            name=service.name,
            duration_minutes=service.duration_minutes,
            price=service.price,
            category=service.category,
        )
        if service else None,
        appointment_date=appointment.appointment_date,
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        duration_minutes=appointment.duration_minutes,
        status=appointment.status,
        priority=appointment.priority,
        appointment_type=appointment.appointment_type,
        reason_for_visit=appointment.reason_for_visit,
        notes=appointment.notes,
        patient_notes=appointment.patient_notes,
        symptoms=appointment.symptoms or [],
        is_first_visit=bool(appointment.is_first_visit),
        confirmed_at=appointment.confirmed_at,
        confirmed_by=appointment.confirmed_by,
        cancellation_reason=appointment.cancellation_reason,
        cancelled_at=appointment.cancelled_at,
        rescheduled_from=rescheduled_from,
        attendance_history=appointment.attendance_history or [],
        payment=PaymentInfo(
            amount=appointment.payment_amount,
            method=appointment.payment_method,
            status=appointment.payment_status or 'Pending',
            transaction_id=appointment.payment_transaction_id,
            paid_at=appointment.paid_at,
        ),
    )

from datetime import date, datetime

from pydantic import BaseModel, field_validator

from clinic_backend.scheduling.errors import BookingValidationError
from clinic_backend.scheduling.lifecycle import SCHEDULED, URGENT
from clinic_backend.scheduling.slots import normalize_time_slot, parse_time_slot, validate_duration

MAX_SERVICE_TYPE_LENGTH = 100
MAX_APPOINTMENT_NOTES_LENGTH = 1000


def normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


def normalize_service_type(value: str) -> str:
    normalized = (value or '').strip()
    if not normalized:
        raise ValueError('Service type is required.')
    if len(normalized) > MAX_SERVICE_TYPE_LENGTH:
        raise ValueError(f'Service type cannot exceed {MAX_SERVICE_TYPE_LENGTH} characters.')
    return normalized


class AppointmentCreate(BaseModel):
    """Everything the store needs to commit a new appointment."""

    patient_id: int
    clinic_id: int
    practitioner_id: int | None = None
    service_type: str
    date: date
    time_slot: str
    duration_minutes: int
    notes: str | None = None
    emergency: bool = False
    status: str = SCHEDULED

    @field_validator('service_type')
    @classmethod
    def validate_service_type(cls, value: str) -> str:
        return normalize_service_type(value)

    @field_validator('time_slot')
    @classmethod
    def validate_time_slot(cls, value: str) -> str:
        return normalize_time_slot(value)

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration_minutes(cls, value: int) -> int:
        return validate_duration(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_notes(value)

    @field_validator('status')
    @classmethod
    def validate_initial_status(cls, value: str) -> str:
        if value not in (SCHEDULED, URGENT):
            raise ValueError('New appointments start as scheduled or urgent.')
        return value


def slot_has_started(day: date, time_slot: str, now: datetime | None = None) -> bool:
    current = now or datetime.now()
    if day != current.date():
        return day < current.date()
    return parse_time_slot(time_slot) < current.hour * 60 + current.minute


def validate_booking_date(
    day: date,
    emergency: bool = False,
    today: date | None = None,
    time_slot: str | None = None,
    now: datetime | None = None,
) -> date:
    """Reject bookings for days that are already over.

    Emergency bookings may be back-filled for earlier days, but a same-day
    emergency must still start in the future.
    """
    today = today or (now.date() if now else date.today())
    if not emergency and day < today:
        raise BookingValidationError('Appointment date cannot be in the past.')
    if emergency and time_slot is not None and day == today and slot_has_started(day, time_slot, now):
        raise BookingValidationError('Emergency appointment time must be in the future.')
    return day

from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator

from clinic_backend.core import config
from clinic_backend.routes.dependencies import DATABASE_UNAVAILABLE_DETAIL, ensure_database_ready, get_store
from clinic_backend.scheduling.booking import AutoBookingEngine, book_appointment
from clinic_backend.scheduling.errors import (
    AppointmentNotFoundError,
    BookingValidationError,
    ConflictError,
    InvalidTransitionError,
    NoAvailableSlotError,
    ResolutionFailure,
    StoreError,
)
from clinic_backend.scheduling.lifecycle import APPOINTMENT_STATUSES
from clinic_backend.scheduling.schemas import AppointmentCreate, normalize_notes, normalize_service_type
from clinic_backend.scheduling.slots import CandidateSlot, normalize_time_slot, validate_duration
from clinic_backend.scheduling.store import SqlAlchemyAppointmentStore

router = APIRouter(tags=['appointments'])

MAX_REASON_LENGTH = 500


def _normalize_reason(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_REASON_LENGTH:
        raise ValueError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')

    return normalized


class AutoBookRequest(BaseModel):
    patient_id: int
    clinic_id: int
    service_type: str
    date: date
    practitioner_ids: list[int]
    duration_minutes: int | None = None
    notes: str | None = None
    emergency: bool = False

    @field_validator('service_type')
    @classmethod
    def validate_service_type(cls, value: str) -> str:
        return normalize_service_type(value)

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration_minutes(cls, value: int | None) -> int | None:
        if value is None:
            return None
        return validate_duration(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_notes(value)


class StatusUpdateRequest(BaseModel):
    status: str
    reason: str | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in APPOINTMENT_STATUSES:
            raise ValueError('Invalid appointment status.')
        return normalized

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_reason(value)


class RescheduleRequest(BaseModel):
    date: date
    time_slot: str
    reason: str | None = None

    @field_validator('time_slot')
    @classmethod
    def validate_time_slot(cls, value: str) -> str:
        return normalize_time_slot(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_reason(value)


class ConflictCheckRequest(BaseModel):
    practitioner_id: int
    date: date
    time_slot: str
    duration_minutes: int
    exclude_appointment_id: int | None = None

    @field_validator('time_slot')
    @classmethod
    def validate_time_slot(cls, value: str) -> str:
        return normalize_time_slot(value)

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration_minutes(cls, value: int) -> int:
        return validate_duration(value)


class AppointmentResponse(BaseModel):
    id: int
    practitioner_id: int | None = None
    clinic_id: int
    patient_id: int
    service_type: str
    date: date
    time_slot: str
    duration_minutes: int
    status: str
    notes: str | None = None
    emergency: bool
    created_at: datetime
    updated_at: datetime
    can_be_cancelled: bool = False
    can_be_rescheduled: bool = False

    class Config:
        from_attributes = True


class AutoBookResponse(BaseModel):
    appointment: AppointmentResponse
    booked_slot: CandidateSlot
    attempts: int


class ConflictCheckResponse(BaseModel):
    conflicting_appointment_ids: list[int]
    has_conflict: bool


def _store_unavailable() -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE_DETAIL)


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(data: AppointmentCreate, store: SqlAlchemyAppointmentStore = Depends(get_store)):
    ensure_database_ready()

    try:
        return book_appointment(store, data)
    except BookingValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='This time is already booked. Please choose another slot.',
        ) from exc
    except StoreError as exc:
        raise _store_unavailable() from exc


@router.post('/auto-book', response_model=AutoBookResponse, status_code=status.HTTP_201_CREATED)
def auto_book_first_available(data: AutoBookRequest, store: SqlAlchemyAppointmentStore = Depends(get_store)):
    ensure_database_ready()

    engine = AutoBookingEngine(store, fallback_enabled=config.AVAILABILITY_FALLBACK_ENABLED)
    try:
        result = engine.book_first_available(
            patient_id=data.patient_id,
            clinic_id=data.clinic_id,
            service_type=data.service_type,
            day=data.date,
            practitioner_ids=data.practitioner_ids,
            duration_minutes=data.duration_minutes,
            notes=data.notes,
            emergency=data.emergency,
        )
    except BookingValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except NoAvailableSlotError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except StoreError as exc:
        raise _store_unavailable() from exc

    return AutoBookResponse(
        appointment=AppointmentResponse.model_validate(result.appointment),
        booked_slot=result.slot,
        attempts=result.attempts,
    )


@router.patch('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: StatusUpdateRequest,
    store: SqlAlchemyAppointmentStore = Depends(get_store),
):
    ensure_database_ready()

    try:
        return store.update_appointment_status(appointment_id, data.status, data.reason)
    except AppointmentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.') from exc
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except StoreError as exc:
        raise _store_unavailable() from exc


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleRequest,
    store: SqlAlchemyAppointmentStore = Depends(get_store),
):
    ensure_database_ready()

    try:
        return store.reschedule_appointment(appointment_id, data.date, data.time_slot, data.reason)
    except AppointmentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.') from exc
    except BookingValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='Only upcoming scheduled or confirmed appointments can be rescheduled.',
        ) from exc
    except ConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='The new time slot conflicts with an existing appointment.',
        ) from exc
    except StoreError as exc:
        raise _store_unavailable() from exc


@router.post('/conflicts', response_model=ConflictCheckResponse)
def check_appointment_conflicts(data: ConflictCheckRequest, store: SqlAlchemyAppointmentStore = Depends(get_store)):
    ensure_database_ready()

    try:
        conflicting_ids = store.check_time_slot_conflict(
            data.practitioner_id,
            data.date,
            data.time_slot,
            data.duration_minutes,
            data.exclude_appointment_id,
        )
    except ResolutionFailure as exc:
        raise _store_unavailable() from exc

    return ConflictCheckResponse(conflicting_appointment_ids=conflicting_ids, has_conflict=bool(conflicting_ids))


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(appointment_id: int, store: SqlAlchemyAppointmentStore = Depends(get_store)):
    ensure_database_ready()

    try:
        return store.get_appointment(appointment_id)
    except AppointmentNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.') from exc
    except StoreError as exc:
        raise _store_unavailable() from exc

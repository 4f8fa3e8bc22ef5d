from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status

from clinic_backend.core import config
from clinic_backend.routes.dependencies import DATABASE_UNAVAILABLE_DETAIL, get_store
from clinic_backend.scheduling.availability import (
    AvailabilityResult,
    find_next_slot_after_last_booking,
    resolve_availability,
)
from clinic_backend.scheduling.errors import BookingValidationError, ResolutionFailure
from clinic_backend.scheduling.fallback import generate_fallback_slots
from clinic_backend.scheduling.slots import MAX_DURATION_MINUTES, MIN_DURATION_MINUTES, CandidateSlot
from clinic_backend.scheduling.store import SqlAlchemyAppointmentStore

router = APIRouter(tags=['availability'])

DEFAULT_SLOT_QUERY_DURATION_MINUTES = 30


@router.get('/slots', response_model=AvailabilityResult)
def list_availability_slots(
    day: date = Query(..., alias='date'),
    clinic_id: int = Query(...),
    practitioner_id: int | None = Query(default=None),
    duration_minutes: int = Query(
        default=DEFAULT_SLOT_QUERY_DURATION_MINUTES, ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES
    ),
    store: SqlAlchemyAppointmentStore = Depends(get_store),
):
    # No ensure_database_ready here: an unreachable database degrades to fallback slots.
    try:
        return resolve_availability(
            store,
            day,
            practitioner_id,
            clinic_id,
            duration_minutes,
            fallback_enabled=config.AVAILABILITY_FALLBACK_ENABLED,
        )
    except BookingValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.get('/fallback', response_model=list[CandidateSlot])
def list_fallback_slots(
    day: date = Query(..., alias='date'),
    practitioner_id: int | None = Query(default=None),
    duration_minutes: int = Query(
        default=DEFAULT_SLOT_QUERY_DURATION_MINUTES, ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES
    ),
):
    return generate_fallback_slots(day, duration_minutes, practitioner_id)


@router.get('/next-slot', response_model=CandidateSlot)
def get_next_slot_after_last_booking(
    day: date = Query(..., alias='date'),
    clinic_id: int = Query(...),
    duration_minutes: int = Query(
        default=DEFAULT_SLOT_QUERY_DURATION_MINUTES, ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES
    ),
    store: SqlAlchemyAppointmentStore = Depends(get_store),
):
    try:
        slot = find_next_slot_after_last_booking(store, clinic_id, day, duration_minutes)
    except BookingValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ResolutionFailure as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    if slot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='No time available after the last booking within clinic hours.',
        )

    return slot

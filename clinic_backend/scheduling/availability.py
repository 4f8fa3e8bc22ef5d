"""Availability resolution for a practitioner, clinic and day.

Every query produces fresh CandidateSlot objects; nothing is cached. The
result is tagged so callers can tell an authoritative empty day from a
resolver failure:

* ``resolved``: computed from the clinic's hours and real bookings.
* ``degraded``: the store could not be read and provisional fallback slots
  were substituted.
* ``failed``: the store could not be read and no fallback was requested.
"""

import logging
from datetime import date
from typing import Iterable

from pydantic import BaseModel

from clinic_backend.scheduling.calendar import resolve_open_interval, weekday_name
from clinic_backend.scheduling.conflicts import appointment_interval, intervals_overlap
from clinic_backend.scheduling.errors import BookingValidationError, ResolutionFailure
from clinic_backend.scheduling.fallback import generate_fallback_slots
from clinic_backend.scheduling.lifecycle import holds_slot
from clinic_backend.scheduling.slots import (
    CandidateSlot,
    OpenInterval,
    SlotSequence,
    format_minutes,
    is_peak_slot,
)

logger = logging.getLogger(__name__)

RESOLVED = 'resolved'
DEGRADED = 'degraded'
FAILED = 'failed'

CLOSED_DETAIL = 'Clinic is closed on this day.'
DEGRADED_DETAIL = 'Availability is estimated; the slot will be confirmed when booking.'


class AvailabilityResult(BaseModel):
    status: str
    date: date
    clinic_id: int
    practitioner_id: int | None = None
    duration_minutes: int
    slots: list[CandidateSlot] = []
    detail: str | None = None

    @property
    def available_slots(self) -> list[CandidateSlot]:
        return [slot for slot in self.slots if slot.available]

    @property
    def is_authoritative(self) -> bool:
        return self.status == RESOLVED


def build_candidate_slots(
    interval: OpenInterval | None,
    duration_minutes: int,
    appointments: Iterable,
    practitioner_id: int | None = None,
) -> list[CandidateSlot]:
    booked_intervals = [
        appointment_interval(appointment)
        for appointment in appointments
        if holds_slot(appointment.status)
    ]

    slots: list[CandidateSlot] = []
    for start in SlotSequence(interval, duration_minutes):
        end = start + duration_minutes
        taken = any(
            intervals_overlap(start, end, booked_start, booked_end)
            for booked_start, booked_end in booked_intervals
        )
        slots.append(
            CandidateSlot(
                start_time=format_minutes(start),
                end_time=format_minutes(end),
                available=not taken,
                is_peak=is_peak_slot(start),
                practitioner_id=practitioner_id,
            )
        )

    return slots


def _fetch_open_interval(store, clinic_id: int, day: date) -> OpenInterval | None:
    hours = store.fetch_operating_hours(clinic_id, weekday_name(day))
    return resolve_open_interval([hours] if hours is not None else [], day)


def resolve_slots(
    store,
    day: date,
    practitioner_id: int | None,
    clinic_id: int,
    duration_minutes: int,
) -> AvailabilityResult:
    """Mark every candidate start of the day available or taken.

    Store outages and malformed store data never raise; they produce a
    ``failed`` result. Invalid durations do raise BookingValidationError.
    """
    if duration_minutes is None or duration_minutes <= 0:
        raise BookingValidationError('Duration must be a positive number of minutes.')

    result = {
        'date': day,
        'clinic_id': clinic_id,
        'practitioner_id': practitioner_id,
        'duration_minutes': duration_minutes,
    }

    try:
        interval = _fetch_open_interval(store, clinic_id, day)
        if interval is None:
            return AvailabilityResult(status=RESOLVED, slots=[], detail=CLOSED_DETAIL, **result)

        if practitioner_id is not None:
            appointments = store.fetch_appointments(practitioner_id, day)
        else:
            # Without a practitioner any active clinic booking blocks the time.
            appointments = store.fetch_clinic_appointments(clinic_id, day)
        slots = build_candidate_slots(interval, duration_minutes, appointments, practitioner_id)
    except (ResolutionFailure, AttributeError, TypeError, ValueError) as exc:
        logger.warning(
            'Availability lookup failed for practitioner %s at clinic %s on %s: %s',
            practitioner_id, clinic_id, day, exc,
        )
        return AvailabilityResult(status=FAILED, slots=[], detail=str(exc), **result)

    return AvailabilityResult(status=RESOLVED, slots=slots, **result)


def resolve_availability(
    store,
    day: date,
    practitioner_id: int | None,
    clinic_id: int,
    duration_minutes: int,
    fallback_enabled: bool = True,
) -> AvailabilityResult:
    result = resolve_slots(store, day, practitioner_id, clinic_id, duration_minutes)
    if result.status != FAILED or not fallback_enabled:
        return result

    logger.info('Serving fallback slots for practitioner %s on %s', practitioner_id, day)
    return result.model_copy(
        update={
            'status': DEGRADED,
            'slots': generate_fallback_slots(day, duration_minutes, practitioner_id),
            'detail': DEGRADED_DETAIL,
        }
    )


def find_next_slot_after_last_booking(
    store,
    clinic_id: int,
    day: date,
    duration_minutes: int,
) -> CandidateSlot | None:
    """First start after the clinic's last active booking of the day.

    Looks across all practitioners of the clinic. Returns None when the clinic
    is closed or the service no longer fits before closing.
    """
    if duration_minutes is None or duration_minutes <= 0:
        raise BookingValidationError('Duration must be a positive number of minutes.')

    interval = _fetch_open_interval(store, clinic_id, day)
    if interval is None:
        return None

    booked_ends = [
        appointment_interval(appointment)[1]
        for appointment in store.fetch_clinic_appointments(clinic_id, day)
        if holds_slot(appointment.status)
    ]
    start = max([interval.open, *booked_ends])

    if start + duration_minutes > interval.close:
        return None

    return CandidateSlot(
        start_time=format_minutes(start),
        end_time=format_minutes(start + duration_minutes),
        available=True,
        is_peak=is_peak_slot(start),
    )

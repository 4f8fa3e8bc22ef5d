"""Direct booking and auto-booking of the first open slot."""

import logging
from dataclasses import dataclass
from datetime import date, datetime

from clinic_backend.core import config
from clinic_backend.scheduling.availability import resolve_availability
from clinic_backend.scheduling.conflicts import check_time_slot_conflict
from clinic_backend.scheduling.errors import ConflictError, NoAvailableSlotError, ResolutionFailure
from clinic_backend.scheduling.lifecycle import SCHEDULED, URGENT
from clinic_backend.scheduling.schemas import AppointmentCreate, slot_has_started, validate_booking_date
from clinic_backend.scheduling.slots import CandidateSlot, parse_time_slot, validate_duration

logger = logging.getLogger(__name__)


def book_appointment(store, data: AppointmentCreate, today: date | None = None, now: datetime | None = None):
    """Commit a manually chosen slot.

    The store performs the authoritative overlap check; a ConflictError is
    left for the caller so the user can pick another slot.
    """
    validate_booking_date(data.date, data.emergency, today, data.time_slot, now)
    return store.create_appointment(data)


@dataclass
class AutoBookingResult:
    appointment: object
    slot: CandidateSlot
    attempts: int


class AutoBookingEngine:
    def __init__(self, store, fallback_enabled: bool = True):
        self.store = store
        self.fallback_enabled = fallback_enabled

    def candidate_slots(
        self,
        clinic_id: int,
        day: date,
        duration_minutes: int,
        practitioner_ids: list[int],
    ) -> list[CandidateSlot]:
        """Open slots across practitioners, earliest first.

        Ties keep the order of ``practitioner_ids``.
        """
        ranked = []
        for order, practitioner_id in enumerate(practitioner_ids):
            result = resolve_availability(
                self.store, day, practitioner_id, clinic_id, duration_minutes, self.fallback_enabled
            )
            for slot in result.available_slots:
                ranked.append((parse_time_slot(slot.start_time), order, slot))

        ranked.sort(key=lambda entry: (entry[0], entry[1]))
        return [slot for _, _, slot in ranked]

    def _has_advisory_conflict(self, slot: CandidateSlot, day: date, duration_minutes: int) -> bool:
        try:
            conflicts = check_time_slot_conflict(
                self.store, slot.practitioner_id, day, slot.start_time, duration_minutes
            )
        except ResolutionFailure:
            # Commit still runs the authoritative check.
            return False
        return bool(conflicts)

    def book_first_available(
        self,
        *,
        patient_id: int,
        clinic_id: int,
        service_type: str,
        day: date,
        practitioner_ids: list[int],
        duration_minutes: int | None = None,
        notes: str | None = None,
        emergency: bool = False,
        today: date | None = None,
        now: datetime | None = None,
    ) -> AutoBookingResult:
        if duration_minutes is None:
            duration_minutes = config.DEFAULT_SERVICE_DURATION_MINUTES
        validate_duration(duration_minutes)
        validate_booking_date(day, emergency, today, now=now)
        same_day = day == (today or (now.date() if now else date.today()))

        practitioner_ids = list(dict.fromkeys(practitioner_ids))
        if not practitioner_ids:
            raise NoAvailableSlotError('No practitioners available at this clinic.')

        candidates = self.candidate_slots(clinic_id, day, duration_minutes, practitioner_ids)
        if same_day:
            candidates = [slot for slot in candidates if not slot_has_started(day, slot.start_time, now)]
        if not candidates:
            raise NoAvailableSlotError('No available time slots found for the selected date.')

        logger.info('Auto-booking on %s: %d candidate slots', day, len(candidates))

        attempts = 0
        # Each candidate is tried at most once so contention cannot loop forever.
        for slot in candidates:
            if self._has_advisory_conflict(slot, day, duration_minutes):
                continue

            attempts += 1
            data = AppointmentCreate(
                patient_id=patient_id,
                clinic_id=clinic_id,
                practitioner_id=slot.practitioner_id,
                service_type=service_type,
                date=day,
                time_slot=slot.start_time,
                duration_minutes=duration_minutes,
                notes=notes,
                emergency=emergency,
                status=URGENT if emergency else SCHEDULED,
            )
            try:
                appointment = self.store.create_appointment(data)
            except ConflictError:
                logger.warning(
                    'Slot %s with practitioner %s was taken before commit; trying the next slot',
                    slot.start_time, slot.practitioner_id,
                )
                continue

            logger.info(
                'Auto-booked %s with practitioner %s after %d attempt(s)',
                slot.start_time, slot.practitioner_id, attempts,
            )
            return AutoBookingResult(appointment=appointment, slot=slot, attempts=attempts)

        raise NoAvailableSlotError('All candidate slots were taken. Please choose another date.')

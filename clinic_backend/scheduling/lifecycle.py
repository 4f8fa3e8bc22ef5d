"""Appointment status state machine."""

import logging
from datetime import datetime, time

from clinic_backend.scheduling.errors import InvalidTransitionError
from clinic_backend.scheduling.slots import parse_time_slot

logger = logging.getLogger(__name__)

SCHEDULED = 'scheduled'
CONFIRMED = 'confirmed'
IN_PROGRESS = 'in-progress'
COMPLETED = 'completed'
CANCELLED = 'cancelled'
NO_SHOW = 'no-show'
URGENT = 'urgent'

APPOINTMENT_STATUSES = (SCHEDULED, CONFIRMED, IN_PROGRESS, COMPLETED, CANCELLED, NO_SHOW, URGENT)
TERMINAL_STATUSES = frozenset({COMPLETED, CANCELLED, NO_SHOW})

# Appointments in these statuses no longer hold their time.
FREED_STATUSES = frozenset({CANCELLED, NO_SHOW})

ALLOWED_TRANSITIONS = {
    SCHEDULED: frozenset({CONFIRMED, IN_PROGRESS, COMPLETED, CANCELLED, NO_SHOW, URGENT}),
    CONFIRMED: frozenset({IN_PROGRESS, COMPLETED, CANCELLED, NO_SHOW, URGENT}),
    URGENT: frozenset({CONFIRMED, IN_PROGRESS, COMPLETED, CANCELLED, NO_SHOW}),
    IN_PROGRESS: frozenset({COMPLETED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
    NO_SHOW: frozenset(),
}

REASON_PREFIXES = {
    CANCELLED: 'Cancellation reason',
    NO_SHOW: 'No-show note',
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def holds_slot(status: str | None) -> bool:
    return (status or SCHEDULED) not in FREED_STATUSES


def can_transition(current_status: str, new_status: str) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current_status, frozenset())


def append_note(notes: str | None, prefix: str, text: str) -> str:
    entry = f'{prefix}: {text}'
    return f'{notes}\n\n{entry}' if notes else entry


def transition(appointment, new_status: str, reason: str | None = None, now: datetime | None = None):
    """Apply a status change to ``appointment`` in place.

    Raises InvalidTransitionError, leaving the appointment untouched, when the
    change is not allowed. Completing before the scheduled start is allowed.
    """
    current_status = appointment.status or SCHEDULED
    if not can_transition(current_status, new_status):
        raise InvalidTransitionError(current_status, new_status)

    appointment.status = new_status
    appointment.updated_at = now or datetime.now()

    if reason and reason.strip():
        prefix = REASON_PREFIXES.get(new_status, 'Status note')
        appointment.notes = append_note(appointment.notes, prefix, reason.strip())

    logger.info('Appointment %s moved from %s to %s', appointment.id, current_status, new_status)
    return appointment


def starts_at(appointment) -> datetime:
    minutes = parse_time_slot(appointment.time_slot)
    return datetime.combine(appointment.date, time(minutes // 60, minutes % 60))


def is_past(appointment, now: datetime | None = None) -> bool:
    return starts_at(appointment) < (now or datetime.now())


def can_be_cancelled(appointment, now: datetime | None = None) -> bool:
    return appointment.status in (SCHEDULED, CONFIRMED) and not is_past(appointment, now)


def can_be_rescheduled(appointment, now: datetime | None = None) -> bool:
    return appointment.status in (SCHEDULED, CONFIRMED) and not is_past(appointment, now)

"""Errors raised by the scheduling core and the appointment store."""


class SchedulingError(Exception):
    """Base class for scheduling failures."""


class ResolutionFailure(SchedulingError):
    """Availability data could not be fetched or was malformed."""


class ConflictError(SchedulingError):
    """A booking would overlap an active appointment for the same practitioner."""

    def __init__(self, message: str = 'This time slot conflicts with an existing appointment.',
                 conflicting_ids: list[int] | None = None):
        super().__init__(message)
        self.conflicting_ids = list(conflicting_ids or [])


class InvalidTransitionError(SchedulingError):
    def __init__(self, current_status: str, requested_status: str):
        super().__init__(f"Cannot change appointment status from '{current_status}' to '{requested_status}'.")
        self.current_status = current_status
        self.requested_status = requested_status


class BookingValidationError(SchedulingError, ValueError):
    """Malformed booking input (bad duration, past date, missing fields)."""


class AppointmentNotFoundError(SchedulingError):
    def __init__(self, appointment_id: int):
        super().__init__(f'Appointment {appointment_id} not found.')
        self.appointment_id = appointment_id


class StoreError(SchedulingError):
    """The appointment store failed for a reason other than a conflict."""


class NoAvailableSlotError(SchedulingError):
    """Auto-booking ran out of candidate slots."""

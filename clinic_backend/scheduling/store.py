"""SQLAlchemy-backed appointment store.

This is the persistence boundary of the scheduling core. Reads raise
ResolutionFailure when the database cannot be reached. Writes that could
break the no-overlap rule re-check conflicts inside the committing
transaction while holding a per-practitioner lock, so two callers racing for
the same time cannot both succeed.

Lock order is always the practitioner lock first, then appointment rows.
PostgreSQL uses a transaction-scoped advisory lock. SQLite has no row locks
and only opens its write transaction at the first INSERT, so writers for one
practitioner are serialized with an in-process lock held until commit.
"""

import logging
from collections import defaultdict
from contextlib import contextmanager
from datetime import date, datetime, time
from threading import Lock

from sqlalchemy import func, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.models.appointment import Appointment
from clinic_backend.models.operating_hours import OperatingHours
from clinic_backend.scheduling import lifecycle
from clinic_backend.scheduling.conflicts import find_conflicts
from clinic_backend.scheduling.errors import (
    AppointmentNotFoundError,
    BookingValidationError,
    ConflictError,
    InvalidTransitionError,
    ResolutionFailure,
    StoreError,
)
from clinic_backend.scheduling.schemas import AppointmentCreate, validate_booking_date
from clinic_backend.scheduling.slots import normalize_time_slot

logger = logging.getLogger(__name__)

_sqlite_write_locks: defaultdict[int, Lock] = defaultdict(Lock)
_sqlite_write_locks_guard = Lock()


def _sqlite_write_lock(practitioner_id: int) -> Lock:
    with _sqlite_write_locks_guard:
        return _sqlite_write_locks[practitioner_id]


class SqlAlchemyAppointmentStore:
    def __init__(self, db: Session):
        self.db = db

    def fetch_operating_hours(self, clinic_id: int, weekday: str) -> OperatingHours | None:
        try:
            return self.db.query(OperatingHours).filter(
                OperatingHours.clinic_id == clinic_id,
                func.lower(OperatingHours.weekday) == weekday.strip().lower(),
            ).first()
        except SQLAlchemyError as exc:
            raise ResolutionFailure('Operating hours unavailable.') from exc

    def fetch_appointments(self, practitioner_id: int, day: date) -> list[Appointment]:
        try:
            return self.db.query(Appointment).filter(
                Appointment.practitioner_id == practitioner_id,
                Appointment.date == day,
            ).order_by(Appointment.time_slot.asc()).all()
        except SQLAlchemyError as exc:
            raise ResolutionFailure('Appointments unavailable.') from exc

    def fetch_clinic_appointments(self, clinic_id: int, day: date) -> list[Appointment]:
        try:
            return self.db.query(Appointment).filter(
                Appointment.clinic_id == clinic_id,
                Appointment.date == day,
                Appointment.status.notin_(sorted(lifecycle.FREED_STATUSES)),
            ).order_by(Appointment.time_slot.asc()).all()
        except SQLAlchemyError as exc:
            raise ResolutionFailure('Appointments unavailable.') from exc

    def get_appointment(self, appointment_id: int) -> Appointment:
        try:
            appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        except SQLAlchemyError as exc:
            raise StoreError('Failed to load appointment.') from exc

        if appointment is None:
            raise AppointmentNotFoundError(appointment_id)
        return appointment

    def check_time_slot_conflict(
        self,
        practitioner_id: int | None,
        day: date,
        start_time: str | time,
        duration_minutes: int,
        exclude_appointment_id: int | None = None,
    ) -> list[int]:
        if practitioner_id is None:
            return []
        return find_conflicts(
            self.fetch_appointments(practitioner_id, day),
            start_time,
            duration_minutes,
            exclude_appointment_id,
        )

    @contextmanager
    def _practitioner_write_lock(self, practitioner_id: int | None):
        """Hold the practitioner's write lock until the block commits or fails."""
        if practitioner_id is None:
            yield
            return

        dialect = self.db.get_bind().dialect.name
        if dialect == 'postgresql':
            self.db.execute(text('SELECT pg_advisory_xact_lock(:key)'), {'key': practitioner_id})
            yield
        elif dialect == 'sqlite':
            with _sqlite_write_lock(practitioner_id):
                yield
        else:
            yield

    def _lock_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).populate_existing().with_for_update().first()
        if appointment is None:
            raise AppointmentNotFoundError(appointment_id)
        return appointment

    def _lock_practitioner_day(self, practitioner_id: int, day: date) -> list[Appointment]:
        # Rows alone cannot lock the gaps between them; callers hold the practitioner lock.
        return self.db.query(Appointment).filter(
            Appointment.practitioner_id == practitioner_id,
            Appointment.date == day,
            Appointment.status.notin_(sorted(lifecycle.FREED_STATUSES)),
        ).with_for_update().all()

    def _ensure_no_conflict(
        self,
        practitioner_id: int | None,
        day: date,
        time_slot: str,
        duration_minutes: int,
        exclude_appointment_id: int | None = None,
    ) -> None:
        if practitioner_id is None:
            return

        existing = self._lock_practitioner_day(practitioner_id, day)
        conflicting_ids = find_conflicts(existing, time_slot, duration_minutes, exclude_appointment_id)
        if conflicting_ids:
            raise ConflictError(conflicting_ids=conflicting_ids)

    def create_appointment(self, data: AppointmentCreate) -> Appointment:
        try:
            with self._practitioner_write_lock(data.practitioner_id):
                self._ensure_no_conflict(data.practitioner_id, data.date, data.time_slot, data.duration_minutes)

                now = datetime.now()
                appointment = Appointment(
                    practitioner_id=data.practitioner_id,
                    clinic_id=data.clinic_id,
                    patient_id=data.patient_id,
                    service_type=data.service_type,
                    date=data.date,
                    time_slot=data.time_slot,
                    duration_minutes=data.duration_minutes,
                    status=data.status,
                    notes=data.notes,
                    emergency=data.emergency,
                    created_at=now,
                    updated_at=now,
                )
                self.db.add(appointment)
                self.db.commit()
            self.db.refresh(appointment)
        except ConflictError:
            self.db.rollback()
            raise
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning('Appointment booking conflict: %s', exc)
            raise ConflictError() from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Failed to create appointment')
            raise StoreError('Failed to create appointment.') from exc

        logger.info(
            'Created appointment %s for patient %s at %s %s',
            appointment.id, appointment.patient_id, appointment.date, appointment.time_slot,
        )
        return appointment

    def update_appointment_status(
        self,
        appointment_id: int,
        new_status: str,
        reason: str | None = None,
    ) -> Appointment:
        try:
            appointment = self._lock_appointment(appointment_id)
            lifecycle.transition(appointment, new_status, reason)
            self.db.commit()
            self.db.refresh(appointment)
        except (AppointmentNotFoundError, InvalidTransitionError):
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Failed to update appointment %s', appointment_id)
            raise StoreError('Failed to update appointment.') from exc

        return appointment

    def reschedule_appointment(
        self,
        appointment_id: int,
        new_date: date,
        new_time_slot: str,
        reason: str | None = None,
        today: date | None = None,
        now: datetime | None = None,
    ) -> Appointment:
        """Move an upcoming scheduled or confirmed appointment to a new time.

        Raises InvalidTransitionError for appointments that can no longer be
        moved, BookingValidationError for a bad target and ConflictError when
        the target overlaps another appointment of the same practitioner.
        """
        try:
            practitioner_id = self.get_appointment(appointment_id).practitioner_id

            with self._practitioner_write_lock(practitioner_id):
                appointment = self._lock_appointment(appointment_id)
                if not lifecycle.can_be_rescheduled(appointment, now):
                    raise InvalidTransitionError(appointment.status, appointment.status)

                time_slot = normalize_time_slot(new_time_slot)
                validate_booking_date(new_date, appointment.emergency, today, time_slot, now)
                self._ensure_no_conflict(
                    appointment.practitioner_id,
                    new_date,
                    time_slot,
                    appointment.duration_minutes,
                    exclude_appointment_id=appointment.id,
                )

                previous = f'{appointment.date.isoformat()} {appointment.time_slot}'
                appointment.date = new_date
                appointment.time_slot = time_slot
                appointment.updated_at = datetime.now()
                if reason and reason.strip():
                    appointment.notes = lifecycle.append_note(appointment.notes, 'Rescheduled', reason.strip())

                self.db.commit()
            self.db.refresh(appointment)
        except (AppointmentNotFoundError, InvalidTransitionError, ConflictError, BookingValidationError):
            self.db.rollback()
            raise
        except ValueError as exc:
            self.db.rollback()
            raise BookingValidationError(str(exc)) from exc
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning('Appointment reschedule conflict: %s', exc)
            raise ConflictError() from exc
        except StoreError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Failed to reschedule appointment %s', appointment_id)
            raise StoreError('Failed to reschedule appointment.') from exc

        logger.info('Rescheduled appointment %s from %s to %s %s', appointment.id, previous, new_date, time_slot)
        return appointment

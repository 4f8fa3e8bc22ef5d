import os
from datetime import date, datetime
from types import SimpleNamespace

import pytest

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from clinic_backend.database import Base  # noqa: E402
from clinic_backend.models.appointment import Appointment  # noqa: E402
from clinic_backend.models.operating_hours import OperatingHours  # noqa: E402
from clinic_backend.scheduling.conflicts import find_conflicts  # noqa: E402
from clinic_backend.scheduling.errors import ConflictError, ResolutionFailure  # noqa: E402

# 2030-01-07 is a Monday.
MONDAY = date(2030, 1, 7)
SUNDAY = date(2030, 1, 6)
TUESDAY = date(2030, 1, 8)


class FakeAppointmentStore:
    """In-memory stand-in for the appointment store."""

    def __init__(self, operating_hours=None, appointments=None):
        self.operating_hours = list(operating_hours or [])
        self.appointments = list(appointments or [])
        self.offline = False
        self.taken_before_commit: set[tuple[int | None, str]] = set()
        self.create_calls = 0
        self._next_id = 1000

    def _check_online(self) -> None:
        if self.offline:
            raise ResolutionFailure('Appointment store unreachable.')

    def fetch_operating_hours(self, clinic_id, weekday):
        self._check_online()
        return next(
            (hours for hours in self.operating_hours if hours.clinic_id == clinic_id and hours.weekday == weekday),
            None,
        )

    def fetch_appointments(self, practitioner_id, day):
        self._check_online()
        return [
            appointment for appointment in self.appointments
            if appointment.practitioner_id == practitioner_id and appointment.date == day
        ]

    def fetch_clinic_appointments(self, clinic_id, day):
        self._check_online()
        return [
            appointment for appointment in self.appointments
            if appointment.clinic_id == clinic_id and appointment.date == day
        ]

    def create_appointment(self, data):
        self.create_calls += 1
        if (data.practitioner_id, data.time_slot) in self.taken_before_commit:
            raise ConflictError()

        if data.practitioner_id is not None:
            existing = [
                appointment for appointment in self.appointments
                if appointment.practitioner_id == data.practitioner_id and appointment.date == data.date
            ]
            conflicting_ids = find_conflicts(existing, data.time_slot, data.duration_minutes)
            if conflicting_ids:
                raise ConflictError(conflicting_ids=conflicting_ids)

        self._next_id += 1
        now = datetime.now()
        appointment = SimpleNamespace(id=self._next_id, created_at=now, updated_at=now, **data.model_dump())
        self.appointments.append(appointment)
        return appointment


def hours(weekday: str, open_time: str = '09:00', close_time: str = '17:00', clinic_id: int = 1, is_closed=False):
    return SimpleNamespace(
        clinic_id=clinic_id,
        weekday=weekday,
        open_time=open_time,
        close_time=close_time,
        is_closed=is_closed,
    )


def booked(appointment_id: int, time_slot: str, duration_minutes: int, practitioner_id: int = 7,
           status: str = 'scheduled', day: date = MONDAY, clinic_id: int = 1):
    return SimpleNamespace(
        id=appointment_id,
        practitioner_id=practitioner_id,
        clinic_id=clinic_id,
        date=day,
        time_slot=time_slot,
        duration_minutes=duration_minutes,
        status=status,
        notes=None,
        updated_at=None,
    )


@pytest.fixture
def make_hours():
    return hours


@pytest.fixture
def make_booking():
    return booked


@pytest.fixture
def fake_store():
    return FakeAppointmentStore(operating_hours=[hours('monday')])


@pytest.fixture
def appointment_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=[Appointment.__table__, OperatingHours.__table__])

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=[Appointment.__table__, OperatingHours.__table__])


@pytest.fixture
def clinic_hours(appointment_db):
    for weekday in ('monday', 'tuesday', 'wednesday', 'thursday', 'friday'):
        appointment_db.add(OperatingHours(clinic_id=1, weekday=weekday, open_time='09:00', close_time='17:00'))
    appointment_db.add(OperatingHours(clinic_id=1, weekday='sunday', is_closed=True))
    appointment_db.commit()
    return appointment_db

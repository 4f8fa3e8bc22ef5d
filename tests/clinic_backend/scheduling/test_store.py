import threading
from contextlib import contextmanager
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from clinic_backend.database import Base
from clinic_backend.models.appointment import Appointment
from clinic_backend.models.operating_hours import OperatingHours
from clinic_backend.scheduling.availability import RESOLVED, resolve_availability
from clinic_backend.scheduling.errors import (
    AppointmentNotFoundError,
    BookingValidationError,
    ConflictError,
    InvalidTransitionError,
    ResolutionFailure,
    StoreError,
)
from clinic_backend.scheduling.schemas import AppointmentCreate
from clinic_backend.scheduling.store import SqlAlchemyAppointmentStore
from conftest import MONDAY, TUESDAY


def _request(time_slot: str, duration_minutes: int = 60, practitioner_id: int | None = 7, **overrides):
    fields = {
        'patient_id': 42,
        'clinic_id': 1,
        'practitioner_id': practitioner_id,
        'service_type': 'General consultation',
        'date': MONDAY,
        'time_slot': time_slot,
        'duration_minutes': duration_minutes,
    }
    fields.update(overrides)
    return AppointmentCreate(**fields)


@pytest.fixture
def store(clinic_hours):
    return SqlAlchemyAppointmentStore(clinic_hours)


def test_create_appointment_persists_booking(store) -> None:
    appointment = store.create_appointment(_request('10:00', notes='  First visit  '))

    assert appointment.id is not None
    assert appointment.status == 'scheduled'
    assert appointment.notes == 'First visit'
    assert appointment.created_at == appointment.updated_at
    assert store.get_appointment(appointment.id).time_slot == '10:00'


def test_create_appointment_rejects_overlap_for_same_practitioner(store) -> None:
    first = store.create_appointment(_request('10:00'))

    with pytest.raises(ConflictError) as exception_info:
        store.create_appointment(_request('10:30', duration_minutes=30))

    assert exception_info.value.conflicting_ids == [first.id]
    assert len(store.fetch_appointments(7, MONDAY)) == 1


def test_create_appointment_allows_other_practitioner_and_back_to_back(store) -> None:
    store.create_appointment(_request('10:00'))

    store.create_appointment(_request('10:00', practitioner_id=8))
    store.create_appointment(_request('11:00'))

    assert [appointment.time_slot for appointment in store.fetch_appointments(7, MONDAY)] == ['10:00', '11:00']


def test_cancelled_appointment_frees_its_slot(store) -> None:
    first = store.create_appointment(_request('10:00'))
    store.update_appointment_status(first.id, 'cancelled', 'Feeling better')

    second = store.create_appointment(_request('10:00'))

    assert second.id != first.id
    assert store.get_appointment(first.id).notes == 'Cancellation reason: Feeling better'


def test_unassigned_appointments_never_conflict(store) -> None:
    store.create_appointment(_request('10:00', practitioner_id=None))
    store.create_appointment(_request('10:00', practitioner_id=None, patient_id=43))

    assert store.check_time_slot_conflict(None, MONDAY, '10:00', 60) == []


def test_unique_index_backstop_maps_to_conflict(store, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(SqlAlchemyAppointmentStore, '_ensure_no_conflict', lambda self, *args, **kwargs: None)
    store.create_appointment(_request('10:00'))

    with pytest.raises(ConflictError):
        store.create_appointment(_request('10:00', patient_id=43))

    assert len(store.fetch_appointments(7, MONDAY)) == 1


def test_check_time_slot_conflict_can_exclude_an_appointment(store) -> None:
    appointment = store.create_appointment(_request('10:00'))

    assert store.check_time_slot_conflict(7, MONDAY, '10:30', 30) == [appointment.id]
    assert store.check_time_slot_conflict(7, MONDAY, '10:30', 30, appointment.id) == []


def test_update_appointment_status_applies_transition(store) -> None:
    appointment = store.create_appointment(_request('10:00'))

    updated = store.update_appointment_status(appointment.id, 'confirmed')

    assert updated.status == 'confirmed'
    assert updated.updated_at >= updated.created_at


def test_update_appointment_status_rejects_invalid_transition(store) -> None:
    appointment = store.create_appointment(_request('10:00'))
    store.update_appointment_status(appointment.id, 'completed')

    with pytest.raises(InvalidTransitionError):
        store.update_appointment_status(appointment.id, 'cancelled', 'Too late')

    unchanged = store.get_appointment(appointment.id)
    assert unchanged.status == 'completed'
    assert unchanged.notes is None


def test_update_appointment_status_raises_for_missing_appointment(store) -> None:
    with pytest.raises(AppointmentNotFoundError):
        store.update_appointment_status(999, 'confirmed')


def test_reschedule_moves_appointment_and_records_reason(store) -> None:
    appointment = store.create_appointment(_request('10:00'))

    moved = store.reschedule_appointment(appointment.id, TUESDAY, '14:00', 'Patient request')

    assert moved.date == TUESDAY
    assert moved.time_slot == '14:00'
    assert moved.notes == 'Rescheduled: Patient request'
    assert store.fetch_appointments(7, MONDAY) == []


def test_reschedule_into_overlapping_own_slot_is_allowed(store) -> None:
    appointment = store.create_appointment(_request('10:00'))

    moved = store.reschedule_appointment(appointment.id, MONDAY, '10:30')

    assert moved.time_slot == '10:30'


def test_reschedule_rejects_conflicting_slot(store) -> None:
    store.create_appointment(_request('14:00'))
    appointment = store.create_appointment(_request('10:00'))

    with pytest.raises(ConflictError):
        store.reschedule_appointment(appointment.id, MONDAY, '13:30')

    assert store.get_appointment(appointment.id).time_slot == '10:00'


@pytest.mark.parametrize('status', ['completed', 'cancelled', 'no-show', 'in-progress', 'urgent'])
def test_reschedule_refuses_appointments_that_are_not_upcoming(store, status: str) -> None:
    appointment = store.create_appointment(_request('10:00'))
    store.update_appointment_status(appointment.id, status)

    with pytest.raises(InvalidTransitionError):
        store.reschedule_appointment(appointment.id, TUESDAY, '10:00')


def test_reschedule_validates_date_and_time(store) -> None:
    appointment = store.create_appointment(_request('10:00'))

    with pytest.raises(BookingValidationError):
        store.reschedule_appointment(appointment.id, MONDAY, '11:00', today=TUESDAY)

    with pytest.raises(BookingValidationError):
        store.reschedule_appointment(appointment.id, TUESDAY, 'later')


def test_reschedule_raises_for_missing_appointment(store) -> None:
    with pytest.raises(AppointmentNotFoundError):
        store.reschedule_appointment(999, TUESDAY, '10:00')


def test_fetch_clinic_appointments_skips_freed_bookings(store) -> None:
    kept = store.create_appointment(_request('09:00'))
    dropped = store.create_appointment(_request('11:00', practitioner_id=8))
    store.update_appointment_status(dropped.id, 'no-show')

    assert [appointment.id for appointment in store.fetch_clinic_appointments(1, MONDAY)] == [kept.id]


def test_resolved_availability_reflects_stored_bookings(store) -> None:
    store.create_appointment(_request('10:00'))

    result = resolve_availability(store, MONDAY, 7, 1, 30)
    taken = [slot.start_time for slot in result.slots if not slot.available]

    assert result.status == RESOLVED
    assert taken == ['10:00', '10:30']


def test_reads_raise_resolution_failure_when_database_fails(store, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_query(*args, **kwargs):
        raise SQLAlchemyError('connection refused')

    monkeypatch.setattr(store.db, 'query', broken_query)

    with pytest.raises(ResolutionFailure):
        store.fetch_operating_hours(1, 'monday')
    with pytest.raises(ResolutionFailure):
        store.fetch_appointments(7, MONDAY)
    with pytest.raises(StoreError):
        store.get_appointment(1)


def test_reschedule_refuses_appointments_that_already_started(store) -> None:
    appointment = store.create_appointment(_request('10:00', date=date(2020, 1, 6)))

    assert appointment.can_be_cancelled is False
    assert appointment.can_be_rescheduled is False
    with pytest.raises(InvalidTransitionError):
        store.reschedule_appointment(appointment.id, TUESDAY, '10:00')


def test_upcoming_appointment_reports_it_can_be_moved(store) -> None:
    appointment = store.create_appointment(_request('10:00'))

    assert appointment.can_be_cancelled is True
    assert appointment.can_be_rescheduled is True


def test_fetch_operating_hours_ignores_weekday_case(store) -> None:
    store.db.add(OperatingHours(clinic_id=2, weekday='Wednesday', open_time='08:00', close_time='12:00'))
    store.db.commit()

    assert store.fetch_operating_hours(2, 'wednesday').open_time == '08:00'
    assert resolve_availability(store, date(2030, 1, 9), 7, 2, 60).slots[0].start_time == '08:00'


def test_writes_take_practitioner_lock_before_row_locks(store, monkeypatch: pytest.MonkeyPatch) -> None:
    events = []
    practitioner_lock = SqlAlchemyAppointmentStore._practitioner_write_lock
    lock_appointment = SqlAlchemyAppointmentStore._lock_appointment
    lock_practitioner_day = SqlAlchemyAppointmentStore._lock_practitioner_day

    @contextmanager
    def recording_practitioner_lock(self, practitioner_id):
        events.append('practitioner')
        with practitioner_lock(self, practitioner_id):
            yield

    def recording_lock_appointment(self, appointment_id):
        events.append('appointment')
        return lock_appointment(self, appointment_id)

    def recording_lock_practitioner_day(self, practitioner_id, day):
        events.append('practitioner-day')
        return lock_practitioner_day(self, practitioner_id, day)

    monkeypatch.setattr(SqlAlchemyAppointmentStore, '_practitioner_write_lock', recording_practitioner_lock)
    monkeypatch.setattr(SqlAlchemyAppointmentStore, '_lock_appointment', recording_lock_appointment)
    monkeypatch.setattr(SqlAlchemyAppointmentStore, '_lock_practitioner_day', recording_lock_practitioner_day)

    appointment = store.create_appointment(_request('10:00'))
    assert events == ['practitioner', 'practitioner-day']

    events.clear()
    store.reschedule_appointment(appointment.id, MONDAY, '11:00')
    assert events == ['practitioner', 'appointment', 'practitioner-day']


@pytest.fixture
def shared_sqlite(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'clinic.db'}", connect_args={'check_same_thread': False})
    tables = [Appointment.__table__, OperatingHours.__table__]
    Base.metadata.create_all(bind=engine, tables=tables)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine, tables=tables)
        engine.dispose()


def test_concurrent_overlapping_bookings_commit_only_one(shared_sqlite, monkeypatch: pytest.MonkeyPatch) -> None:
    first_has_read = threading.Event()
    let_first_write = threading.Event()
    read_practitioner_day = SqlAlchemyAppointmentStore._lock_practitioner_day

    def read_then_wait(self, practitioner_id, day):
        existing = read_practitioner_day(self, practitioner_id, day)
        if threading.current_thread().name == 'first':
            first_has_read.set()
            let_first_write.wait(timeout=5)
        return existing

    monkeypatch.setattr(SqlAlchemyAppointmentStore, '_lock_practitioner_day', read_then_wait)
    outcomes = {}

    def book(time_slot: str, duration_minutes: int) -> None:
        db = shared_sqlite()
        try:
            appointment = SqlAlchemyAppointmentStore(db).create_appointment(_request(time_slot, duration_minutes))
            outcomes[threading.current_thread().name] = appointment.time_slot
        except ConflictError as exc:
            outcomes[threading.current_thread().name] = exc
        finally:
            db.close()

    first = threading.Thread(target=book, args=('10:00', 60), name='first')
    second = threading.Thread(target=book, args=('10:30', 30), name='second')
    first.start()
    assert first_has_read.wait(timeout=5)
    second.start()
    second.join(timeout=0.2)
    let_first_write.set()
    first.join(timeout=5)
    second.join(timeout=5)

    assert outcomes['first'] == '10:00'
    assert isinstance(outcomes['second'], ConflictError)

    db = shared_sqlite()
    try:
        assert [(row.time_slot, row.duration_minutes) for row in db.query(Appointment).all()] == [('10:00', 60)]
    finally:
        db.close()

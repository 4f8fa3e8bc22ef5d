"""Overlap detection between a proposed booking and existing appointments.

Intervals are half-open, ``[start, start + duration)``, so back-to-back
appointments do not conflict.
"""

from datetime import date, time
from typing import Iterable

from clinic_backend.scheduling.lifecycle import holds_slot
from clinic_backend.scheduling.slots import parse_time_slot


def intervals_overlap(first_start: int, first_end: int, second_start: int, second_end: int) -> bool:
    return first_start < second_end and second_start < first_end


def appointment_interval(appointment) -> tuple[int, int]:
    start = parse_time_slot(appointment.time_slot)
    duration = int(appointment.duration_minutes)
    if duration <= 0:
        raise ValueError(f'Appointment {appointment.id} has a non-positive duration.')
    return start, start + duration


def find_conflicts(
    appointments: Iterable,
    start_time: str | time,
    duration_minutes: int,
    exclude_appointment_id: int | None = None,
) -> list[int]:
    proposed_start = parse_time_slot(start_time)
    proposed_end = proposed_start + duration_minutes

    conflicting_ids: list[int] = []
    for appointment in appointments:
        if exclude_appointment_id is not None and appointment.id == exclude_appointment_id:
            continue
        if not holds_slot(appointment.status):
            continue

        booked_start, booked_end = appointment_interval(appointment)
        if intervals_overlap(proposed_start, proposed_end, booked_start, booked_end):
            conflicting_ids.append(appointment.id)

    return conflicting_ids


def check_time_slot_conflict(
    store,
    practitioner_id: int | None,
    day: date,
    start_time: str | time,
    duration_minutes: int,
    exclude_appointment_id: int | None = None,
) -> list[int]:
    """Advisory check against the practitioner's appointments as of now.

    Unassigned bookings have nothing to collide with. The store repeats this
    check inside the committing transaction.
    """
    if practitioner_id is None:
        return []

    appointments = store.fetch_appointments(practitioner_id, day)
    return find_conflicts(appointments, start_time, duration_minutes, exclude_appointment_id)

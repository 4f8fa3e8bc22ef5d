"""Slot arithmetic and candidate slot generation.

Times of day are handled as minutes since midnight. Persisted and serialized
values use the ``HH:MM`` 24-hour form.
"""

import re
from datetime import time
from typing import Iterator, NamedTuple

from pydantic import BaseModel

from clinic_backend.scheduling.errors import BookingValidationError

SLOT_GRANULARITY_MINUTES = 30
MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 480
PEAK_HOUR_RANGES = ((10, 12), (14, 16))

TIME_SLOT_PATTERN = re.compile(r'^([01]?[0-9]|2[0-3]):([0-5][0-9])$')


class OpenInterval(NamedTuple):
    open: int
    close: int


class CandidateSlot(BaseModel):
    start_time: str
    end_time: str
    available: bool
    is_peak: bool
    practitioner_id: int | None = None
    provisional: bool = False


def parse_time_slot(value: str | time) -> int:
    if isinstance(value, time):
        return value.hour * 60 + value.minute

    match = TIME_SLOT_PATTERN.match((value or '').strip())
    if not match:
        raise ValueError(f'Invalid time slot {value!r}; expected HH:MM.')
    return int(match.group(1)) * 60 + int(match.group(2))


def format_minutes(minutes: int) -> str:
    return f'{minutes // 60:02d}:{minutes % 60:02d}'


def normalize_time_slot(value: str | time) -> str:
    return format_minutes(parse_time_slot(value))


def is_peak_slot(start_minutes: int) -> bool:
    hour = start_minutes // 60
    return any(low <= hour < high for low, high in PEAK_HOUR_RANGES)


def validate_duration(duration_minutes: int) -> int:
    if duration_minutes is None or duration_minutes <= 0:
        raise BookingValidationError('Duration must be a positive number of minutes.')
    if duration_minutes < MIN_DURATION_MINUTES:
        raise BookingValidationError(f'Minimum appointment duration is {MIN_DURATION_MINUTES} minutes.')
    if duration_minutes > MAX_DURATION_MINUTES:
        raise BookingValidationError(f'Maximum appointment duration is {MAX_DURATION_MINUTES} minutes.')
    return duration_minutes


class SlotSequence:
    """Start times offered for one day.

    Starts at the opening time and steps by the slot granularity. A start is
    only offered while the whole service still fits before closing, so a
    closed day or a service longer than the open window yields nothing.
    Iterating again restarts from the opening time.
    """

    def __init__(
        self,
        interval: OpenInterval | None,
        duration_minutes: int,
        granularity_minutes: int = SLOT_GRANULARITY_MINUTES,
    ):
        if duration_minutes <= 0:
            raise BookingValidationError('Duration must be a positive number of minutes.')
        self.interval = interval
        self.duration_minutes = duration_minutes
        self.granularity_minutes = granularity_minutes

    def __iter__(self) -> Iterator[int]:
        if self.interval is None:
            return

        start = self.interval.open
        while start + self.duration_minutes <= self.interval.close:
            yield start
            start += self.granularity_minutes

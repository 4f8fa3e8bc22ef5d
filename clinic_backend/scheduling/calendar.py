import logging
from datetime import date
from typing import Iterable

from clinic_backend.scheduling.slots import OpenInterval, parse_time_slot

logger = logging.getLogger(__name__)

WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')


def weekday_name(day: date) -> str:
    # Dates are clinic-local calendar days; no timezone conversion.
    return WEEKDAYS[day.weekday()]


def resolve_open_interval(operating_hours: Iterable, day: date) -> OpenInterval | None:
    """Return the clinic's open interval on ``day``, or None when closed.

    ``operating_hours`` holds records with ``weekday``, ``open_time``,
    ``close_time`` and ``is_closed``. A missing or unusable record counts as
    closed.
    """
    target = weekday_name(day)
    record = next(
        (hours for hours in operating_hours if (hours.weekday or '').strip().lower() == target),
        None,
    )

    if record is None or record.is_closed:
        return None

    try:
        open_minutes = parse_time_slot(record.open_time)
        close_minutes = parse_time_slot(record.close_time)
    except (AttributeError, TypeError, ValueError):
        logger.warning('Ignoring malformed operating hours for %s: %r-%r', target, record.open_time, record.close_time)
        return None

    if open_minutes >= close_minutes:
        return None

    return OpenInterval(open_minutes, close_minutes)

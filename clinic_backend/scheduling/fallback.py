from datetime import date

from clinic_backend.scheduling.slots import CandidateSlot, OpenInterval, SlotSequence, format_minutes

FALLBACK_DAY = OpenInterval(9 * 60, 17 * 60)
FALLBACK_PEAK_HOURS = (12, 16)


def generate_fallback_slots(day: date, duration_minutes: int, practitioner_id: int | None = None) -> list[CandidateSlot]:
    """Provisional slots for when real availability cannot be fetched.

    Knows nothing about existing bookings: every slot is marked available and
    provisional. ``day`` is accepted so callers can pass the same arguments
    as the real resolver; the output depends only on the duration and
    practitioner.
    """
    starts = list(SlotSequence(FALLBACK_DAY, duration_minutes))
    if not starts:
        starts = [FALLBACK_DAY.open]

    return [
        CandidateSlot(
            start_time=format_minutes(start),
            end_time=format_minutes(start + duration_minutes),
            available=True,
            is_peak=start // 60 in FALLBACK_PEAK_HOURS,
            practitioner_id=practitioner_id,
            provisional=True,
        )
        for start in starts
    ]

# app/services/scheduling/slots.py
"""Discrete bookable slots for a provider on one day."""
from datetime import date, timedelta
from typing import Iterable, List

from app.schemas.scheduling import Appointment
from app.services.scheduling.availability_resolver import AvailabilityResolver
from app.services.scheduling.conflict_detector import ConflictDetector
from app.services.scheduling.time_grid import Interval


def list_bookable_slots(
        resolver: AvailabilityResolver,
        appointments: Iterable[Appointment],
        provider_id: int,
        day: date,
        duration_minutes: int,
        step_minutes: int,
        cancelled_status_ids: Iterable[int] = (),
        default_duration_minutes: int = 30
) -> List[Interval]:
    """
    Walk each bookable window in ``step_minutes`` increments and keep the
    ``duration_minutes`` slots that fit inside the window and do not overlap
    an active appointment of the provider.
    """
    if duration_minutes <= 0 or step_minutes <= 0:
        return []

    detector = ConflictDetector(cancelled_status_ids, default_duration_minutes)
    appointments = [a for a in appointments if a.provider_id == provider_id]
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)

    slots = []
    for window_start, window_end in resolver.bookable_windows(provider_id, day):
        current = window_start
        while current + duration <= window_end:
            slot_end = current + duration
            if not detector.has_conflict(provider_id, current, slot_end, appointments):
                slots.append((current, slot_end))
            current += step

    return slots

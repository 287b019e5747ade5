# app/services/scheduling/time_grid.py
"""
Time grid primitives.

Everything here works on naive wall-clock values in the tenant's timezone.
Intervals are half-open ``[start, end)`` and never span midnight.
"""
from datetime import date, datetime, time, timedelta
from typing import Iterator, List, Optional, Tuple, Union

WALL_CLOCK_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M:%S"

Interval = Tuple[datetime, datetime]


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    """Half-open overlap test; touching boundaries do not overlap."""
    return a_start < b_end and b_start < a_end


def contains(outer_start, outer_end, inner_start, inner_end) -> bool:
    """True when ``[inner_start, inner_end)`` lies within ``[outer_start, outer_end)``."""
    return outer_start <= inner_start and inner_end <= outer_end


def to_weekday(value: Union[date, datetime]) -> int:
    """Weekday with 0=Sunday (Python's ``weekday()`` uses 0=Monday)."""
    return (value.weekday() + 1) % 7


def minute_of_day(value: Union[time, datetime]) -> int:
    return value.hour * 60 + value.minute


def parse_time_of_day(value: Union[str, time, timedelta]) -> time:
    """
    Convert the time-of-day representations the backend sends to ``time``.

    Accepts ``time`` objects, ``timedelta`` since midnight and strings in
    ``HH:MM`` or ``HH:MM:SS`` form.
    """
    if isinstance(value, time):
        return value
    if isinstance(value, timedelta):
        return (datetime.min + value).time()
    if isinstance(value, str):
        text = value.strip()
        for fmt in (TIME_FORMAT, "%H:%M"):
            try:
                return datetime.strptime(text, fmt).time()
            except ValueError:
                continue
        raise ValueError(f"Invalid time of day '{value}', expected HH:MM[:SS]")
    raise ValueError(f"Cannot convert {type(value).__name__} to time")


def parse_wall_clock(value: Union[str, datetime, date]) -> datetime:
    """
    Parse a ``YYYY-MM-DD HH:mm:ss`` (or ISO 8601) timestamp into a naive datetime.

    Any timezone offset is dropped: the tenant has a single effective
    timezone and no conversion is performed.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1]
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid datetime '{value}', expected YYYY-MM-DD HH:mm:ss")
    else:
        raise ValueError(f"Cannot convert {type(value).__name__} to datetime")

    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None)
    return parsed


def format_wall_clock(value: datetime) -> str:
    return value.strftime(WALL_CLOCK_FORMAT)


def format_date(value: Union[date, datetime]) -> str:
    return value.strftime(DATE_FORMAT)


def format_time(value: time, with_seconds: bool = True) -> str:
    return value.strftime(TIME_FORMAT if with_seconds else "%H:%M")


def combine(day: date, time_of_day: time) -> datetime:
    return datetime.combine(day, time_of_day)


def start_of_day(value: Union[date, datetime]) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.min)


def iter_days(start: datetime, end: datetime, max_days: Optional[int] = None) -> Iterator[date]:
    """
    Yield each calendar date touched by ``[start, end)``.

    ``max_days`` bounds the walk so a malformed range cannot run away.
    """
    current = start.date()
    count = 0
    while start_of_day(current) < end:
        if max_days is not None and count >= max_days:
            break
        yield current
        current += timedelta(days=1)
        count += 1


def clip_interval(interval: Interval, bounds: Interval) -> Optional[Interval]:
    """Intersect ``interval`` with ``bounds``; None when they do not overlap."""
    start = max(interval[0], bounds[0])
    end = min(interval[1], bounds[1])
    if start >= end:
        return None
    return (start, end)


def merge_intervals(intervals: List[Interval]) -> List[Interval]:
    """
    Merge adjacent or overlapping intervals.

    Returns a new sorted list; the input list is left untouched.
    """
    if not intervals:
        return []

    ordered = sorted(intervals, key=lambda item: item[0])
    merged = [ordered[0]]

    for current_start, current_end in ordered[1:]:
        last_start, last_end = merged[-1]
        if current_start <= last_end:
            if current_end > last_end:
                merged[-1] = (last_start, current_end)
        else:
            merged.append((current_start, current_end))

    return merged


def subtract_interval(interval: Interval, cut: Interval) -> List[Interval]:
    """
    Remove ``cut`` from ``interval``.

    Result has 0, 1 or 2 intervals:
    - no overlap -> the original interval
    - cut covers everything -> nothing
    - cut covers the head or tail -> the remaining part
    - cut in the middle -> the two sides
    """
    start, end = interval
    cut_start, cut_end = cut

    if not overlaps(start, end, cut_start, cut_end):
        return [interval]

    remainders = []
    if cut_start > start:
        remainders.append((start, cut_start))
    if cut_end < end:
        remainders.append((cut_end, end))
    return remainders


def subtract_all(intervals: List[Interval], cuts: List[Interval]) -> List[Interval]:
    """Subtract every interval in ``cuts`` from every interval in ``intervals``."""
    remaining = list(intervals)
    for cut in cuts:
        next_remaining = []
        for interval in remaining:
            next_remaining.extend(subtract_interval(interval, cut))
        remaining = next_remaining
    return remaining

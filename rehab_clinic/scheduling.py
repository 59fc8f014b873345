"""Interval arithmetic for bookings.

Times of day are integer minutes since midnight. Every interval is half-open,
``[start, end)``, so an appointment ending at 10:30 and one starting at 10:30
do not overlap.
"""

import re
from dataclasses import dataclass
from typing import Iterable

from rehab_clinic.core import config


TIME_PATTERN = re.compile(r'^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$')
MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class TimeRange:
    start: int
    end: int

    @property
    def duration(self) -> int:
        return self.end - self.start

    def overlaps(self, other: 'TimeRange') -> bool:
        return intervals_overlap(self.start, self.end, other.start, other.end)

    def contains(self, other: 'TimeRange') -> bool:
        return self.start <= other.start and other.end <= self.end

    def as_strings(self) -> dict[str, str]:
        return {'start_time': format_minutes(self.start), 'end_time': format_minutes(self.end)}


def parse_time(value: str) -> int:
    """Convert ``H:MM``/``HH:MM`` wall-clock text to minutes since midnight."""
    match = TIME_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ValueError('Time must be in HH:MM format.')
    hours, minutes = match.groups()
    return int(hours) * 60 + int(minutes)


def format_minutes(minutes: int) -> str:
    if not 0 <= minutes <= MINUTES_PER_DAY:
        raise ValueError(f'{minutes} is outside a single day.')
    return f'{minutes // 60:02d}:{minutes % 60:02d}'


def parse_range(start: str, end: str) -> TimeRange:
    start_minute = parse_time(start)
    end_minute = parse_time(end)
    if start_minute >= end_minute:
        raise ValueError('End time must be after start time.')
    return TimeRange(start_minute, end_minute)


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    return start_a < end_b and end_a > start_b


def has_overlap(candidate: TimeRange, booked: Iterable[TimeRange]) -> bool:
    return any(candidate.overlaps(interval) for interval in booked)


def generate_slots(
    window: TimeRange,
    duration_minutes: int,
    booked: Iterable[TimeRange],
    stride_minutes: int | None = None,
) -> list[TimeRange]:
    """Free slots of ``duration_minutes`` inside ``window``.

    Candidate starts step from the window start by a fixed stride regardless
    of the duration. A candidate is kept when it ends no later than the window
    end and overlaps none of ``booked``. The result is chronological.
    """
    if duration_minutes <= 0:
        raise ValueError('Duration must be positive.')
    stride = stride_minutes or config.SLOT_STRIDE_MINUTES
    booked = list(booked)

    slots: list[TimeRange] = []
    current = window.start
    while current + duration_minutes <= window.end:
        candidate = TimeRange(current, current + duration_minutes)
        if not has_overlap(candidate, booked):
            slots.append(candidate)
        current += stride
    return slots


def generate_slots_for_windows(
    windows: Iterable[TimeRange],
    duration_minutes: int,
    booked: Iterable[TimeRange],
    stride_minutes: int | None = None,
) -> list[TimeRange]:
    booked = list(booked)
    slots: list[TimeRange] = []
    for window in sorted(windows, key=lambda item: item.start):
        slots.extend(generate_slots(window, duration_minutes, booked, stride_minutes))
    return sorted(set(slots), key=lambda item: (item.start, item.end))


def duration_within_tolerance(requested_minutes: int, nominal_minutes: int, tolerance: int | None = None) -> bool:
    if tolerance is None:
        tolerance = config.DURATION_TOLERANCE_MINUTES
    return abs(requested_minutes - nominal_minutes) <= tolerance

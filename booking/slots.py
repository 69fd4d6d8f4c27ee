"""Slot availability for appointment booking.

Clock values are handled as minutes since midnight so the whole calculation is
integer arithmetic. Callers convert shop-local datetimes to minutes at the
edges (see :mod:`booking.availability`).

Every busy window is half-open, ``[start, end)``: a booking that ends at 10:00
does not block a new one starting at 10:00.
"""
from __future__ import annotations

import re
from datetime import time, timedelta
from typing import Dict, Hashable, Iterable, List, Mapping, NamedTuple, Union

__all__ = [
    "ANY_STAFF",
    "Booking",
    "Interval",
    "InvalidTimeError",
    "Slot",
    "SlotUnavailable",
    "candidate_times",
    "check_booking",
    "compute_slots",
    "format_clock",
    "free_staff",
    "is_occupied",
    "overlaps",
    "parse_clock",
]

MINUTES_PER_DAY = 24 * 60

# Scope value meaning "whichever staff member is free".
ANY_STAFF = "any"

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

ClockValue = Union[str, time, int]
DurationValue = Union[int, timedelta]


class InvalidTimeError(ValueError):
    """Malformed clock string, impossible range or non-positive duration."""


class SlotUnavailable(ValueError):
    """The candidate booking collides with another one or runs past closing."""


class Interval(NamedTuple):
    start: int
    end: int


class Booking(NamedTuple):
    """An existing appointment expressed as start minute and duration."""

    start: int
    duration: int

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.start + self.duration)


class Slot(NamedTuple):
    time: str
    occupied: bool

    @property
    def available(self) -> bool:
        return not self.occupied


def parse_clock(value: ClockValue) -> int:
    """Return minutes since midnight for ``HH:MM`` strings or ``time`` objects.

    ``24:00`` is accepted so a shop can close at midnight.
    """
    if isinstance(value, time):
        return value.hour * 60 + value.minute

    if not isinstance(value, str):
        raise InvalidTimeError(f"Expected a HH:MM time, got {value!r}.")

    match = _CLOCK_RE.match(value.strip())
    if not match:
        raise InvalidTimeError(f"Invalid time {value!r}, expected HH:MM.")

    hours, minutes = int(match.group(1)), int(match.group(2))
    if minutes > 59 or hours > 24 or (hours == 24 and minutes):
        raise InvalidTimeError(f"Invalid time {value!r}, expected HH:MM.")
    return hours * 60 + minutes


def format_clock(minutes: int) -> str:
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def _to_minutes(value: ClockValue) -> int:
    if isinstance(value, bool):
        raise InvalidTimeError(f"Expected a HH:MM time, got {value!r}.")
    if isinstance(value, int):
        if not 0 <= value <= MINUTES_PER_DAY:
            raise InvalidTimeError(f"Minute of day out of range: {value}.")
        return value
    return parse_clock(value)


def _to_duration(value: DurationValue, label: str = "Duration") -> int:
    if isinstance(value, timedelta):
        value = int(value.total_seconds() // 60)
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidTimeError(f"{label} must be a whole number of minutes, got {value!r}.")
    if value <= 0:
        raise InvalidTimeError(f"{label} must be positive, got {value}.")
    return value


def _to_interval(item) -> Interval:
    if isinstance(item, Booking):
        return item.interval
    start, end = item
    return Interval(_to_minutes(start), _to_minutes(end))


def _normalize(busy: Iterable) -> List[Interval]:
    return [_to_interval(item) for item in busy]


def candidate_times(opening: ClockValue, closing: ClockValue, step: DurationValue) -> List[int]:
    """Start minutes from ``opening`` up to, but excluding, ``closing``."""
    start = _to_minutes(opening)
    end = _to_minutes(closing)
    step = _to_duration(step, "Step")
    if end <= start:
        raise InvalidTimeError("Closing time must be after opening time.")
    return list(range(start, end, step))


def overlaps(a: Interval, b: Interval) -> bool:
    return a.start < b.end and a.end > b.start


def _window_occupied(window: Interval, busy: List[Interval], closing: int) -> bool:
    if window.end > closing:
        return True
    return any(overlaps(window, other) for other in busy)


def is_occupied(start: ClockValue, duration: DurationValue, busy: Iterable, closing: ClockValue) -> bool:
    """True when ``[start, start + duration)`` hits a busy window or passes closing."""
    start = _to_minutes(start)
    window = Interval(start, start + _to_duration(duration))
    return _window_occupied(window, _normalize(busy), _to_minutes(closing))


def compute_slots(
    opening: ClockValue,
    closing: ClockValue,
    step: DurationValue,
    duration: DurationValue,
    busy_by_staff: Mapping[Hashable, Iterable],
    staff=ANY_STAFF,
) -> List[Slot]:
    """Build the ordered list of candidate start times with their occupied flag.

    ``busy_by_staff`` maps a staff id to that person's busy windows
    (:class:`Interval`, :class:`Booking` or ``(start, end)`` pairs).

    With ``staff=ANY_STAFF`` a slot is occupied only when every staff member in
    the mapping is occupied at that time; with an empty mapping nobody can take
    the booking, so every slot is occupied. With a specific staff id only that
    person's bookings count.
    """
    times = candidate_times(opening, closing, step)
    duration = _to_duration(duration)
    closing_minute = _to_minutes(closing)

    normalized: Dict[Hashable, List[Interval]] = {
        staff_id: _normalize(busy) for staff_id, busy in busy_by_staff.items()
    }
    if staff == ANY_STAFF:
        scope = list(normalized.values())
    else:
        scope = [normalized.get(staff, [])]

    slots = []
    for start in times:
        window = Interval(start, start + duration)
        occupied = all(_window_occupied(window, busy, closing_minute) for busy in scope)
        slots.append(Slot(format_clock(start), occupied))
    return slots


def free_staff(
    start: ClockValue,
    duration: DurationValue,
    busy_by_staff: Mapping[Hashable, Iterable],
    closing: ClockValue,
) -> list:
    """Staff ids, in mapping order, that can take a booking at ``start``."""
    return [
        staff_id
        for staff_id, busy in busy_by_staff.items()
        if not is_occupied(start, duration, busy, closing)
    ]


def check_booking(
    opening: ClockValue,
    closing: ClockValue,
    start: ClockValue,
    duration: DurationValue,
    busy: Iterable,
) -> None:
    """Validate a single booking before it is written."""
    opening_minute = _to_minutes(opening)
    closing_minute = _to_minutes(closing)
    start_minute = _to_minutes(start)
    duration = _to_duration(duration)

    if not opening_minute <= start_minute < closing_minute:
        raise InvalidTimeError(
            f"{format_clock(start_minute)} is outside opening hours "
            f"{format_clock(opening_minute)}-{format_clock(closing_minute)}."
        )

    window = Interval(start_minute, start_minute + duration)
    if window.end > closing_minute:
        raise SlotUnavailable("The service would end after closing time.")
    if any(overlaps(window, other) for other in _normalize(busy)):
        raise SlotUnavailable("The selected time overlaps an existing appointment.")

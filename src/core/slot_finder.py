"""
ChatCal Assistant: free slot finder.

Pure interval sweep over a working window. No I/O, no clock access; the
executor supplies the window, the busy intervals and the duration.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo


@dataclass(frozen=True)
class Slot:
    """A free [start, end) range."""

    start: datetime
    end: datetime

    def as_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "label": f"{self.start:%H:%M}-{self.end:%H:%M}",
        }


def _clip(
    busy: list[tuple[datetime, datetime]],
    day_start: datetime,
    day_end: datetime,
) -> list[tuple[datetime, datetime]]:
    """Drop intervals outside the window and trim the rest to it."""
    clipped = []
    for b_start, b_end in busy:
        if b_end <= day_start or b_start >= day_end or b_end <= b_start:
            continue
        clipped.append((max(b_start, day_start), min(b_end, day_end)))
    return clipped


def find_free_slots(
    day_start: datetime,
    day_end: datetime,
    duration: timedelta,
    busy: list[tuple[datetime, datetime]],
    preferred_times: list[str] | tuple[str, ...] | None = None,
) -> list[Slot]:
    """Find free slots of exactly `duration` between busy intervals.

    One slot is emitted per gap (at the start of the gap), plus one for the
    trailing gap before `day_end`. When `preferred_times` ("HH:MM") are
    given, slots starting at one of them move to the front; order within
    each group is kept.

    Args:
        day_start: Start of the working window (inclusive).
        day_end: End of the working window (exclusive).
        duration: Required slot length, must be positive.
        busy: Busy (start, end) intervals, any order.
        preferred_times: Optional preferred wall-clock start times.
    """
    if duration <= timedelta(0):
        raise ValueError("duration must be positive")
    if day_end <= day_start:
        return []

    # sorted() is stable, so equal starts keep their input order.
    intervals = sorted(_clip(busy, day_start, day_end), key=lambda iv: iv[0])

    slots: list[Slot] = []
    cursor = day_start
    for b_start, b_end in intervals:
        if cursor < b_start and b_start - cursor >= duration:
            slots.append(Slot(cursor, min(b_start, cursor + duration)))
        cursor = max(cursor, b_end)

    if day_end - cursor >= duration:
        slots.append(Slot(cursor, min(day_end, cursor + duration)))

    if preferred_times:
        wanted = set(preferred_times)
        first = [s for s in slots if f"{s.start:%H:%M}" in wanted]
        rest = [s for s in slots if f"{s.start:%H:%M}" not in wanted]
        slots = first + rest
    return slots


def _at(day: date, hhmm: str, tz: tzinfo) -> datetime:
    hours, minutes = hhmm.split(":")
    return datetime.combine(day, time(int(hours), int(minutes)), tzinfo=tz)


def working_window(
    day: date,
    tz: tzinfo,
    workday_start: str = "09:00",
    workday_end: str = "17:00",
    now: datetime | None = None,
) -> tuple[datetime, datetime]:
    """Working window for `day` in `tz`.

    For today the window opens at the next half hour after `now`, so no
    slot is suggested in the past. The window may come back empty
    (start >= end) late in the day.
    """
    start = _at(day, workday_start, tz)
    end = _at(day, workday_end, tz)
    if now is not None:
        local_now = now.astimezone(tz)
        if local_now.date() == day and local_now > start:
            floor = local_now.replace(second=0, microsecond=0)
            remainder = floor.minute % 30
            next_half = floor + timedelta(minutes=30 - remainder)
            start = max(start, next_half)
        elif local_now.date() > day:
            start = end
    return start, end

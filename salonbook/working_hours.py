"""Resolve a staff member's open intervals for a single date.

Resolution is a pure function of the weekly schedule rows, the time-off
exceptions and the date:

1. start from the weekly entries for that weekday (merged),
2. subtract every time-off range that touches the date,
3. subtract each entry's break.

A time-off range covering the whole working day leaves nothing, so "fully
covered" and "partially covered" are the same subtraction step.
"""
from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime

from .errors import ScheduleNotFoundError
from .intervals import Interval, day_bounds, normalize, subtract
from .models import Schedule, TimeOff


def schedule_weekday(target_date: date) -> int:
    """Convert Python weekday (0=Mon) to schedule format (0=Sun)."""
    return (target_date.weekday() + 1) % 7


def _entry_interval(entry: Schedule, target_date: date) -> Interval | None:
    if not entry.is_working or entry.end_time <= entry.start_time:
        return None
    return Interval(
        datetime.combine(target_date, entry.start_time),
        datetime.combine(target_date, entry.end_time),
    )


def _break_interval(entry: Schedule, target_date: date) -> Interval | None:
    if entry.break_start is None or entry.break_end is None or entry.break_end <= entry.break_start:
        return None
    return Interval(
        datetime.combine(target_date, entry.break_start),
        datetime.combine(target_date, entry.break_end),
    )


def break_intervals(entries: Iterable[Schedule], target_date: date) -> list[Interval]:
    weekday = schedule_weekday(target_date)
    breaks = (_break_interval(e, target_date) for e in entries if e.day_of_week == weekday and e.is_working)
    return normalize(b for b in breaks if b is not None)


def time_off_intervals(time_off: Iterable[TimeOff], target_date: date) -> list[Interval]:
    bounds = day_bounds(target_date)
    clipped = (Interval(t.starts_at, t.ends_at).clip(bounds) for t in time_off if t.starts_at < t.ends_at)
    return normalize(c for c in clipped if c is not None)


def resolve_open_intervals(
    entries: Iterable[Schedule],
    time_off: Iterable[TimeOff],
    target_date: date,
) -> list[Interval]:
    entries = list(entries)
    weekday = schedule_weekday(target_date)
    working = (_entry_interval(e, target_date) for e in entries if e.day_of_week == weekday)
    open_intervals = normalize(w for w in working if w is not None)
    if not open_intervals:
        return []

    open_intervals = subtract(open_intervals, time_off_intervals(time_off, target_date))
    return subtract(open_intervals, break_intervals(entries, target_date))


class WorkingHoursResolver:
    """Loads schedule rows from the store and resolves open intervals."""

    def schedule_entries(self, staff_id: int) -> list[Schedule]:
        entries = Schedule.query.filter_by(staff_id=staff_id).all()
        if not entries:
            raise ScheduleNotFoundError(staff_id)
        return entries

    def time_off_for(self, staff_id: int, target_date: date) -> list[TimeOff]:
        bounds = day_bounds(target_date)
        return TimeOff.query.filter(
            TimeOff.staff_id == staff_id,
            TimeOff.starts_at < bounds.end,
            TimeOff.ends_at > bounds.start,
        ).all()

    def resolve(self, staff_id: int, target_date: date) -> list[Interval]:
        entries = self.schedule_entries(staff_id)
        return resolve_open_intervals(entries, self.time_off_for(staff_id, target_date), target_date)

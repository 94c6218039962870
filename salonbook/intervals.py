"""Half-open ``[start, end)`` interval arithmetic over datetimes."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta


@dataclass(frozen=True, order=True)
class Interval:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"interval start {self.start} is after end {self.end}")

    @property
    def is_empty(self) -> bool:
        return self.start >= self.end

    def overlaps(self, other: Interval) -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: Interval) -> bool:
        return self.start <= other.start and other.end <= self.end

    def clip(self, other: Interval) -> Interval | None:
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        if start >= end:
            return None
        return Interval(start, end)

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def day_bounds(target_date: date) -> Interval:
    start = datetime.combine(target_date, time.min)
    return Interval(start, start + timedelta(days=1))


def normalize(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort, drop empties and merge overlapping or touching intervals."""
    merged: list[Interval] = []
    for interval in sorted(i for i in intervals if not i.is_empty):
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = Interval(last.start, max(last.end, interval.end))
        else:
            merged.append(interval)
    return merged


def subtract(intervals: Iterable[Interval], removed: Iterable[Interval]) -> list[Interval]:
    """Return ``intervals`` minus every interval in ``removed``."""
    result = normalize(intervals)
    for cut in normalize(removed):
        remaining: list[Interval] = []
        for interval in result:
            if not interval.overlaps(cut):
                remaining.append(interval)
                continue
            if interval.start < cut.start:
                remaining.append(Interval(interval.start, cut.start))
            if cut.end < interval.end:
                remaining.append(Interval(cut.end, interval.end))
        result = remaining
    return result


def days_touched(interval: Interval) -> list[date]:
    """Calendar dates that ``interval`` has any part of."""
    last = interval.end if interval.end == interval.start else interval.end - timedelta(microseconds=1)
    days = []
    current = interval.start.date()
    while current <= last.date():
        days.append(current)
        current += timedelta(days=1)
    return days

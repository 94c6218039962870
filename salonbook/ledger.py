"""Read-only view over a staff member's committed bookings and blocked time."""
from __future__ import annotations

from collections.abc import Iterable
from datetime import date, timedelta

from .conflicts import BlockedInterval
from .intervals import Interval, days_touched
from .models import LIVE_STATUSES, Appointment, AppointmentStatus, StaffDayLedger, TimeOff

# Upper bound on pre/post buffers, used to widen range queries.
MAX_BUFFER = timedelta(days=1)


def blocked_from_appointment(appointment: Appointment) -> BlockedInterval | None:
    end = appointment.scheduled_end
    if appointment.status == AppointmentStatus.COMPLETED.value and appointment.released_at:
        end = min(end, appointment.released_at)
        if end <= appointment.scheduled_start:
            return None
    return BlockedInterval(
        start=appointment.scheduled_start,
        end=end,
        pre_buffer=timedelta(minutes=appointment.pre_buffer_minutes or 0),
        post_buffer=timedelta(minutes=appointment.post_buffer_minutes or 0),
        kind="appointment",
        ref_id=appointment.appointment_id,
    )


def blocked_from_time_off(time_off: TimeOff) -> BlockedInterval:
    return BlockedInterval(
        start=time_off.starts_at,
        end=time_off.ends_at,
        kind="time_off",
        ref_id=time_off.time_off_id,
    )


class BookingLedgerReader:
    """Reads live appointments and time off for one staff member.

    Every call goes to the store; callers that need current state (the
    booking commit) must not reuse results across transactions.
    """

    def __init__(self, staff_id: int) -> None:
        self.staff_id = staff_id

    def live_appointments(self, window: Interval, exclude_ids: Iterable[int] = ()) -> list[Appointment]:
        query = Appointment.query.filter(
            Appointment.staff_id == self.staff_id,
            Appointment.status.in_(LIVE_STATUSES),
            Appointment.scheduled_start < window.end + MAX_BUFFER,
            Appointment.scheduled_end > window.start - MAX_BUFFER,
        )
        excluded = list(exclude_ids)
        if excluded:
            query = query.filter(Appointment.appointment_id.notin_(excluded))
        return query.order_by(Appointment.scheduled_start).all()

    def time_off(self, window: Interval) -> list[TimeOff]:
        return TimeOff.query.filter(
            TimeOff.staff_id == self.staff_id,
            TimeOff.starts_at < window.end + MAX_BUFFER,
            TimeOff.ends_at > window.start - MAX_BUFFER,
        ).all()

    def blocked_intervals(self, window: Interval, exclude_ids: Iterable[int] = ()) -> list[BlockedInterval]:
        blocked = [blocked_from_appointment(a) for a in self.live_appointments(window, exclude_ids)]
        blocked.extend(blocked_from_time_off(t) for t in self.time_off(window))
        return [b for b in blocked if b is not None]

    def versions(self, days: Iterable[date]) -> dict[date, int | None]:
        """Commit-guard version per day; ``None`` where no booking was ever committed."""
        wanted = sorted(set(days))
        rows = StaffDayLedger.query.filter(
            StaffDayLedger.staff_id == self.staff_id,
            StaffDayLedger.day.in_(wanted),
        ).all()
        found = {row.day: row.version for row in rows}
        return {day: found.get(day) for day in wanted}

    def versions_for(self, interval: Interval) -> dict[date, int | None]:
        return self.versions(days_touched(interval))

"""Bookable slot computation.

Read-only and lock-free: results may be stale by the time a client books,
which is why the booking commit re-validates against the live ledger.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from flask import current_app

from .clock import Clock, get_clock
from .conflicts import BlockedInterval, ConflictDetector
from .context import RequestContext
from .errors import NotFoundError, ValidationError
from .intervals import Interval, day_bounds
from .ledger import BookingLedgerReader
from .models import Business, Service, Staff
from .slots import Slot, SlotGenerator
from .working_hours import WorkingHoursResolver, break_intervals, resolve_open_intervals


@dataclass(frozen=True)
class ServiceWindow:
    """Duration and buffers of a service, as minutes."""

    duration_minutes: int
    pre_buffer_minutes: int = 0
    post_buffer_minutes: int = 0

    @classmethod
    def from_service(cls, service: Service) -> ServiceWindow:
        return cls(
            duration_minutes=service.duration_minutes,
            pre_buffer_minutes=service.pre_buffer_minutes or 0,
            post_buffer_minutes=service.post_buffer_minutes or 0,
        )

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.duration_minutes)

    @property
    def pre_buffer(self) -> timedelta:
        return timedelta(minutes=self.pre_buffer_minutes)

    @property
    def post_buffer(self) -> timedelta:
        return timedelta(minutes=self.post_buffer_minutes)


def compute_slots(
    staff_id: int,
    open_intervals: Iterable[Interval],
    blocked: Iterable[BlockedInterval],
    window: ServiceWindow,
    granularity: timedelta,
    not_before: datetime | None = None,
) -> list[Slot]:
    """Generate candidates inside the open intervals and drop the conflicting ones."""
    candidates = SlotGenerator(open_intervals, window.duration, granularity)
    detector = ConflictDetector(blocked)
    free = detector.filter(candidates, window.duration, window.pre_buffer, window.post_buffer)
    return [
        Slot(staff_id=staff_id, start=start, duration_minutes=window.duration_minutes)
        for start in free
        if not_before is None or start >= not_before
    ]


@dataclass
class StaffDay:
    """Everything the slot pipeline needs for one staff member and date."""

    staff_id: int
    target_date: date
    open_intervals: list[Interval]
    blocked: list[BlockedInterval] = field(default_factory=list)


class AvailabilityService:
    def __init__(self, clock: Clock | None = None, resolver: WorkingHoursResolver | None = None) -> None:
        self.clock = clock or get_clock()
        self.resolver = resolver or WorkingHoursResolver()

    def load_staff_day(self, staff_id: int, target_date: date, exclude_ids: Iterable[int] = ()) -> StaffDay:
        """Read working hours, breaks, time off and live bookings for a date."""
        entries = self.resolver.schedule_entries(staff_id)
        reader = BookingLedgerReader(staff_id)
        bounds = day_bounds(target_date)
        time_off = reader.time_off(bounds)

        open_intervals = resolve_open_intervals(entries, time_off, target_date)
        blocked = reader.blocked_intervals(bounds, exclude_ids)
        blocked.extend(
            BlockedInterval(start=b.start, end=b.end, kind="break")
            for b in break_intervals(entries, target_date)
        )
        return StaffDay(staff_id, target_date, open_intervals, blocked)

    def _granularity(self, granularity_minutes: int | None) -> timedelta:
        minutes = granularity_minutes
        if minutes is None:
            minutes = current_app.config["SLOT_GRANULARITY_MINUTES"]
        if minutes <= 0:
            raise ValidationError("granularity must be a positive number of minutes")
        return timedelta(minutes=minutes)

    def _load_service(self, ctx: RequestContext, service_id: int) -> Service:
        service = Service.query.get(service_id)
        if not service or not ctx.can_access_business(service.business_id):
            raise NotFoundError("Service not found", details={"service_id": service_id})
        return service

    def for_staff(
        self,
        ctx: RequestContext,
        staff_id: int,
        service_id: int,
        target_date: date,
        granularity_minutes: int | None = None,
    ) -> list[Slot]:
        staff = Staff.query.get(staff_id)
        if not staff or not ctx.can_access_business(staff.business_id):
            raise NotFoundError("Staff not found", details={"staff_id": staff_id})
        service = self._load_service(ctx, service_id)
        if service.business_id != staff.business_id:
            raise ValidationError("Service is not offered by this staff member's business")
        return self._staff_slots(staff, service, target_date, self._granularity(granularity_minutes))

    def for_business(
        self,
        ctx: RequestContext,
        business_id: int,
        service_id: int,
        target_date: date,
        granularity_minutes: int | None = None,
    ) -> dict[int, list[Slot]]:
        business = Business.query.get(business_id)
        if not business or not ctx.can_access_business(business_id):
            raise NotFoundError("Business not found", details={"business_id": business_id})
        service = self._load_service(ctx, service_id)
        if service.business_id != business_id:
            raise ValidationError("Service is not offered by this business")

        granularity = self._granularity(granularity_minutes)
        staff_members = (
            Staff.query.filter_by(business_id=business_id, is_active=True).order_by(Staff.staff_id).all()
        )
        result: dict[int, list[Slot]] = {}
        for staff in staff_members:
            if not staff.schedules.first():
                continue
            result[staff.staff_id] = self._staff_slots(staff, service, target_date, granularity)
        return result

    def _staff_slots(self, staff: Staff, service: Service, target_date: date, granularity: timedelta) -> list[Slot]:
        now = self.clock.now(staff.business.timezone)
        if target_date < now.date():
            raise ValidationError("date must not be in the past", details={"date": target_date.isoformat()})
        if not staff.is_active:
            return []

        day = self.load_staff_day(staff.staff_id, target_date)
        return compute_slots(
            staff.staff_id,
            day.open_intervals,
            day.blocked,
            ServiceWindow.from_service(service),
            granularity,
            not_before=now if target_date == now.date() else None,
        )

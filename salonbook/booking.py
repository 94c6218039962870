"""Booking orchestration: validate against the live ledger, then commit atomically.

A booking is two explicit phases. ``prepare`` re-reads working hours and the
ledger for the staff member's day, checks the requested interval and records
the commit-guard version of every day the buffered interval touches.
``commit`` claims those versions with guarded writes, re-checks conflicts in
the same transaction and inserts the appointment. If another booking
committed for the same staff/day in between, the claim fails, the plan is
discarded and the request is validated again from scratch; a slot that is
now taken fails with ``SlotNoLongerAvailableError``. No other slot is ever
chosen on the caller's behalf.
"""
from __future__ import annotations

import calendar
import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from .availability import AvailabilityService, ServiceWindow
from .clock import Clock, get_clock
from .conflicts import ConflictDetector
from .context import RequestContext
from .errors import (ConflictError, InvalidTransitionError, InvariantViolationError,
                     NotFoundError, SlotNoLongerAvailableError, ValidationError, store_guard)
from .events import APPOINTMENT_BOOKED, STATUS_CHANGED, EventDispatcher, get_dispatcher
from .extensions import db
from .intervals import Interval
from .ledger import BookingLedgerReader, blocked_from_appointment
from .lifecycle import AppointmentLifecycle, can_transition, get_appointment, status_event
from .metrics import booking_attempts_total
from .models import (BOOKING_SOURCES, Appointment, AppointmentStatus, Client,
                     Service, Staff, StaffDayLedger)

SERIES_FREQUENCIES = ("daily", "weekly", "biweekly", "monthly")


class StaleLedgerError(Exception):
    """The staff/day ledger moved between prepare and commit."""


@dataclass(frozen=True)
class BookingRequest:
    client_id: int
    staff_id: int
    service_id: int
    starts_at: datetime
    source: str = "ONLINE"
    notes: str | None = None
    deposit_paid_cents: int = 0
    series_id: str | None = None


@dataclass
class BookingPlan:
    request: BookingRequest
    business_id: int
    window: ServiceWindow
    price_cents: int
    starts_at: datetime
    ends_at: datetime
    guard_versions: dict[date, int | None]
    replaces_id: int | None = None

    @property
    def buffered(self) -> Interval:
        return Interval(self.starts_at - self.window.pre_buffer, self.ends_at + self.window.post_buffer)

    @property
    def exclude_ids(self) -> tuple[int, ...]:
        return (self.replaces_id,) if self.replaces_id else ()


@dataclass
class SeriesResult:
    series_id: str
    booked: list[Appointment] = field(default_factory=list)
    failed: list[dict[str, object]] = field(default_factory=list)


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def occurrence_starts(first_start: datetime, frequency: str, occurrences: int) -> Iterator[datetime]:
    for index in range(occurrences):
        if frequency == "daily":
            yield first_start + timedelta(days=index)
        elif frequency == "weekly":
            yield first_start + timedelta(weeks=index)
        elif frequency == "biweekly":
            yield first_start + timedelta(weeks=2 * index)
        else:
            yield _add_months(first_start, index)


class BookingOrchestrator:
    def __init__(
        self,
        clock: Clock | None = None,
        availability: AvailabilityService | None = None,
        lifecycle: AppointmentLifecycle | None = None,
        dispatcher: EventDispatcher | None = None,
    ) -> None:
        self.clock = clock or get_clock()
        self.availability = availability or AvailabilityService(clock=self.clock)
        self.lifecycle = lifecycle or AppointmentLifecycle(clock=self.clock, dispatcher=dispatcher)
        self._dispatcher = dispatcher

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher or get_dispatcher()

    # -- public operations -------------------------------------------------

    def request_booking(
        self,
        ctx: RequestContext,
        client_id: int,
        staff_id: int,
        service_id: int,
        desired_start: datetime,
        source: str = "ONLINE",
        notes: str | None = None,
        deposit_paid_cents: int = 0,
        series_id: str | None = None,
    ) -> Appointment:
        request = BookingRequest(
            client_id=client_id,
            staff_id=staff_id,
            service_id=service_id,
            starts_at=desired_start,
            source=source,
            notes=notes,
            deposit_paid_cents=deposit_paid_cents,
            series_id=series_id,
        )
        appointment = self._book(ctx, request)
        self.dispatcher.emit(status_event(APPOINTMENT_BOOKED, appointment, None, ctx.user_id))
        return appointment

    def reschedule(
        self,
        ctx: RequestContext,
        appointment_id: int,
        new_start: datetime,
        staff_id: int | None = None,
        reason: str | None = None,
    ) -> Appointment:
        """Supersede an appointment with a new one at ``new_start``.

        The old appointment moves to RESCHEDULED in the same transaction that
        inserts its replacement, so the client never holds both or neither.
        """
        with store_guard("reschedule"):
            old = get_appointment(ctx, appointment_id)
            if not can_transition(old.status, AppointmentStatus.RESCHEDULED.value):
                raise InvalidTransitionError(old.status, AppointmentStatus.RESCHEDULED.value, appointment_id)
            request = BookingRequest(
                client_id=old.client_id,
                staff_id=staff_id or old.staff_id,
                service_id=old.service_id,
                starts_at=new_start,
                source=old.source,
                notes=old.notes,
                deposit_paid_cents=old.deposit_paid_cents or 0,
            )
            previous_status = old.status

        replacement = self._book(ctx, request, replaces=old)
        old = Appointment.query.get(appointment_id)
        self.dispatcher.emit(status_event(STATUS_CHANGED, old, previous_status, ctx.user_id))
        self.dispatcher.emit(status_event(APPOINTMENT_BOOKED, replacement, None, ctx.user_id))
        current_app.logger.info(
            "Appointment %s rescheduled to %s as %s (%s)",
            appointment_id,
            replacement.scheduled_start.isoformat(),
            replacement.appointment_id,
            reason or "no reason given",
        )
        return replacement

    def book_series(
        self,
        ctx: RequestContext,
        client_id: int,
        staff_id: int,
        service_id: int,
        first_start: datetime,
        frequency: str,
        occurrences: int,
        source: str = "ONLINE",
        notes: str | None = None,
    ) -> SeriesResult:
        """Book a recurring series; each occurrence is validated and committed on its own."""
        if frequency not in SERIES_FREQUENCIES:
            raise ValidationError(f"frequency must be one of: {', '.join(SERIES_FREQUENCIES)}")
        limit = current_app.config["MAX_SERIES_OCCURRENCES"]
        if not 1 <= occurrences <= limit:
            raise ValidationError(f"occurrences must be between 1 and {limit}")

        result = SeriesResult(series_id=str(uuid.uuid4()))
        for start in occurrence_starts(first_start, frequency, occurrences):
            try:
                result.booked.append(
                    self.request_booking(
                        ctx, client_id, staff_id, service_id, start,
                        source=source, notes=notes, series_id=result.series_id,
                    )
                )
            except NotFoundError:
                raise
            except (ConflictError, ValidationError) as exc:
                result.failed.append({"starts_at": start.isoformat(), "error": exc.code, "message": exc.message})
        return result

    # -- phases ------------------------------------------------------------

    def _book(self, ctx: RequestContext, request: BookingRequest, replaces: Appointment | None = None) -> Appointment:
        replaces_id = replaces.appointment_id if replaces else None
        attempts = current_app.config["BOOKING_GUARD_ATTEMPTS"]
        plan = None
        with store_guard("book"):
            for attempt in range(1, attempts + 1):
                try:
                    plan = self.prepare(ctx, request, replaces_id)
                    appointment = self.commit(plan, ctx.user_id)
                except StaleLedgerError:
                    current_app.logger.info(
                        "Ledger for staff %s moved during booking (attempt %s/%s); re-validating",
                        request.staff_id, attempt, attempts,
                    )
                    continue
                except ConflictError:
                    booking_attempts_total.labels(outcome="conflict").inc()
                    raise
                except ValidationError:
                    booking_attempts_total.labels(outcome="rejected").inc()
                    raise
                booking_attempts_total.labels(outcome="booked").inc()
                return appointment

        booking_attempts_total.labels(outcome="contended").inc()
        current_app.logger.warning(
            "Giving up booking for staff %s at %s after %s contended attempts",
            request.staff_id, request.starts_at.isoformat(), attempts,
        )
        raise SlotNoLongerAvailableError(
            request.staff_id, request.starts_at, plan.ends_at if plan else request.starts_at
        )

    def prepare(self, ctx: RequestContext, request: BookingRequest, replaces_id: int | None = None) -> BookingPlan:
        """Validate the request against the current ledger. Writes nothing."""
        if request.source not in BOOKING_SOURCES:
            raise ValidationError(f"source must be one of: {', '.join(BOOKING_SOURCES)}")
        if request.deposit_paid_cents < 0:
            raise ValidationError("deposit_paid_cents must not be negative")

        staff = Staff.query.get(request.staff_id)
        if not staff or not ctx.can_access_business(staff.business_id):
            raise NotFoundError("Staff not found", details={"staff_id": request.staff_id})
        if not staff.is_active:
            raise ValidationError("Staff member is not taking bookings", code="staff_inactive")

        service = Service.query.get(request.service_id)
        if not service or service.business_id != staff.business_id:
            raise NotFoundError("Service not found", details={"service_id": request.service_id})

        client = Client.query.get(request.client_id)
        if not client or client.business_id != staff.business_id:
            raise NotFoundError("Client not found", details={"client_id": request.client_id})

        now = self.clock.now(staff.business.timezone)
        if request.starts_at < now:
            raise ValidationError(
                "starts_at must not be in the past",
                code="start_in_past",
                details={"starts_at": request.starts_at.isoformat()},
            )

        window, price_cents = ServiceWindow.from_service(service), service.price_cents
        if replaces_id:
            # A rescheduled appointment keeps the snapshot it was booked with
            old = Appointment.query.get(replaces_id)
            window = ServiceWindow(old.duration_minutes, old.pre_buffer_minutes or 0, old.post_buffer_minutes or 0)
            price_cents = old.total_price_cents
        if window.duration_minutes <= 0:
            raise ValidationError(
                "Service duration must be a positive number of minutes",
                code="invalid_service_duration",
                details={"service_id": request.service_id, "duration_minutes": window.duration_minutes},
            )

        starts_at = request.starts_at
        ends_at = starts_at + window.duration
        exclude_ids = (replaces_id,) if replaces_id else ()
        day = self.availability.load_staff_day(staff.staff_id, starts_at.date(), exclude_ids)

        requested = Interval(starts_at, ends_at)
        if not any(interval.contains(requested) for interval in day.open_intervals):
            raise ValidationError(
                "Appointment falls outside staff working hours",
                code="outside_working_hours",
                details={"staff_id": staff.staff_id, "starts_at": starts_at.isoformat()},
            )

        conflicts = ConflictDetector(day.blocked).conflicts_for(
            starts_at, ends_at, window.pre_buffer, window.post_buffer
        )
        if conflicts:
            current_app.logger.info(
                "Slot %s for staff %s conflicts with %s", starts_at.isoformat(), staff.staff_id,
                [(c.kind, c.ref_id) for c in conflicts],
            )
            raise SlotNoLongerAvailableError(
                staff.staff_id, starts_at, ends_at,
                conflicting_ids=[c.ref_id for c in conflicts if c.kind == "appointment"],
            )

        plan = BookingPlan(
            request=request,
            business_id=staff.business_id,
            window=window,
            price_cents=price_cents,
            starts_at=starts_at,
            ends_at=ends_at,
            guard_versions={},
            replaces_id=replaces_id,
        )
        plan.guard_versions = BookingLedgerReader(staff.staff_id).versions_for(plan.buffered)
        return plan

    def commit(self, plan: BookingPlan, actor_id: int | None = None) -> Appointment:
        """Claim the guarded days, re-check and insert in one transaction.

        Raises ``StaleLedgerError`` when a concurrent booking claimed one of
        the days first; nothing is written in that case. Any other integrity
        failure is rolled back and propagates unchanged.
        """
        request = plan.request
        self._claim_days(request.staff_id, plan.guard_versions)
        try:
            reader = BookingLedgerReader(request.staff_id)
            detector = ConflictDetector(reader.blocked_intervals(plan.buffered, plan.exclude_ids))
            conflicts = detector.conflicts_for(
                plan.starts_at, plan.ends_at, plan.window.pre_buffer, plan.window.post_buffer
            )
            if conflicts:
                db.session.rollback()
                raise SlotNoLongerAvailableError(
                    request.staff_id, plan.starts_at, plan.ends_at,
                    conflicting_ids=[c.ref_id for c in conflicts if c.kind == "appointment"],
                )

            appointment = Appointment(
                business_id=plan.business_id,
                client_id=request.client_id,
                staff_id=request.staff_id,
                service_id=request.service_id,
                scheduled_start=plan.starts_at,
                scheduled_end=plan.ends_at,
                status=AppointmentStatus.BOOKED.value,
                source=request.source,
                notes=request.notes,
                deposit_paid_cents=request.deposit_paid_cents,
                total_price_cents=plan.price_cents,
                duration_minutes=plan.window.duration_minutes,
                pre_buffer_minutes=plan.window.pre_buffer_minutes,
                post_buffer_minutes=plan.window.post_buffer_minutes,
                rescheduled_from_id=plan.replaces_id,
                series_id=request.series_id,
            )
            db.session.add(appointment)

            if plan.replaces_id:
                old = Appointment.query.get(plan.replaces_id)
                self.lifecycle.apply(old, AppointmentStatus.RESCHEDULED.value, actor_id, reason="rescheduled")

            db.session.flush()
            self._verify_no_double_booking(appointment)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise

        current_app.logger.info(
            "Booked appointment %s for staff %s at %s-%s",
            appointment.appointment_id, appointment.staff_id,
            appointment.scheduled_start.isoformat(), appointment.scheduled_end.isoformat(),
        )
        return appointment

    # -- guards ------------------------------------------------------------

    def _claim_days(self, staff_id: int, observed: dict[date, int | None]) -> None:
        for day, version in sorted(observed.items()):
            if version is None:
                # Concurrent first bookings race on the unique key
                db.session.add(StaffDayLedger(staff_id=staff_id, day=day, version=1))
                try:
                    db.session.flush()
                except IntegrityError as exc:
                    db.session.rollback()
                    raise StaleLedgerError(f"staff {staff_id} ledger for {day} was claimed concurrently") from exc
                continue
            result = db.session.execute(
                update(StaffDayLedger)
                .where(
                    StaffDayLedger.staff_id == staff_id,
                    StaffDayLedger.day == day,
                    StaffDayLedger.version == version,
                )
                .values(version=version + 1)
            )
            if result.rowcount != 1:
                db.session.rollback()
                raise StaleLedgerError(f"staff {staff_id} ledger for {day} moved past version {version}")

    def _verify_no_double_booking(self, appointment: Appointment) -> None:
        """Check the flushed ledger around the new appointment. Unreachable unless a guard is missing."""
        blocked = blocked_from_appointment(appointment)
        window = Interval(blocked.buffered_start, blocked.buffered_end)
        others = [
            b for b in (
                blocked_from_appointment(a)
                for a in BookingLedgerReader(appointment.staff_id).live_appointments(
                    window, exclude_ids=[appointment.appointment_id]
                )
            )
            if b is not None
        ]
        overlapping = ConflictDetector(others).conflicts_for(
            blocked.start, blocked.end, blocked.pre_buffer, blocked.post_buffer
        )
        if overlapping:
            db.session.rollback()
            current_app.logger.critical(
                "Double booking detected for staff %s: new appointment overlaps %s; commit aborted",
                appointment.staff_id,
                [b.ref_id for b in overlapping],
            )
            raise InvariantViolationError(
                "Committed ledger would contain overlapping live appointments",
                details={"staff_id": appointment.staff_id, "overlapping_ids": [b.ref_id for b in overlapping]},
            )

"""Appointment status state machine.

This module is the single authority on which status changes are legal;
screens and collaborators read ``allowed_targets`` rather than repeating the
rules.

    BOOKED -> CONFIRMED -> CHECKED_IN -> IN_SERVICE -> COMPLETED

with CANCELLED, NO_SHOW and RESCHEDULED as side branches. Terminal states
accept no further transitions.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from .clock import Clock, get_clock
from .context import RequestContext
from .errors import InvalidTransitionError, NotFoundError, ValidationError, store_guard
from .events import STATUS_CHANGED, EventDispatcher, LifecycleEvent, get_dispatcher
from .extensions import db
from .metrics import hook_failures_total
from .models import Appointment, AppointmentStatus, AppointmentStatusChange, utc_now

S = AppointmentStatus

TRANSITIONS: dict[str, frozenset[str]] = {
    S.BOOKED.value: frozenset({S.CONFIRMED.value, S.CHECKED_IN.value, S.CANCELLED.value, S.RESCHEDULED.value}),
    S.CONFIRMED.value: frozenset({S.CHECKED_IN.value, S.CANCELLED.value, S.NO_SHOW.value, S.RESCHEDULED.value}),
    S.CHECKED_IN.value: frozenset({S.IN_SERVICE.value, S.NO_SHOW.value}),
    S.IN_SERVICE.value: frozenset({S.COMPLETED.value}),
    S.COMPLETED.value: frozenset(),
    S.CANCELLED.value: frozenset(),
    S.NO_SHOW.value: frozenset(),
    S.RESCHEDULED.value: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)


def parse_status(value) -> str:
    try:
        return AppointmentStatus(str(value).upper()).value
    except ValueError:
        raise ValidationError(
            f"status must be one of: {', '.join(s.value for s in AppointmentStatus)}",
            code="invalid_status",
        ) from None


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def allowed_targets(current: str) -> list[str]:
    targets = TRANSITIONS.get(current, frozenset())
    return [s.value for s in AppointmentStatus if s.value in targets]


def get_appointment(ctx: RequestContext, appointment_id: int) -> Appointment:
    appointment = Appointment.query.get(appointment_id)
    if not appointment or not ctx.can_access_business(appointment.business_id):
        raise NotFoundError("Appointment not found", details={"appointment_id": appointment_id})
    return appointment


def status_event(name: str, appointment: Appointment, from_status: str | None, actor_id: int | None) -> LifecycleEvent:
    return LifecycleEvent(
        name=name,
        appointment_id=appointment.appointment_id,
        business_id=appointment.business_id,
        client_id=appointment.client_id,
        staff_id=appointment.staff_id,
        from_status=from_status,
        to_status=appointment.status,
        occurred_at=utc_now(),
        actor_id=actor_id,
    )


class AppointmentLifecycle:
    def __init__(self, clock: Clock | None = None, dispatcher: EventDispatcher | None = None) -> None:
        self.clock = clock or get_clock()
        self._dispatcher = dispatcher

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher or get_dispatcher()

    def apply(self, appointment: Appointment, target: str, actor_id: int | None, reason: str | None = None) -> str:
        """Write ``target`` inside the caller's transaction without committing.

        The update only matches while the row still holds the status we read,
        so of two concurrent requests from the same source state exactly one
        wins. Returns the previous status.
        """
        current = appointment.status
        if not can_transition(current, target):
            raise InvalidTransitionError(current, target, appointment.appointment_id)

        result = db.session.execute(
            update(Appointment)
            .where(
                Appointment.appointment_id == appointment.appointment_id,
                Appointment.status == current,
            )
            .values(status=target, updated_at=utc_now())
        )
        if result.rowcount != 1:
            appointment_id = appointment.appointment_id
            db.session.rollback()
            fresh = Appointment.query.get(appointment_id)
            raise InvalidTransitionError(fresh.status, target, appointment_id)

        db.session.add(
            AppointmentStatusChange(
                appointment_id=appointment.appointment_id,
                from_status=current,
                to_status=target,
                changed_by=actor_id,
                reason=reason,
            )
        )
        return current

    def transition(self, ctx: RequestContext, appointment_id: int, target, reason: str | None = None) -> Appointment:
        target = parse_status(target)

        with store_guard("transition"):
            appointment = get_appointment(ctx, appointment_id)
            if target == S.RESCHEDULED.value and can_transition(appointment.status, target):
                raise ValidationError(
                    "Rescheduling needs a new start time; use the reschedule operation",
                    code="reschedule_requires_start",
                )
            previous = self.apply(appointment, target, ctx.user_id, reason)
            db.session.commit()

        current_app.logger.info(
            "Appointment %s moved %s -> %s by %s", appointment_id, previous, target, ctx.user_id
        )
        self.after_commit(appointment, previous, ctx.user_id)
        return appointment

    def after_commit(self, appointment: Appointment, previous: str, actor_id: int | None) -> None:
        """Side effects of a committed transition, in order: event, then ledger release."""
        self.dispatcher.emit(status_event(STATUS_CHANGED, appointment, previous, actor_id))
        if appointment.status == S.COMPLETED.value:
            self.release_interval(appointment)

    def release_interval(self, appointment: Appointment) -> None:
        """Stop the completed appointment from blocking time after now."""
        try:
            appointment.released_at = self.clock.now(appointment.business.timezone)
            db.session.commit()
        except Exception:
            db.session.rollback()
            hook_failures_total.labels(hook="release_interval").inc()
            current_app.logger.exception(
                "Failed to release ledger interval for appointment %s", appointment.appointment_id
            )

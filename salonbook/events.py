"""Lifecycle events and the collaborators that consume them.

Subscribers run synchronously after the triggering commit. A failing
subscriber is rolled back, logged and counted; it never undoes the booking
or transition that emitted the event.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from .extensions import db
from .metrics import appointment_transitions_total, hook_failures_total
from .models import Appointment, AppointmentStatus, ClientLoyalty, Notification

APPOINTMENT_BOOKED = "appointment.booked"
STATUS_CHANGED = "appointment.statusChanged"


@dataclass(frozen=True)
class LifecycleEvent:
    name: str
    appointment_id: int
    business_id: int
    client_id: int
    staff_id: int
    from_status: str | None
    to_status: str
    occurred_at: datetime
    actor_id: int | None = None


Subscriber = Callable[[LifecycleEvent], None]


class EventDispatcher:
    def __init__(self) -> None:
        self._subscribers: list[tuple[str | None, Subscriber]] = []

    def subscribe(self, handler: Subscriber, event_name: str | None = None) -> None:
        """Register ``handler`` for ``event_name``, or for every event when ``None``."""
        self._subscribers.append((event_name, handler))

    def emit(self, event: LifecycleEvent) -> None:
        for event_name, handler in self._subscribers:
            if event_name is not None and event_name != event.name:
                continue
            hook = getattr(handler, "__name__", repr(handler))
            try:
                handler(event)
            except Exception:
                db.session.rollback()
                hook_failures_total.labels(hook=hook).inc()
                current_app.logger.exception(
                    "Lifecycle hook %s failed for %s on appointment %s",
                    hook,
                    event.name,
                    event.appointment_id,
                )


def get_dispatcher() -> EventDispatcher:
    return current_app.extensions["salonbook.events"]


def loyalty_points_for(appointment: Appointment) -> int:
    """1 point per whole dollar of the price snapshot, scaled by config."""
    per_dollar = current_app.config["LOYALTY_POINTS_PER_DOLLAR"]
    return int((appointment.total_price_cents or 0) / 100) * per_dollar


def record_transition_metric(event: LifecycleEvent) -> None:
    appointment_transitions_total.labels(
        from_status=event.from_status or "NEW",
        to_status=event.to_status,
    ).inc()


def award_loyalty_points(event: LifecycleEvent) -> None:
    if event.to_status != AppointmentStatus.COMPLETED.value:
        return

    appointment = Appointment.query.get(event.appointment_id)
    points_earned = loyalty_points_for(appointment)
    if points_earned <= 0:
        return

    loyalty = ClientLoyalty.query.filter_by(
        client_id=appointment.client_id,
        business_id=appointment.business_id,
    ).first()
    if loyalty:
        loyalty.points_balance += points_earned
    else:
        loyalty = ClientLoyalty(
            client_id=appointment.client_id,
            business_id=appointment.business_id,
            points_balance=points_earned,
        )
        db.session.add(loyalty)
    db.session.commit()


_NOTIFICATION_TEXT = {
    AppointmentStatus.BOOKED.value: ("Appointment Booked", "Your appointment is booked for {when}."),
    AppointmentStatus.CONFIRMED.value: ("Appointment Confirmed", "Your appointment on {when} is confirmed."),
    AppointmentStatus.CANCELLED.value: ("Appointment Cancelled", "Your appointment on {when} has been cancelled."),
    AppointmentStatus.NO_SHOW.value: ("Appointment Missed", "You missed your appointment on {when}."),
    AppointmentStatus.RESCHEDULED.value: ("Appointment Rescheduled", "Your appointment on {when} was moved."),
    AppointmentStatus.COMPLETED.value: (
        "Appointment Completed",
        "Your appointment on {when} has been completed. You earned {points} loyalty points!",
    ),
}


def notify_client(event: LifecycleEvent) -> None:
    text = _NOTIFICATION_TEXT.get(event.to_status)
    if text is None:
        return

    appointment = Appointment.query.get(event.appointment_id)
    title, template = text
    notification = Notification(
        client_id=appointment.client_id,
        appointment_id=appointment.appointment_id,
        title=title,
        message=template.format(
            when=appointment.scheduled_start.strftime("%B %d, %Y at %I:%M %p"),
            points=loyalty_points_for(appointment),
        ),
        notification_type=f"appointment_{event.to_status.lower()}",
    )
    db.session.add(notification)
    db.session.commit()


def register_default_subscribers(dispatcher: EventDispatcher | None = None) -> EventDispatcher:
    dispatcher = dispatcher or EventDispatcher()
    dispatcher.subscribe(record_transition_metric)
    dispatcher.subscribe(award_loyalty_points, STATUS_CHANGED)
    dispatcher.subscribe(notify_client)
    return dispatcher

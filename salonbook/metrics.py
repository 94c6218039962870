"""Prometheus metrics for bookings and lifecycle transitions."""
from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest

# Custom registry so repeated app factories in one process do not collide
REGISTRY = CollectorRegistry()

booking_attempts_total = Counter(
    "salonbook_booking_attempts_total",
    "Booking requests by outcome",
    ["outcome"],
    registry=REGISTRY,
)

appointment_transitions_total = Counter(
    "salonbook_appointment_transitions_total",
    "Committed appointment status transitions",
    ["from_status", "to_status"],
    registry=REGISTRY,
)

hook_failures_total = Counter(
    "salonbook_hook_failures_total",
    "Lifecycle side-effect hooks that raised",
    ["hook"],
    registry=REGISTRY,
)


def render_latest() -> tuple[bytes, str]:
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST

import pytest
from unittest import mock

from sqlalchemy.exc import IntegrityError, OperationalError

from conftest import MONDAY, add_appointment, at, seed_salon
from salonbook.booking import BookingOrchestrator, BookingRequest, StaleLedgerError
from salonbook.context import ANONYMOUS
from salonbook.errors import SlotNoLongerAvailableError
from salonbook.ledger import BookingLedgerReader
from salonbook.extensions import db
from salonbook.metrics import REGISTRY
from salonbook.models import Appointment, Notification, Service, StaffDayLedger


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def setup_data(app):
    with app.app_context():
        seed_salon()


def payload(**overrides):
    body = {
        "client_id": 1,
        "staff_id": 1,
        "service_id": 1,
        "starts_at": at(MONDAY, 10).isoformat(),
    }
    body.update(overrides)
    return body


def attempts(outcome):
    return REGISTRY.get_sample_value("salonbook_booking_attempts_total", {"outcome": outcome}) or 0


class InterleavedOrchestrator(BookingOrchestrator):
    """Commits a competing booking between this request's prepare and commit."""

    def __init__(self, competitor_start):
        super().__init__()
        self.competitor_start = competitor_start
        self.interleaved = False

    def prepare(self, ctx, request, replaces_id=None):
        plan = super().prepare(ctx, request, replaces_id)
        if not self.interleaved:
            self.interleaved = True
            BookingOrchestrator().request_booking(ctx, 2, request.staff_id, request.service_id, self.competitor_start)
        return plan


def test_create_appointment_201(client, setup_data, app):
    booked_before = attempts("booked")

    response = client.post("/appointments", json=payload(notes="  first visit  ", source="phone"))
    data = response.get_json()

    assert response.status_code == 201
    appointment = data["appointment"]
    assert appointment["status"] == "BOOKED"
    assert appointment["scheduled_start"] == at(MONDAY, 10).isoformat()
    assert appointment["scheduled_end"] == at(MONDAY, 10, 30).isoformat()
    assert appointment["total_price_cents"] == 2500
    assert appointment["duration_minutes"] == 30
    assert appointment["source"] == "PHONE"
    assert appointment["notes"] == "first visit"
    assert appointment["allowed_transitions"] == ["CONFIRMED", "CHECKED_IN", "CANCELLED", "RESCHEDULED"]
    assert attempts("booked") == booked_before + 1

    with app.app_context():
        ledger = StaffDayLedger.query.filter_by(staff_id=1, day=MONDAY).one()
        assert ledger.version == 1
        notification = Notification.query.filter_by(appointment_id=appointment["id"]).one()
        assert notification.notification_type == "appointment_booked"


def test_create_appointment_bumps_existing_guard_version(client, setup_data, app):
    client.post("/appointments", json=payload())
    client.post("/appointments", json=payload(starts_at=at(MONDAY, 14).isoformat()))

    with app.app_context():
        assert StaffDayLedger.query.filter_by(staff_id=1, day=MONDAY).one().version == 2


def test_create_appointment_conflict_409(client, setup_data, app):
    with app.app_context():
        existing_id = add_appointment(at(MONDAY, 10), minutes=45)

    response = client.post("/appointments", json=payload(starts_at=at(MONDAY, 10, 15).isoformat()))
    data = response.get_json()

    assert response.status_code == 409
    assert data["error"] == "slot_no_longer_available"
    assert data["conflicting_appointment_ids"] == [existing_id]


def test_create_appointment_buffer_conflict_409(client, setup_data, app):
    with app.app_context():
        add_appointment(at(MONDAY, 10), minutes=30)

    response = client.post("/appointments", json=payload(service_id=3, starts_at=at(MONDAY, 10, 30).isoformat()))

    assert response.status_code == 409


def test_create_appointment_adjacent_slot_201(client, setup_data, app):
    with app.app_context():
        add_appointment(at(MONDAY, 10), minutes=45)

    response = client.post("/appointments", json=payload(starts_at=at(MONDAY, 10, 45).isoformat()))

    assert response.status_code == 201


def test_create_appointment_cancelled_booking_frees_slot_201(client, setup_data, app):
    with app.app_context():
        add_appointment(at(MONDAY, 10), minutes=30, status="CANCELLED")

    response = client.post("/appointments", json=payload())

    assert response.status_code == 201


def test_create_appointment_duplicate_submit_409(client, setup_data, app):
    first = client.post("/appointments", json=payload())
    second = client.post("/appointments", json=payload())

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.get_json()["conflicting_appointment_ids"] == [first.get_json()["appointment"]["id"]]
    with app.app_context():
        assert Appointment.query.count() == 1


def test_create_appointment_outside_working_hours_400(client, setup_data):
    response = client.post("/appointments", json=payload(starts_at=at(MONDAY, 16, 45).isoformat()))
    data = response.get_json()

    assert response.status_code == 400
    assert data["error"] == "outside_working_hours"


def test_create_appointment_in_past_400(client, setup_data):
    response = client.post("/appointments", json=payload(starts_at=at(MONDAY, 7).isoformat()))

    assert response.status_code == 400
    assert response.get_json()["error"] == "start_in_past"


@pytest.mark.parametrize("overrides, message", [
    ({"client_id": None}, "client_id is required"),
    ({"starts_at": "tomorrow at ten"}, "starts_at must be a valid ISO format datetime"),
    ({"starts_at": "2030-01-07T10:00:00+02:00"}, "without an offset"),
    ({"source": "CARRIER_PIGEON"}, "source must be one of"),
    ({"deposit_paid_cents": -5}, "must not be negative"),
])
def test_create_appointment_invalid_payload_400(client, setup_data, overrides, message):
    response = client.post("/appointments", json=payload(**overrides))
    data = response.get_json()

    assert response.status_code == 400
    assert data["error"] == "invalid_payload"
    assert message in data["message"]


@pytest.mark.parametrize("overrides", [{"client_id": 999}, {"client_id": 20}, {"service_id": 20}, {"staff_id": 999}])
def test_create_appointment_unknown_references_404(client, setup_data, overrides):
    response = client.post("/appointments", json=payload(**overrides))

    assert response.status_code == 404
    assert response.get_json()["error"] == "not_found"


def test_create_appointment_inactive_staff_400(client, setup_data):
    response = client.post("/appointments", json=payload(staff_id=3))

    assert response.status_code == 400
    assert response.get_json()["error"] == "staff_inactive"


def test_create_appointment_store_unavailable_503(client, setup_data):
    with mock.patch.object(
        BookingOrchestrator, "prepare", side_effect=OperationalError("SELECT 1", {}, Exception("database is locked"))
    ):
        response = client.post("/appointments", json=payload())

    assert response.status_code == 503
    assert response.get_json()["error"] == "store_unavailable"
    assert response.headers["Retry-After"] == "1"


def test_stale_plan_is_rejected_when_first_booking_of_day_races(app, setup_data):
    with app.app_context():
        orchestrator = BookingOrchestrator()
        plan = orchestrator.prepare(ANONYMOUS, BookingRequest(client_id=1, staff_id=1, service_id=1, starts_at=at(MONDAY, 10)))
        assert plan.guard_versions == {MONDAY: None}

        winner = orchestrator.request_booking(ANONYMOUS, 2, 1, 1, at(MONDAY, 10))

        with pytest.raises(StaleLedgerError):
            orchestrator.commit(plan)
        with pytest.raises(SlotNoLongerAvailableError):
            orchestrator.request_booking(ANONYMOUS, 1, 1, 1, at(MONDAY, 10))

        live = Appointment.query.filter_by(staff_id=1).all()
        assert [a.appointment_id for a in live] == [winner.appointment_id]
        assert live[0].client_id == 2


def test_stale_plan_is_rejected_when_version_moved(app, setup_data):
    with app.app_context():
        orchestrator = BookingOrchestrator()
        orchestrator.request_booking(ANONYMOUS, 1, 1, 1, at(MONDAY, 15))
        plan = orchestrator.prepare(ANONYMOUS, BookingRequest(client_id=1, staff_id=1, service_id=1, starts_at=at(MONDAY, 10)))
        assert plan.guard_versions == {MONDAY: 1}

        orchestrator.request_booking(ANONYMOUS, 2, 1, 1, at(MONDAY, 13))

        with pytest.raises(StaleLedgerError):
            orchestrator.commit(plan)
        assert BookingLedgerReader(1).versions([MONDAY]) == {MONDAY: 2}


def test_interleaved_booking_of_same_slot_fails_with_slot_no_longer_available(app, setup_data):
    with app.app_context():
        conflicts_before = attempts("conflict")
        orchestrator = InterleavedOrchestrator(competitor_start=at(MONDAY, 10))

        with pytest.raises(SlotNoLongerAvailableError):
            orchestrator.request_booking(ANONYMOUS, 1, 1, 1, at(MONDAY, 10))

        live = Appointment.query.filter_by(staff_id=1).all()
        assert len(live) == 1
        assert live[0].client_id == 2
        assert attempts("conflict") == conflicts_before + 1


def test_interleaved_booking_elsewhere_revalidates_and_books(app, setup_data):
    with app.app_context():
        orchestrator = InterleavedOrchestrator(competitor_start=at(MONDAY, 11))

        appointment = orchestrator.request_booking(ANONYMOUS, 1, 1, 1, at(MONDAY, 10))

        assert appointment.status == "BOOKED"
        assert Appointment.query.filter_by(staff_id=1).count() == 2
        assert BookingLedgerReader(1).versions([MONDAY]) == {MONDAY: 2}


def test_contended_booking_gives_up_after_configured_attempts(app, setup_data):
    with app.app_context():
        contended_before = attempts("contended")

        with mock.patch.object(BookingOrchestrator, "commit", side_effect=StaleLedgerError("moved")) as commit:
            with pytest.raises(SlotNoLongerAvailableError):
                BookingOrchestrator().request_booking(ANONYMOUS, 1, 1, 1, at(MONDAY, 10))

        assert commit.call_count == app.config["BOOKING_GUARD_ATTEMPTS"]
        assert attempts("contended") == contended_before + 1
        assert Appointment.query.count() == 0


def test_missing_conflict_check_is_caught_before_commit(client, setup_data, app):
    with app.app_context():
        add_appointment(at(MONDAY, 10), minutes=30)

    with mock.patch.object(BookingLedgerReader, "blocked_intervals", return_value=[]):
        response = client.post("/appointments", json=payload(starts_at=at(MONDAY, 10, 15).isoformat()))

    assert response.status_code == 500
    assert response.get_json()["error"] == "invariant_violation"
    with app.app_context():
        assert Appointment.query.count() == 1


def test_create_appointment_zero_length_service_400(client, setup_data, app):
    with app.app_context():
        db.session.add(Service(service_id=4, business_id=1, name="Consult", duration_minutes=0, price_cents=0))
        db.session.commit()
    contended_before = attempts("contended")
    rejected_before = attempts("rejected")

    response = client.post("/appointments", json=payload(service_id=4))

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_service_duration"
    assert attempts("contended") == contended_before
    assert attempts("rejected") == rejected_before + 1
    with app.app_context():
        assert Appointment.query.count() == 0
        assert StaffDayLedger.query.count() == 0


def test_integrity_error_outside_ledger_claim_is_not_retried(client, setup_data, app):
    contended_before = attempts("contended")
    failure = IntegrityError("INSERT INTO appointments", {}, Exception("ck_appointment_interval"))

    with mock.patch.object(BookingOrchestrator, "_verify_no_double_booking", side_effect=failure) as verify:
        response = client.post("/appointments", json=payload())

    assert response.status_code == 500
    assert response.get_json()["error"] == "database_error"
    assert verify.call_count == 1
    assert attempts("contended") == contended_before
    with app.app_context():
        assert Appointment.query.count() == 0
        assert StaffDayLedger.query.count() == 0

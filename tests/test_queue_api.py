import asyncio
import json
import time

import httpx
import pytest
from fastapi import Depends
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from mzansicare.api.deps import get_queue_service
from mzansicare.core.database import get_db
from mzansicare.core.security import UserRole
from mzansicare.main import app
from mzansicare.services.facility_directory import FacilityDirectory
from mzansicare.services.geofence import LocationResolver
from mzansicare.services.queue_service import QueueService

from .conftest import JHB, auth_headers, make_user


@pytest.fixture
def patient(client, db):
    return make_user(db, "lerato@example.com")


@pytest.fixture
def operator(client, db):
    return make_user(db, "nurse@example.com", role=UserRole.OPERATOR)


def join(client, user, facility_id="jhb-central", **extra):
    return client.post(
        "/api/v1/queue/join",
        json={"facility_id": facility_id, **extra},
        headers=auth_headers(user)
    )


class TestJoinQueue:

    def test_join_creates_ticket(self, client, patient):
        """First join answers 201 with position and ETA."""
        response = join(client, patient, reason="Chest cough")
        assert response.status_code == 201

        data = response.json()
        assert data["created"] is True
        ticket = data["ticket"]
        assert ticket["facility_id"] == "jhb-central"
        assert ticket["status"] == "waiting"
        assert ticket["position"] == 1
        assert ticket["eta_minutes"] == 0
        assert ticket["number"] == "JHB-001"

    def test_join_again_returns_existing(self, client, patient):
        first = join(client, patient).json()["ticket"]

        response = join(client, patient, facility_id="soweto-clinic")
        assert response.status_code == 200
        assert response.json()["created"] is False
        assert response.json()["ticket"]["id"] == first["id"]

    def test_join_requires_sign_in(self, client):
        response = client.post("/api/v1/queue/join", json={"facility_id": "jhb-central"})
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthenticated"

    def test_join_without_facility(self, client, patient):
        response = client.post("/api/v1/queue/join", json={}, headers=auth_headers(patient))
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidArgument"

    def test_join_unknown_facility(self, client, patient):
        response = join(client, patient, facility_id="atlantis")
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_join_too_far_away(self, client, patient):
        # Cape Town is well outside the Johannesburg geofence
        response = join(client, patient, coords={"lat": -33.9249, "lng": 18.4241})
        assert response.status_code == 412

        body = response.json()
        assert body["error"] == "FailedPrecondition"
        assert body["retryable"] is False
        assert body["distance_km"] > 25

    def test_join_nearby(self, client, patient):
        response = join(client, patient, coords={"lat": JHB["lat"] - 0.05, "lng": JHB["lng"]})
        assert response.status_code == 201

    def test_unknown_priority_treated_as_normal(self, client, patient):
        response = join(client, patient, priority="platinum")
        assert response.status_code == 201
        assert response.json()["ticket"]["priority"] == "normal"


class TestMyTicket:

    def test_no_active_ticket(self, client, patient):
        response = client.get("/api/v1/queue/me", headers=auth_headers(patient))
        assert response.status_code == 404

    def test_active_ticket_with_position(self, client, db, patient):
        other = make_user(db, "kagiso@example.com")
        join(client, other)
        join(client, patient)

        response = client.get("/api/v1/queue/me", headers=auth_headers(patient))
        assert response.status_code == 200
        assert response.json()["position"] == 2
        assert response.json()["eta_minutes"] == 6

    def test_position_moves_up_when_ahead_cancels(self, client, db, patient):
        other = make_user(db, "kagiso@example.com")
        ahead = join(client, other).json()["ticket"]
        join(client, patient)

        response = client.post(
            f"/api/v1/queue/tickets/{ahead['id']}/cancel",
            headers=auth_headers(other)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        mine = client.get("/api/v1/queue/me", headers=auth_headers(patient)).json()
        assert mine["position"] == 1
        assert mine["eta_minutes"] == 0

    def test_cannot_view_someone_elses_ticket(self, client, db, patient):
        other = make_user(db, "kagiso@example.com")
        ticket = join(client, other).json()["ticket"]

        response = client.get(f"/api/v1/queue/tickets/{ticket['id']}", headers=auth_headers(patient))
        assert response.status_code == 403

    def test_cannot_cancel_someone_elses_ticket(self, client, db, patient):
        other = make_user(db, "kagiso@example.com")
        ticket = join(client, other).json()["ticket"]

        response = client.post(
            f"/api/v1/queue/tickets/{ticket['id']}/cancel",
            headers=auth_headers(patient)
        )
        assert response.status_code == 403
        assert response.json()["error"] == "PermissionDenied"


class TestOperatorActions:

    def test_patient_cannot_call(self, client, patient):
        response = client.post(
            "/api/v1/queue/facilities/jhb-central/call-next",
            headers=auth_headers(patient)
        )
        assert response.status_code == 403

    def test_call_next_and_serve(self, client, db, patient, operator):
        ticket = join(client, patient).json()["ticket"]

        response = client.post(
            "/api/v1/queue/facilities/jhb-central/call-next",
            headers=auth_headers(operator)
        )
        assert response.status_code == 200
        assert response.json()["id"] == ticket["id"]
        assert response.json()["status"] == "called"
        assert response.json()["called_at"] is not None

        response = client.post(
            f"/api/v1/queue/tickets/{ticket['id']}/serve",
            headers=auth_headers(operator)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "served"

        # Served patients may queue again
        assert client.get("/api/v1/queue/me", headers=auth_headers(patient)).status_code == 404

    def test_call_next_with_empty_queue(self, client, operator):
        response = client.post(
            "/api/v1/queue/facilities/jhb-central/call-next",
            headers=auth_headers(operator)
        )
        assert response.status_code == 204

    def test_call_next_queues_notification(self, client, db, operator):
        from mzansicare.core.database import redis_client
        from mzansicare.services.notifications import NOTIFICATION_QUEUE_KEY

        patient = make_user(db, "zanele@example.com", push_token="device-zanele")
        join(client, patient)

        client.post("/api/v1/queue/facilities/jhb-central/call-next", headers=auth_headers(operator))

        queued = redis_client.lrange(NOTIFICATION_QUEUE_KEY, 0, -1)
        assert len(queued) == 1
        message = json.loads(queued[0])
        assert message["title"] == "MzansiCare: You are being called"
        assert message["push_token"] == "device-zanele"
        assert message["data"]["type"] == "queue_called"

    def test_serving_twice_is_rejected(self, client, patient, operator):
        ticket = join(client, patient).json()["ticket"]
        client.post(f"/api/v1/queue/tickets/{ticket['id']}/call", headers=auth_headers(operator))
        client.post(f"/api/v1/queue/tickets/{ticket['id']}/serve", headers=auth_headers(operator))

        response = client.post(
            f"/api/v1/queue/tickets/{ticket['id']}/serve",
            headers=auth_headers(operator)
        )
        assert response.status_code == 412
        assert response.json()["status"] == "served"

    def test_operator_can_cancel(self, client, patient, operator):
        ticket = join(client, patient).json()["ticket"]

        response = client.post(
            f"/api/v1/queue/tickets/{ticket['id']}/cancel",
            headers=auth_headers(operator)
        )
        assert response.status_code == 200
        assert response.json()["cancelled_by"] == operator.id

    def test_board_lists_active_tickets_in_order(self, client, db, patient, operator):
        other = make_user(db, "kagiso@example.com")
        first = join(client, patient).json()["ticket"]
        second = join(client, other).json()["ticket"]
        client.post(f"/api/v1/queue/tickets/{first['id']}/cancel", headers=auth_headers(patient))

        response = client.get(
            "/api/v1/queue/facilities/jhb-central/tickets",
            headers=auth_headers(operator)
        )
        assert response.status_code == 200
        assert [t["id"] for t in response.json()] == [second["id"]]

        response = client.get(
            "/api/v1/queue/facilities/jhb-central/tickets?include_closed=true",
            headers=auth_headers(operator)
        )
        assert [t["id"] for t in response.json()] == [first["id"], second["id"]]

    def test_estimate_is_public(self, client, patient):
        join(client, patient)

        response = client.get("/api/v1/queue/facilities/jhb-central/estimate")
        assert response.status_code == 200
        assert response.json() == {
            "facility_id": "jhb-central",
            "active_count": 1,
            "next_position": 2,
            "eta_minutes": 6,
            "avg_service_minutes": 6.0,
        }


class TestTicketEvents:

    def test_stream_ends_after_final_status(self, client, patient, operator):
        ticket = join(client, patient).json()["ticket"]
        client.post(f"/api/v1/queue/tickets/{ticket['id']}/call", headers=auth_headers(operator))
        client.post(f"/api/v1/queue/tickets/{ticket['id']}/serve", headers=auth_headers(operator))

        response = client.get(
            f"/api/v1/queue/tickets/{ticket['id']}/events",
            headers=auth_headers(patient)
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")

        events = [
            json.loads(line[len("data: "):])
            for line in response.text.splitlines()
            if line.startswith("data: ")
        ]
        assert len(events) == 1
        assert events[0]["type"] == "ticket"
        assert events[0]["ticket"]["status"] == "served"

    def test_stream_of_someone_elses_ticket(self, client, db, patient):
        other = make_user(db, "kagiso@example.com")
        ticket = join(client, other).json()["ticket"]

        response = client.get(
            f"/api/v1/queue/tickets/{ticket['id']}/events",
            headers=auth_headers(patient)
        )
        assert response.status_code == 403


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestStoreUnavailable:

    def test_my_ticket_with_store_down(self, client, patient, monkeypatch):
        def down(self, user_id):
            raise OperationalError("SELECT 1", {}, Exception("could not connect to server"))

        monkeypatch.setattr(QueueService, "_active_ticket_for", down)

        response = client.get("/api/v1/queue/me", headers=auth_headers(patient))
        assert response.status_code == 503

        body = response.json()
        assert body["error"] == "Unavailable"
        assert body["retryable"] is True
        assert body["position"] is None
        assert body["eta_minutes"] is None


class TestSlowLookups:

    def test_slow_location_lookup_does_not_stall_other_requests(self, client, patient):
        """Joins run off the event loop, so /health answers while a lookup blocks."""

        def slow_lookup(request):
            time.sleep(1.0)
            return httpx.Response(200, json={"latitude": JHB["lat"], "longitude": JHB["lng"]})

        def queue_service(db: Session = Depends(get_db)):
            resolver = LocationResolver(
                "https://geo.example/{ip}/json/",
                client=httpx.Client(transport=httpx.MockTransport(slow_lookup)),
            )
            return QueueService(db, FacilityDirectory(), location_resolver=resolver)

        async def run():
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
                async def health():
                    await asyncio.sleep(0.1)
                    started = time.perf_counter()
                    response = await ac.get("/health")
                    return response, time.perf_counter() - started

                return await asyncio.gather(
                    ac.post(
                        "/api/v1/queue/join",
                        json={"facility_id": "jhb-central"},
                        headers=auth_headers(patient),
                    ),
                    health(),
                )

        app.dependency_overrides[get_queue_service] = queue_service
        try:
            joined, (health, waited) = asyncio.run(run())
        finally:
            app.dependency_overrides.pop(get_queue_service, None)

        assert joined.status_code == 201
        assert health.status_code == 200
        assert waited < 0.5

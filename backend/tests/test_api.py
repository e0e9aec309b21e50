"""
Tests for the departure reminder HTTP surface

Runs the router against an engine wired to the fixture routing backend and
the in-memory host adapters.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from common.config import EngineConfig
from departure_reminder.api import departure_router
from departure_reminder.engine import build_engine
from providers.fake_providers import FakeRoutingBackend
from providers.host_adapters import (
    HostLocationAdapter,
    InMemoryAppointmentProvider,
    InMemoryNotificationAdapter,
    InMemorySettingsStore,
)
from providers.registry import ProviderSet

CONFIG = EngineConfig(
    ojp_api_key="",
    ojp_endpoint="https://ojp.example.test/ojp20",
    ojp_requestor_ref="Tests",
    mode="test",
    timezone="Europe/Zurich",
    deep_link_scheme="volleykit",
    mongo_url="mongodb://localhost:27017",
    db_name="departure_test",
)

HOME = {"latitude": 46.9480, "longitude": 7.4474}
VENUE = {"latitude": 46.9631, "longitude": 7.4649}


def _appointment_payload(appointment_id="game-1", hours=3):
    start = datetime.now(timezone.utc) + timedelta(hours=hours)
    return {
        "id": appointment_id,
        "start_time": start.isoformat(),
        "venue_name": "Sporthalle Wankdorf",
        "venue_location": VENUE,
    }


@pytest.fixture
def engine():
    providers = ProviderSet(
        routing=FakeRoutingBackend(),
        appointments=InMemoryAppointmentProvider(),
        location=HostLocationAdapter(),
        notifications=InMemoryNotificationAdapter(),
    )
    return build_engine(providers, InMemorySettingsStore(), config=CONFIG)


@pytest.fixture
def client(engine):
    app = FastAPI()
    app.include_router(departure_router)
    app.state.departure_engine = engine
    with TestClient(app) as client:
        yield client


def _enable_with_appointment(client):
    assert client.put("/departure/appointments", json=[_appointment_payload()]).json() == {"count": 1}
    assert client.put("/departure/location", json=HOME).status_code == 200
    response = client.put("/departure/settings", json={"enabled": True})
    assert response.status_code == 200
    return response


class TestSettings:

    def test_defaults(self, client):
        response = client.get("/departure/settings")
        assert response.status_code == 200
        assert response.json() == {"enabled": False, "buffer_minutes": 15, "venue_proximity_meters": 500}

    def test_update_buffer(self, client):
        response = client.put("/departure/settings", json={"buffer_minutes": 20})
        assert response.status_code == 200
        assert response.json()["buffer_minutes"] == 20
        assert client.get("/departure/settings").json()["buffer_minutes"] == 20

    def test_invalid_buffer_rejected(self, client):
        response = client.put("/departure/settings", json={"buffer_minutes": 7})
        assert response.status_code == 422
        assert client.get("/departure/settings").json()["buffer_minutes"] == 15

    def test_enabling_starts_tracking(self, client, engine):
        _enable_with_appointment(client)
        assert engine.task.state.value == "tracking"
        assert engine.store.is_tracking is True


class TestTick:

    def test_check_schedules_reminder(self, client):
        _enable_with_appointment(client)

        response = client.post("/departure/check")
        assert response.status_code == 200
        body = response.json()
        assert body["outcome"] == "completed"
        assert body["state"] == "tracking"
        assert body["scheduled"] == ["game-1"]

        reminders = client.get("/departure/reminders").json()
        assert len(reminders) == 1
        assert reminders[0]["appointment_id"] == "game-1"
        assert reminders[0]["nearest_stop"]["name"] == "Bern, Hirschengraben"
        assert reminders[0]["route"][1]["mode"] == "tram"

        notifications = client.get("/departure/notifications").json()
        assert len(notifications) == 1
        assert notifications[0]["data"]["deepLink"] == "volleykit://assignment/game-1"

    def test_check_while_disabled(self, client):
        body = client.post("/departure/check").json()
        assert body["outcome"] == "disabled"
        assert body["state"] == "idle"

    def test_buffer_change_reschedules(self, client):
        _enable_with_appointment(client)
        client.post("/departure/check")
        old_id = client.get("/departure/reminders").json()[0]["notification_id"]

        assert client.put("/departure/settings", json={"buffer_minutes": 30}).status_code == 200
        assert client.get("/departure/notifications").json() == []
        assert client.get("/departure/reminders").json()[0]["notification_id"] is None

        assert client.post("/departure/check").json()["scheduled"] == ["game-1"]
        notifications = client.get("/departure/notifications").json()
        assert len(notifications) == 1
        assert notifications[0]["id"] != old_id

    def test_invalid_location_rejected(self, client):
        assert client.put("/departure/location", json={"latitude": 91, "longitude": 0}).status_code == 422


class TestPrivacy:

    def test_disable_clears_everything(self, client):
        _enable_with_appointment(client)
        client.post("/departure/check")
        assert client.get("/departure/privacy").json()["no_location_history"] is False

        client.put("/departure/settings", json={"enabled": False})

        assert client.get("/departure/reminders").json() == []
        assert client.get("/departure/notifications").json() == []
        assert client.get("/departure/privacy").json() == {"no_location_history": True, "is_tracking": False}

    def test_logout(self, client):
        _enable_with_appointment(client)
        client.post("/departure/check")

        assert client.post("/departure/logout").json() == {"success": True}
        assert client.get("/departure/reminders").json() == []
        assert client.get("/departure/privacy").json()["no_location_history"] is True

    def test_foreground_keeps_future_reminders(self, client):
        _enable_with_appointment(client)
        client.post("/departure/check")
        assert client.post("/departure/foreground").json() == {"removed": []}
        assert len(client.get("/departure/reminders").json()) == 1


def test_engine_not_initialized():
    app = FastAPI()
    app.include_router(departure_router)
    with TestClient(app) as client:
        assert client.get("/departure/settings").status_code == 503

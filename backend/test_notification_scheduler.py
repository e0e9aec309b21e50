"""
Tests for departure_reminder/notification_scheduler.py

- Urgency tiers of the title
- Body with transit info and departure time
- Never scheduling in the past
- Clustered notifications
- Cancellation only touches departure notifications
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from common.geo import Coordinates
from departure_reminder.models import (
    DepartureReminder,
    NearestStop,
    RouteLeg,
    TransportMode,
    VenueCluster,
)
from departure_reminder.notification_scheduler import NotificationScheduler, format_first_transit_leg
from departure_reminder.translations import register_translation_function
from providers.host_adapters import InMemoryNotificationAdapter

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)
HOME = Coordinates(46.9480, 7.4474)
VENUE = Coordinates(46.9631, 7.4649)


def _tram_leg():
    return RouteLeg(
        mode=TransportMode.TRAM,
        departure_time=NOW + timedelta(minutes=26),
        arrival_time=NOW + timedelta(minutes=31),
        from_stop="Bern, Hirschengraben",
        to_stop="Bern, Bahnhof",
        line="Tram 9",
        direction="Wankdorf Bahnhof",
    )


def _reminder(departure_in_minutes, route=None, appointment_id="a"):
    departure = NOW + timedelta(minutes=departure_in_minutes)
    return DepartureReminder(
        appointment_id=appointment_id,
        user_location=HOME,
        venue_location=VENUE,
        venue_name="Sporthalle Wankdorf",
        calculated_at=NOW,
        departure_time=departure,
        arrival_time=departure + timedelta(minutes=30),
        travel_duration_minutes=30,
        nearest_stop=NearestStop("Bern, Hirschengraben", 480, 6),
        route=route or [],
    )


@pytest.fixture
def adapter():
    return InMemoryNotificationAdapter()


@pytest.fixture
def scheduler(adapter):
    return NotificationScheduler(adapter, clock=lambda: NOW, deep_link_scheme="volleykit")


@pytest.fixture(autouse=True)
def _fallback_texts():
    register_translation_function(None)
    yield
    register_translation_function(None)


class TestContent:

    CASES = [
        ("overdue", -3, "🚨 Leave now!"),
        ("now", 0, "🚨 Leave now!"),
        ("soon", 4, "⏰ Leave in 4 min"),
        ("five", 5, "⏰ Leave in 5 min"),
        ("later", 40, "🚆 Time to Leave"),
    ]

    @pytest.mark.parametrize("name,minutes,expected", CASES)
    def test_title_tiers(self, scheduler, name, minutes, expected):
        content = scheduler.build_reminder_content(_reminder(minutes))
        assert content["title"] == expected, f"Failed on {name}"

    def test_partial_minutes_truncated(self, scheduler):
        reminder = replace(_reminder(0), departure_time=NOW + timedelta(seconds=330))
        assert scheduler.build_reminder_content(reminder)["title"] == "⏰ Leave in 5 min"

    def test_body_with_transit(self, scheduler):
        content = scheduler.build_reminder_content(_reminder(25, route=[_tram_leg()]))
        assert content["body"] == (
            "Sporthalle Wankdorf\n"
            "Take Tram 9 from Bern, Hirschengraben (→ Wankdorf Bahnhof)\n"
            "Departure: 12:25"
        )

    def test_body_without_route(self, scheduler):
        content = scheduler.build_reminder_content(_reminder(25))
        assert content["body"] == "Sporthalle Wankdorf\nDeparture: 12:25"

    def test_departure_rendered_in_display_zone(self, adapter):
        scheduler = NotificationScheduler(adapter, clock=lambda: NOW, display_tz=ZoneInfo("Europe/Zurich"))
        content = scheduler.build_reminder_content(_reminder(25))
        assert content["body"].endswith("Departure: 13:25")

    def test_walk_only_route_has_no_transit_line(self):
        walk = RouteLeg(TransportMode.WALK, NOW, NOW + timedelta(minutes=20), "Current location", "Destination")
        assert format_first_transit_leg([walk]) is None

    def test_host_translator_used(self, scheduler):
        register_translation_function(lambda key, params=None: f"<{key}>")
        content = scheduler.build_reminder_content(_reminder(40))
        assert content["title"] == "🚆 <departure.notification.title>"

    def test_clustered_content(self, scheduler):
        cluster = VenueCluster(
            appointment_ids=["a", "b", "c", "d"],
            centroid=VENUE,
            venue_names=["Hall A", "Hall B", "Hall C", "Hall D"],
            earliest_appointment_time=NOW + timedelta(hours=1),
        )
        content = scheduler.build_clustered_content(cluster, NOW + timedelta(minutes=25))
        assert content["title"] == "🚆 Time to Leave"
        assert content["body"] == (
            "4 games at nearby venues\n"
            "Hall A, Hall B, Hall C...\n"
            "Departure: 12:25"
        )


class TestScheduling:

    def test_schedules_future_notification(self, scheduler, adapter):
        notification_id = scheduler.schedule_reminder(_reminder(20), buffer_minutes=15)
        assert notification_id is not None

        scheduled = adapter.get(notification_id)
        assert scheduled["trigger_at"] == NOW + timedelta(minutes=5)
        assert scheduled["data"] == {
            "type": "departure_reminder",
            "appointmentId": "a",
            "deepLink": "volleykit://assignment/a",
        }

    def test_past_notify_time_not_scheduled(self, scheduler, adapter):
        assert scheduler.schedule_reminder(_reminder(-1), buffer_minutes=15) is None
        assert adapter.scheduled == {}

    def test_notify_time_exactly_now_not_scheduled(self, scheduler):
        assert scheduler.schedule_reminder(_reminder(15), buffer_minutes=15) is None

    def test_platform_failure_returns_none(self, scheduler, adapter, monkeypatch):
        def _fail(content, trigger_at):
            raise RuntimeError("notifications disabled")

        monkeypatch.setattr(adapter, "schedule", _fail)
        assert scheduler.schedule_reminder(_reminder(30), buffer_minutes=15) is None

    def test_clustered_payload(self, scheduler, adapter):
        cluster = VenueCluster(["b", "c"], VENUE, ["Hall B", "Hall C"], NOW + timedelta(hours=1))
        notification_id = scheduler.schedule_clustered(cluster, NOW + timedelta(minutes=40), 10)

        data = adapter.get(notification_id)["data"]
        assert data == {
            "type": "departure_reminder_cluster",
            "appointmentIds": ["b", "c"],
            "deepLink": "volleykit://assignment/b",
        }

    def test_clustered_in_past_not_scheduled(self, scheduler):
        cluster = VenueCluster(["b"], VENUE, ["Hall B"], NOW)
        assert scheduler.schedule_clustered(cluster, NOW + timedelta(minutes=5), 10) is None


class TestCancellation:

    def test_cancel_all_only_departure_notifications(self, scheduler, adapter):
        scheduler.schedule_reminder(_reminder(30, appointment_id="a"), 15)
        scheduler.schedule_reminder(_reminder(40, appointment_id="b"), 15)
        other = adapter.schedule({"title": "Other", "data": {"type": "chat_message"}}, NOW + timedelta(hours=1))

        assert scheduler.cancel_all_departure_notifications() == 2
        assert list(adapter.scheduled) == [other]

    def test_cancel_failure_logged(self, scheduler, adapter, monkeypatch):
        def _fail(notification_id):
            raise RuntimeError("gone")

        monkeypatch.setattr(adapter, "cancel", _fail)
        scheduler.cancel("notification-1")

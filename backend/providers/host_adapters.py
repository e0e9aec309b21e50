from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from common.geo import Coordinates
from departure_reminder.models import DepartureReminderSettings, UpcomingAppointment

from .contracts import (
    AppointmentProvider,
    LocationAdapter,
    NotificationAdapter,
    SettingsStore,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryAppointmentProvider(AppointmentProvider):
    """Appointments pushed by the host app's calendar layer."""

    def __init__(
        self,
        appointments: Optional[List[UpcomingAppointment]] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._appointments = list(appointments or [])
        self._clock = clock

    def replace_all(self, appointments: List[UpcomingAppointment]) -> None:
        self._appointments = list(appointments)

    async def get_upcoming_appointments(self, within: timedelta) -> List[UpcomingAppointment]:
        now = self._clock()
        horizon = now + within
        return [a for a in self._appointments if now <= a.start_time <= horizon]


class HostLocationAdapter(LocationAdapter):
    """
    Location state reported by the host device.

    The adapter only holds the latest fix; it keeps no history.
    """

    def __init__(
        self,
        location: Optional[Coordinates] = None,
        foreground_granted: bool = True,
        background_granted: bool = True,
    ) -> None:
        self.location = location
        self.foreground_granted = foreground_granted
        self.background_granted = background_granted
        self.grant_on_request = True
        self.error: Optional[Exception] = None
        self.tracking = False

    async def has_foreground_permission(self) -> bool:
        return self.foreground_granted

    async def has_background_permission(self) -> bool:
        return self.background_granted

    async def request_foreground_permission(self) -> bool:
        if self.grant_on_request:
            self.foreground_granted = True
        return self.foreground_granted

    async def request_background_permission(self) -> bool:
        if not self.foreground_granted:
            return False
        if self.grant_on_request:
            self.background_granted = True
        return self.background_granted

    async def get_current_location(self) -> Optional[Coordinates]:
        if self.error is not None:
            raise self.error
        if not self.foreground_granted:
            return None
        return self.location

    async def start_background_tracking(self) -> None:
        self.tracking = True

    async def stop_background_tracking(self) -> None:
        self.tracking = False
        self.location = None

    async def is_tracking_active(self) -> bool:
        return self.tracking


class InMemoryNotificationAdapter(NotificationAdapter):
    """Scheduled local notifications, drained by the host for delivery."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.scheduled: Dict[str, Dict[str, Any]] = {}

    def schedule(self, content: Dict[str, Any], trigger_at: datetime) -> str:
        with self._lock:
            notification_id = f"notification-{next(self._ids)}"
            self.scheduled[notification_id] = {
                "id": notification_id,
                "content": content,
                "trigger_at": trigger_at,
                "data": dict(content.get("data") or {}),
            }
            return notification_id

    def cancel(self, notification_id: str) -> None:
        with self._lock:
            self.scheduled.pop(notification_id, None)

    def list_scheduled(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [{"id": n["id"], "data": n["data"]} for n in self.scheduled.values()]

    def get(self, notification_id: str) -> Optional[Dict[str, Any]]:
        return self.scheduled.get(notification_id)


class InMemorySettingsStore(SettingsStore):
    def __init__(self, settings: Optional[DepartureReminderSettings] = None) -> None:
        self.settings = settings or DepartureReminderSettings()

    def load(self) -> DepartureReminderSettings:
        return self.settings

    def save(self, settings: DepartureReminderSettings) -> DepartureReminderSettings:
        self.settings = settings
        return settings

    def enable(self) -> DepartureReminderSettings:
        return self.save(replace(self.settings, enabled=True))

    def disable(self) -> DepartureReminderSettings:
        return self.save(replace(self.settings, enabled=False))

    def set_buffer_minutes(self, buffer_minutes: int) -> DepartureReminderSettings:
        return self.save(replace(self.settings, buffer_minutes=buffer_minutes))

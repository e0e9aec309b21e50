from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol

from common.geo import Coordinates

if TYPE_CHECKING:
    from departure_reminder.models import DepartureReminderSettings, UpcomingAppointment


class AppointmentProvider(Protocol):
    async def get_upcoming_appointments(self, within: timedelta) -> List[UpcomingAppointment]:
        ...


class LocationAdapter(Protocol):
    async def has_foreground_permission(self) -> bool:
        ...

    async def has_background_permission(self) -> bool:
        ...

    async def request_foreground_permission(self) -> bool:
        ...

    async def request_background_permission(self) -> bool:
        ...

    async def get_current_location(self) -> Optional[Coordinates]:
        ...

    async def start_background_tracking(self) -> None:
        ...

    async def stop_background_tracking(self) -> None:
        ...

    async def is_tracking_active(self) -> bool:
        ...


class NotificationAdapter(Protocol):
    def schedule(self, content: Dict[str, Any], trigger_at: datetime) -> str:
        ...

    def cancel(self, notification_id: str) -> None:
        ...

    def list_scheduled(self) -> List[Dict[str, Any]]:
        """Return `{"id": ..., "data": {...}}` for every scheduled notification."""
        ...


class SettingsStore(Protocol):
    def load(self) -> DepartureReminderSettings:
        ...

    def save(self, settings: DepartureReminderSettings) -> DepartureReminderSettings:
        ...


class RoutingBackend(Protocol):
    def is_configured(self) -> bool:
        ...

    async def plan_trips(
        self,
        origin: Coordinates,
        destination: Coordinates,
        arrive_by: datetime,
    ) -> List[Dict[str, Any]]:
        """
        Return trips ordered best-first. Each trip is a dict:
        {"duration", "start_time", "end_time", "legs": [...]} where a leg is
        {"kind": "continuous", "duration"} or
        {"kind": "timed", "board_stop", "alight_stop", "departure", "arrival",
         "line", "direction", "pt_mode"}.
        """
        ...

"""
Departure reminder domain models.

Defines appointments, route results, reminders, venue clusters and settings.
Reminders are transient engine state and are never written to durable storage.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, List
from enum import Enum

from common.geo import Coordinates

# Allowed lead times (minutes) before departure at which the notification fires
ALLOWED_BUFFER_MINUTES = (5, 10, 15, 20, 30)
DEFAULT_BUFFER_MINUTES = 15
DEFAULT_VENUE_PROXIMITY_METERS = 500


class TransportMode(str, Enum):
    """Mode of a single trip leg."""
    WALK = "walk"
    BUS = "bus"
    TRAIN = "train"
    TRAM = "tram"
    METRO = "metro"
    FERRY = "ferry"


class NotificationType(str, Enum):
    """Discriminator carried in the data payload of every engine notification."""
    DEPARTURE_REMINDER = "departure_reminder"
    DEPARTURE_REMINDER_CLUSTER = "departure_reminder_cluster"


@dataclass(frozen=True)
class UpcomingAppointment:
    """A venue-bound appointment supplied by the appointment provider."""
    id: str
    start_time: datetime
    venue_name: str
    venue_location: Coordinates
    venue_address: Optional[str] = None


@dataclass(frozen=True)
class RouteLeg:
    """One segment of a trip. `line`/`direction` are None for walking legs."""
    mode: TransportMode
    departure_time: datetime
    arrival_time: datetime
    from_stop: str
    to_stop: str
    line: Optional[str] = None
    direction: Optional[str] = None

    @property
    def is_transit(self) -> bool:
        return self.mode != TransportMode.WALK


@dataclass(frozen=True)
class NearestStop:
    name: str
    distance_meters: float
    walk_time_minutes: int


@dataclass(frozen=True)
class RouteResult:
    """Normalized trip, from the routing backend or a fallback estimate."""
    duration_minutes: int
    departure_time: datetime
    arrival_time: datetime
    walk_time_minutes: int
    nearest_stop: NearestStop
    legs: List[RouteLeg] = field(default_factory=list)
    is_cached: bool = False
    cached_at: Optional[datetime] = None


@dataclass(frozen=True)
class DepartureReminder:
    """
    Computed reminder for one appointment.

    `user_location` is None once tracking has stopped and the location
    was redacted from the store.
    """
    appointment_id: str
    user_location: Optional[Coordinates]
    venue_location: Coordinates
    venue_name: str
    calculated_at: datetime
    departure_time: datetime
    arrival_time: datetime
    travel_duration_minutes: int
    nearest_stop: NearestStop
    route: List[RouteLeg] = field(default_factory=list)
    notification_scheduled_at: Optional[datetime] = None
    notification_id: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dict (for observers and the HTTP surface)."""
        doc = asdict(self)
        for key in ("calculated_at", "departure_time", "arrival_time", "notification_scheduled_at"):
            if doc[key] is not None:
                doc[key] = doc[key].isoformat()
        doc["route"] = [
            {
                **asdict(leg),
                "mode": leg.mode.value,
                "departure_time": leg.departure_time.isoformat(),
                "arrival_time": leg.arrival_time.isoformat(),
            }
            for leg in self.route
        ]
        return doc


@dataclass(frozen=True)
class VenueCluster:
    """Appointments at mutually nearby venues, notified together."""
    appointment_ids: List[str]
    centroid: Coordinates
    venue_names: List[str]
    earliest_appointment_time: datetime


@dataclass(frozen=True)
class DepartureReminderSettings:
    """User preference, owned by the settings store."""
    enabled: bool = False
    buffer_minutes: int = DEFAULT_BUFFER_MINUTES
    venue_proximity_meters: float = DEFAULT_VENUE_PROXIMITY_METERS

    def __post_init__(self):
        if self.buffer_minutes not in ALLOWED_BUFFER_MINUTES:
            raise ValueError(
                f"buffer_minutes must be one of {ALLOWED_BUFFER_MINUTES}, got {self.buffer_minutes}"
            )
        if self.venue_proximity_meters <= 0:
            raise ValueError("venue_proximity_meters must be > 0")

    def to_mongo_doc(self) -> dict:
        """Convert to MongoDB document."""
        return asdict(self)

"""
Departure reminder package - Smart Departure Reminders

Submodules:
- models: Appointments, routes, reminders, clusters and settings
- route_cache: Route result cache and outbound rate limiter
- route_calculator: Trip-planning backend wrapper with fallback error codes
- venue_proximity: Arrival detection and venue clustering
- reminder_store: Transient in-memory reminder state
- notification_scheduler: Urgency-tiered notification content and scheduling
- background_task: Periodic orchestrator
- cleanup: Cleanup and privacy enforcement
"""

from .models import (
    DepartureReminder,
    DepartureReminderSettings,
    RouteLeg,
    RouteResult,
    UpcomingAppointment,
    VenueCluster,
)
from .route_calculator import RouteCalculator, RouteCalculationError, RouteErrorCode
from .reminder_store import ReminderStore
from .notification_scheduler import NotificationScheduler
from .background_task import DepartureReminderTask, EngineState, TickResult
from .cleanup import PrivacyEnforcer

__all__ = [
    "DepartureReminder",
    "DepartureReminderSettings",
    "RouteLeg",
    "RouteResult",
    "UpcomingAppointment",
    "VenueCluster",
    "RouteCalculator",
    "RouteCalculationError",
    "RouteErrorCode",
    "ReminderStore",
    "NotificationScheduler",
    "DepartureReminderTask",
    "EngineState",
    "TickResult",
    "PrivacyEnforcer",
]

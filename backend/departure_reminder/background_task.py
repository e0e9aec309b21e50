"""
Departure Reminder Background Task

Periodic entry point, invoked once per OS background trigger:
1. Re-reads settings (stops tracking when the feature is off)
2. Samples the device location (falls back to fixed estimates without it)
3. Fetches appointments in the 6-hour lookahead window
4. Per appointment: suppress on arrival, skip when the user hasn't moved,
   otherwise compute a route (or fallback estimate) and store the reminder
5. Schedules notifications, one per cluster of nearby pending appointments
6. Purges reminders whose arrival time has passed

Ticks never run concurrently; the per-appointment loop is sequential so the
single routing rate limiter and the store mutations stay deterministic.
Cleanup may still run during a tick; it sets the abort signal and the tick
stops before touching the store or the notifications again.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from common.geo import Coordinates, is_within
from providers.contracts import AppointmentProvider, LocationAdapter, SettingsStore

from .models import (
    DepartureReminder,
    DepartureReminderSettings,
    NearestStop,
    UpcomingAppointment,
    VenueCluster,
)
from .notification_scheduler import NotificationScheduler
from .reminder_store import ReminderStore
from .route_calculator import RouteCalculationError, RouteCalculator
from .venue_proximity import build_cluster, cluster_nearby_venues, should_notify

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    TRACKING = "tracking"


class TickOutcome(str, Enum):
    DISABLED = "disabled"
    FALLBACK = "fallback"
    NO_APPOINTMENTS = "no_appointments"
    ABORTED = "aborted"
    COMPLETED = "completed"


@dataclass
class TickResult:
    """Effects of one tick, for callers and tests."""
    outcome: TickOutcome = TickOutcome.COMPLETED
    scheduled: List[str] = field(default_factory=list)  # appointment ids given a notification
    cancelled: List[str] = field(default_factory=list)  # notification ids
    suppressed: List[str] = field(default_factory=list)  # user already at venue
    skipped: List[str] = field(default_factory=list)  # unchanged location
    recomputed: List[str] = field(default_factory=list)
    fallback: List[str] = field(default_factory=list)  # fixed-estimate reminders
    purged: List[str] = field(default_factory=list)


class DepartureReminderTask:
    """Orchestrates settings, location, routing, the store and notifications."""

    # Appointments further out than this are ignored
    LOOKAHEAD = timedelta(hours=6)

    # Travel time assumed when no route can be computed
    FALLBACK_TRAVEL_MINUTES = 45

    # Movement below this distance keeps the previous reminder
    MOVEMENT_THRESHOLD_METERS = 200

    # Placeholder origin for reminders built without a location fix
    FALLBACK_LOCATION = Coordinates(0.0, 0.0)

    def __init__(
        self,
        settings_store: SettingsStore,
        appointment_provider: AppointmentProvider,
        location: LocationAdapter,
        route_calculator: RouteCalculator,
        store: ReminderStore,
        scheduler: NotificationScheduler,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.settings_store = settings_store
        self.appointment_provider = appointment_provider
        self.location = location
        self.route_calculator = route_calculator
        self.store = store
        self.scheduler = scheduler
        self._clock = clock
        self._state = EngineState.IDLE
        self._abort = asyncio.Event()

    @property
    def state(self) -> EngineState:
        return self._state

    def request_abort(self) -> None:
        """
        Stop the running tick.

        A pending rate-limit wait ends at once, and the tick returns without
        storing, scheduling or falling back for anything further.
        """
        self._abort.set()

    def _aborted(self, result: TickResult) -> bool:
        if not self._abort.is_set():
            return False
        logger.info("[DEPARTURE] Tick aborted")
        result.outcome = TickOutcome.ABORTED
        return True

    def release_all_notifications(self) -> int:
        """
        Cancel every departure notification and detach it from its reminder,
        so the next tick reschedules with the current settings.
        """
        cancelled = self.scheduler.cancel_all_departure_notifications()
        for reminder in self.store.list_all():
            if reminder.notification_id:
                self.store.upsert(replace(reminder, notification_id=None, notification_scheduled_at=None))
        return cancelled

    # ==================== Lifecycle ====================

    async def start_background_task(self) -> EngineState:
        """
        Try to move Idle -> Scanning -> Tracking.

        Requires the feature enabled, at least one appointment in the
        lookahead window, and foreground + background location permission.
        """
        settings = self.settings_store.load()
        if not settings.enabled:
            logger.info("[DEPARTURE] Reminders disabled, not starting task")
            self._state = EngineState.IDLE
            return self._state

        appointments = await self.appointment_provider.get_upcoming_appointments(self.LOOKAHEAD)
        if not appointments:
            logger.info("[DEPARTURE] No upcoming appointments, not starting task")
            self._state = EngineState.IDLE
            return self._state

        self._state = EngineState.SCANNING

        if not await self.location.has_foreground_permission():
            if not await self.location.request_foreground_permission():
                logger.info("[DEPARTURE] Foreground location permission denied")
                self._state = EngineState.IDLE
                return self._state

        if not await self.location.has_background_permission():
            if not await self.location.request_background_permission():
                logger.info("[DEPARTURE] Background location permission denied")
                self._state = EngineState.IDLE
                return self._state

        await self.location.start_background_tracking()
        self.store.set_tracking(True)
        self._state = EngineState.TRACKING
        logger.info(f"[DEPARTURE] Tracking started for {len(appointments)} appointment(s)")
        return self._state

    async def stop_background_task(self) -> None:
        await self.location.stop_background_tracking()
        self.store.set_tracking(False)
        self._state = EngineState.IDLE

    async def handle_background_event(self) -> Optional[TickResult]:
        """
        Host OS callback for the periodic trigger.

        Errors escaping the tick are logged here and never re-raised.
        """
        try:
            return await self.run_check()
        except Exception as e:
            logger.error(f"[DEPARTURE] Departure reminder task error: {e}")
            return None

    # ==================== Tick ====================

    async def run_check(self) -> TickResult:
        """Run one tick. Location and routing failures degrade; only request_abort() ends it early."""
        result = TickResult()
        self._abort.clear()

        settings = self.settings_store.load()
        if not settings.enabled:
            await self.stop_background_task()
            result.outcome = TickOutcome.DISABLED
            return result

        user_location = await self._sample_location()
        if self._aborted(result):
            return result
        if user_location is None:
            await self._schedule_time_based_reminders(settings, result)
            if result.outcome != TickOutcome.ABORTED:
                result.outcome = TickOutcome.FALLBACK
            return result

        # Location is only retained while tracking is on
        if self.store.is_tracking:
            self.store.set_location(user_location)

        appointments = await self.appointment_provider.get_upcoming_appointments(self.LOOKAHEAD)
        if self._aborted(result):
            return result
        if not appointments:
            await self.stop_background_task()
            result.purged = self._purge_past()
            result.outcome = TickOutcome.NO_APPOINTMENTS
            return result

        pending: Dict[str, DepartureReminder] = {}
        for appointment in sorted(appointments, key=lambda a: a.start_time):
            reminder = await self._process_appointment(appointment, user_location, settings, result)
            if self._aborted(result):
                return result
            if reminder is not None:
                pending[appointment.id] = reminder

        # Skipped reminders whose shared notification was released by a suppressed sibling
        for appointment in appointments:
            if appointment.id in pending or appointment.id in result.suppressed:
                continue
            stored = self.store.get(appointment.id)
            if stored is not None and not stored.notification_id:
                pending[appointment.id] = stored

        if not self.settings_store.load().enabled:
            logger.info("[DEPARTURE] Reminders disabled during tick, not scheduling")
            result.outcome = TickOutcome.ABORTED
            return result

        by_id = {a.id: a for a in appointments}
        for cluster in cluster_nearby_venues(appointments, settings.venue_proximity_meters):
            members = [pending[i] for i in cluster.appointment_ids if i in pending]
            self._schedule_notifications(members, by_id, settings.buffer_minutes, result)

        result.purged = self._purge_past()
        logger.info(
            f"[DEPARTURE] Tick complete: {len(appointments)} appointments, "
            f"{len(result.recomputed)} computed, {len(result.scheduled)} scheduled, "
            f"{len(result.suppressed)} suppressed"
        )
        return result

    async def _sample_location(self) -> Optional[Coordinates]:
        try:
            current = await self.location.get_current_location()
        except Exception as e:
            logger.warning(f"[DEPARTURE] Failed to get location: {e}")
            current = None

        if current is not None:
            return current

        logger.warning("[DEPARTURE] No location fix, using time-based reminders")
        try:
            permitted = await self.location.has_foreground_permission()
        except Exception as e:
            logger.warning(f"[DEPARTURE] Permission check failed: {e}")
            permitted = True
        if not permitted:
            logger.info("[DEPARTURE] Location permission revoked, stopping tracking")
            await self.stop_background_task()
        return None

    async def _process_appointment(
        self,
        appointment: UpcomingAppointment,
        user_location: Coordinates,
        settings: DepartureReminderSettings,
        result: TickResult,
    ) -> Optional[DepartureReminder]:
        """
        Refresh the reminder for one appointment.

        Returns:
            The stored reminder when it still needs a notification, else None
        """
        existing = self.store.get(appointment.id)

        if not should_notify(user_location, appointment.venue_location, settings.venue_proximity_meters):
            if existing is not None:
                if existing.notification_id:
                    self._release_notification(existing.notification_id, result)
                self.store.remove(appointment.id)
            result.suppressed.append(appointment.id)
            return None

        if (
            existing is not None
            and existing.notification_id
            and existing.user_location is not None
            and is_within(existing.user_location, user_location, self.MOVEMENT_THRESHOLD_METERS)
        ):
            logger.debug(f"[DEPARTURE] Skipping {appointment.id}: location unchanged")
            result.skipped.append(appointment.id)
            return None

        if existing is not None and existing.notification_id:
            self._release_notification(existing.notification_id, result)

        target_arrival = appointment.start_time - timedelta(minutes=settings.buffer_minutes)
        try:
            route = await self.route_calculator.calculate_route(
                user_location, appointment.venue_location, target_arrival, abort=self._abort
            )
            reminder = DepartureReminder(
                appointment_id=appointment.id,
                user_location=user_location,
                venue_location=appointment.venue_location,
                venue_name=appointment.venue_name,
                calculated_at=self._clock(),
                departure_time=route.departure_time,
                arrival_time=route.arrival_time,
                travel_duration_minutes=route.duration_minutes,
                nearest_stop=route.nearest_stop,
                route=list(route.legs),
            )
        except RouteCalculationError as e:
            if self._abort.is_set():
                return None
            logger.info(f"[DEPARTURE] Using fallback estimate for {appointment.id} ({e.code.value})")
            reminder = self.create_fallback_reminder(appointment, user_location, settings.buffer_minutes)
            result.fallback.append(appointment.id)

        if self._abort.is_set():
            return None
        if not self.store.is_tracking:
            reminder = replace(reminder, user_location=None)
        self.store.upsert(reminder)
        result.recomputed.append(appointment.id)
        return reminder

    def _release_notification(self, notification_id: str, result: TickResult) -> None:
        """Cancel a notification and detach it from every reminder sharing it."""
        self.scheduler.cancel(notification_id)
        result.cancelled.append(notification_id)
        for reminder in self.store.list_all():
            if reminder.notification_id == notification_id:
                self.store.upsert(replace(reminder, notification_id=None, notification_scheduled_at=None))

    def _schedule_notifications(
        self,
        members: Sequence[DepartureReminder],
        appointments: Dict[str, UpcomingAppointment],
        buffer_minutes: int,
        result: TickResult,
    ) -> None:
        """One notification for a lone reminder, one shared notification for a cluster."""
        if not members:
            return

        if len(members) > 1:
            cluster = build_cluster([appointments[m.appointment_id] for m in members])
            departure = min(m.departure_time for m in members)
            notification_id = self.scheduler.schedule_clustered(cluster, departure, buffer_minutes)
            if notification_id:
                for member in members:
                    self._record_notification(member, notification_id, result)
                return

        for member in members:
            notification_id = self.scheduler.schedule_reminder(member, buffer_minutes)
            if notification_id:
                self._record_notification(member, notification_id, result)

    def _record_notification(
        self, reminder: DepartureReminder, notification_id: str, result: TickResult
    ) -> None:
        self.store.upsert(replace(
            reminder,
            notification_id=notification_id,
            notification_scheduled_at=self._clock(),
        ))
        result.scheduled.append(reminder.appointment_id)

    def _purge_past(self) -> List[str]:
        return [r.appointment_id for r in self.store.remove_where_past(self._clock())]

    # ==================== Fallback ====================

    def create_fallback_reminder(
        self,
        appointment: UpcomingAppointment,
        user_location: Coordinates,
        buffer_minutes: int,
    ) -> DepartureReminder:
        """Reminder built from the fixed travel estimate, without route details."""
        travel = self.FALLBACK_TRAVEL_MINUTES
        departure = appointment.start_time - timedelta(minutes=travel + buffer_minutes)
        return DepartureReminder(
            appointment_id=appointment.id,
            user_location=user_location,
            venue_location=appointment.venue_location,
            venue_name=appointment.venue_name,
            calculated_at=self._clock(),
            departure_time=departure,
            arrival_time=appointment.start_time,
            travel_duration_minutes=travel,
            nearest_stop=NearestStop(name="Unknown", distance_meters=0, walk_time_minutes=0),
            route=[],
        )

    async def _schedule_time_based_reminders(
        self, settings: DepartureReminderSettings, result: TickResult
    ) -> None:
        """Fallback path: fixed-estimate reminders for appointments not yet notified."""
        appointments = await self.appointment_provider.get_upcoming_appointments(self.LOOKAHEAD)
        if self._aborted(result):
            return

        for appointment in sorted(appointments, key=lambda a: a.start_time):
            existing = self.store.get(appointment.id)
            if existing is not None and existing.notification_id:
                continue

            reminder = self.create_fallback_reminder(
                appointment, self.FALLBACK_LOCATION, settings.buffer_minutes
            )
            self.store.upsert(reminder)
            result.fallback.append(appointment.id)

            notification_id = self.scheduler.schedule_reminder(reminder, settings.buffer_minutes)
            if notification_id:
                self._record_notification(reminder, notification_id, result)

        result.purged = self._purge_past()

    # ==================== Clustering ====================

    def process_clustered_appointments(
        self,
        appointments: Sequence[UpcomingAppointment],
        threshold_meters: Optional[float] = None,
    ) -> List[VenueCluster]:
        """Group appointments at nearby venues using the configured proximity."""
        if threshold_meters is None:
            threshold_meters = self.settings_store.load().venue_proximity_meters
        return cluster_nearby_venues(appointments, threshold_meters)

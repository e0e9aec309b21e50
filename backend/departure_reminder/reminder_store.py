"""
Active Reminder Store - transient, in-memory reminder state.

Single source of truth for computed reminders keyed by appointment id, the
last known user location and the tracking flag. Nothing here is persisted.

Mutations are synchronous and serialized by a lock; every mutation publishes
an immutable snapshot to subscribers.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Callable, List, Mapping, Optional

from common.geo import Coordinates

from .models import DepartureReminder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderStoreState:
    reminders: Mapping[str, DepartureReminder]
    last_known_location: Optional[Coordinates] = None
    location_updated_at: Optional[datetime] = None
    is_tracking: bool = False


Listener = Callable[[ReminderStoreState], None]


def _initial_state() -> ReminderStoreState:
    return ReminderStoreState(reminders=MappingProxyType({}))


class ReminderStore:
    """Observable holder of reminder state."""

    def __init__(self, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self._clock = clock
        self._lock = threading.RLock()
        self._state = _initial_state()
        self._listeners: List[Listener] = []

    # ==================== Reads ====================

    def get_state(self) -> ReminderStoreState:
        return self._state

    def get(self, appointment_id: str) -> Optional[DepartureReminder]:
        return self._state.reminders.get(appointment_id)

    def list_all(self) -> List[DepartureReminder]:
        return list(self._state.reminders.values())

    @property
    def last_known_location(self) -> Optional[Coordinates]:
        return self._state.last_known_location

    @property
    def is_tracking(self) -> bool:
        return self._state.is_tracking

    # ==================== Subscriptions ====================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, state: ReminderStoreState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    # ==================== Mutations ====================

    def upsert(self, reminder: DepartureReminder) -> None:
        with self._lock:
            reminders = dict(self._state.reminders)
            reminders[reminder.appointment_id] = reminder
            self._publish(replace(self._state, reminders=MappingProxyType(reminders)))

    def remove(self, appointment_id: str) -> Optional[DepartureReminder]:
        with self._lock:
            if appointment_id not in self._state.reminders:
                return None
            reminders = dict(self._state.reminders)
            removed = reminders.pop(appointment_id)
            self._publish(replace(self._state, reminders=MappingProxyType(reminders)))
            return removed

    def remove_where_past(self, now: datetime) -> List[DepartureReminder]:
        """Drop reminders whose arrival time is not in the future. Returns them."""
        with self._lock:
            kept = {k: r for k, r in self._state.reminders.items() if r.arrival_time > now}
            removed = [r for k, r in self._state.reminders.items() if k not in kept]
            if removed:
                self._publish(replace(self._state, reminders=MappingProxyType(kept)))
            return removed

    def set_location(self, location: Coordinates) -> None:
        with self._lock:
            self._publish(replace(
                self._state,
                last_known_location=location,
                location_updated_at=self._clock(),
            ))

    def set_tracking(self, is_tracking: bool) -> None:
        """
        Update the tracking flag.

        Turning tracking off drops the last known location and redacts the
        user location held by every reminder.
        """
        with self._lock:
            if is_tracking:
                self._publish(replace(self._state, is_tracking=True))
                return

            redacted = {
                k: replace(r, user_location=None) for k, r in self._state.reminders.items()
            }
            self._publish(ReminderStoreState(
                reminders=MappingProxyType(redacted),
                last_known_location=None,
                location_updated_at=None,
                is_tracking=False,
            ))

    def clear_all(self) -> None:
        """Remove every reminder, keeping location and tracking state."""
        with self._lock:
            self._publish(replace(self._state, reminders=MappingProxyType({})))

    def reset(self) -> None:
        """Return to the initial empty state."""
        with self._lock:
            self._publish(_initial_state())

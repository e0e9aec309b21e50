"""
Cleanup / privacy enforcement for departure reminders.

Removes reminders and cancels their notifications when appointments pass,
the feature is disabled, the user logs out, or the app returns to the
foreground. verify_no_location_history() is the testable privacy assertion.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .background_task import DepartureReminderTask
from .notification_scheduler import NotificationScheduler
from .reminder_store import ReminderStore

logger = logging.getLogger(__name__)


class PrivacyEnforcer:

    def __init__(
        self,
        store: ReminderStore,
        scheduler: NotificationScheduler,
        task: DepartureReminderTask,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.scheduler = scheduler
        self.task = task
        self._clock = clock

    def cleanup_past_reminders(self, now: Optional[datetime] = None) -> List[str]:
        """
        Remove reminders whose arrival time is before `now` and cancel their
        notifications. Returns the removed appointment ids.
        """
        now = now or self._clock()
        cancelled = set()
        removed: List[str] = []

        for reminder in self.store.list_all():
            if reminder.arrival_time >= now:
                continue
            if reminder.notification_id and reminder.notification_id not in cancelled:
                self.scheduler.cancel(reminder.notification_id)
                cancelled.add(reminder.notification_id)
            self.store.remove(reminder.appointment_id)
            removed.append(reminder.appointment_id)

        if removed:
            logger.info(f"[DEPARTURE] Cleaned up {len(removed)} past reminder(s)")
        return removed

    async def cleanup_all(self, reset: bool = False) -> None:
        """
        Cancel all departure notifications, stop tracking and clear the store.

        Args:
            reset: Also return the store to its initial state (logout)
        """
        self.task.request_abort()
        cancelled = self.scheduler.cancel_all_departure_notifications()
        await self.task.stop_background_task()
        self.store.clear_all()
        if reset:
            self.store.reset()
        logger.info(f"[DEPARTURE] Cleared all reminders ({cancelled} notification(s) cancelled)")

    async def on_feature_disabled(self) -> None:
        await self.cleanup_all()

    async def on_logout(self) -> None:
        await self.cleanup_all(reset=True)

    def on_app_foreground(self) -> List[str]:
        return self.cleanup_past_reminders(self._clock())

    def verify_no_location_history(self) -> bool:
        """True iff no location is held, or tracking is inactive."""
        state = self.store.get_state()
        return state.last_known_location is None or not state.is_tracking

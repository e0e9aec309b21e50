"""
Departure Notification Scheduler

Builds urgency-tiered notification content and schedules/cancels the
underlying OS notification through the notification adapter.

Never schedules a notification in the past. Platform failures are logged and
reported as "not scheduled" so the reminder is retried on the next tick.
"""

import logging
import math
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional

from providers.contracts import NotificationAdapter

from .models import DepartureReminder, NotificationType, RouteLeg, VenueCluster
from .translations import translate

logger = logging.getLogger(__name__)

DEPARTURE_NOTIFICATION_TYPES = {
    NotificationType.DEPARTURE_REMINDER.value,
    NotificationType.DEPARTURE_REMINDER_CLUSTER.value,
}

# Maximum venue names listed in a clustered notification body
MAX_CLUSTER_VENUES_LISTED = 3


def format_first_transit_leg(legs: List[RouteLeg]) -> Optional[str]:
    """"line from stop (→ direction)" for the first transit leg, if any."""
    transit = next((leg for leg in legs if leg.is_transit and leg.line), None)
    if transit is None:
        return None
    return translate("departure.notification.withTransit", {
        "line": transit.line,
        "stop": transit.from_stop,
        "direction": transit.direction or "",
    })


class NotificationScheduler:
    """Schedules departure notifications through the OS notification adapter."""

    def __init__(
        self,
        adapter: NotificationAdapter,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        display_tz: tzinfo = timezone.utc,
        deep_link_scheme: str = "app",
    ):
        """
        Initialize scheduler.

        Args:
            adapter: OS notification adapter (schedule/cancel/list)
            clock: Returns the current aware datetime
            display_tz: Zone used to render HH:mm departure times
            deep_link_scheme: Scheme of the deep link opened on tap
        """
        self.adapter = adapter
        self._clock = clock
        self.display_tz = display_tz
        self.deep_link_scheme = deep_link_scheme

    def deep_link(self, appointment_id: str) -> str:
        return f"{self.deep_link_scheme}://assignment/{appointment_id}"

    def _format_time(self, moment: datetime) -> str:
        return moment.astimezone(self.display_tz).strftime("%H:%M")

    # ==================== Content ====================

    def build_reminder_content(self, reminder: DepartureReminder) -> Dict[str, str]:
        """Title and body for a single reminder, tiered by minutes until departure now."""
        minutes_until = math.trunc((reminder.departure_time - self._clock()).total_seconds() / 60)

        if minutes_until <= 0:
            title = f"🚨 {translate('departure.notification.leaveNow')}"
        elif minutes_until <= 5:
            title = f"⏰ {translate('departure.notification.leaveIn', {'minutes': minutes_until})}"
        else:
            title = f"🚆 {translate('departure.notification.title')}"

        body_parts = [reminder.venue_name]
        transit_info = format_first_transit_leg(reminder.route)
        if transit_info:
            body_parts.append(transit_info)
        body_parts.append(translate(
            "departure.notification.departureTime",
            {"time": self._format_time(reminder.departure_time)},
        ))

        return {"title": title, "body": "\n".join(body_parts)}

    def build_clustered_content(self, cluster: VenueCluster, departure_time: datetime) -> Dict[str, str]:
        title = f"🚆 {translate('departure.notification.title')}"

        venue_list = ", ".join(cluster.venue_names[:MAX_CLUSTER_VENUES_LISTED])
        if len(cluster.venue_names) > MAX_CLUSTER_VENUES_LISTED:
            venue_list = f"{venue_list}..."

        body_parts = [
            translate("departure.notification.clustered", {"count": len(cluster.appointment_ids)}),
            venue_list,
            translate("departure.notification.departureTime", {"time": self._format_time(departure_time)}),
        ]
        return {"title": title, "body": "\n".join(body_parts)}

    # ==================== Scheduling ====================

    def notify_at(self, departure_time: datetime, buffer_minutes: int) -> datetime:
        return departure_time - timedelta(minutes=buffer_minutes)

    def schedule_reminder(self, reminder: DepartureReminder, buffer_minutes: int) -> Optional[str]:
        """
        Schedule the notification for a reminder.

        Returns:
            Notification id, or None if the notify time has passed or the
            platform refused the request
        """
        trigger_at = self.notify_at(reminder.departure_time, buffer_minutes)
        if trigger_at <= self._clock():
            logger.debug(
                f"[DEPARTURE] Notify time passed for {reminder.appointment_id}, not scheduling"
            )
            return None

        content = self.build_reminder_content(reminder)
        content["data"] = {
            "type": NotificationType.DEPARTURE_REMINDER.value,
            "appointmentId": reminder.appointment_id,
            "deepLink": self.deep_link(reminder.appointment_id),
        }
        return self._schedule(content, trigger_at)

    def schedule_clustered(
        self, cluster: VenueCluster, departure_time: datetime, buffer_minutes: int
    ) -> Optional[str]:
        """Schedule one notification covering every appointment in the cluster."""
        trigger_at = self.notify_at(departure_time, buffer_minutes)
        if trigger_at <= self._clock():
            return None

        content = self.build_clustered_content(cluster, departure_time)
        content["data"] = {
            "type": NotificationType.DEPARTURE_REMINDER_CLUSTER.value,
            "appointmentIds": list(cluster.appointment_ids),
            "deepLink": self.deep_link(cluster.appointment_ids[0]),
        }
        return self._schedule(content, trigger_at)

    def _schedule(self, content: Dict[str, Any], trigger_at: datetime) -> Optional[str]:
        try:
            notification_id = self.adapter.schedule(content, trigger_at)
        except Exception as e:
            logger.error(f"[DEPARTURE] Failed to schedule notification: {e}")
            return None

        logger.info(
            f"[DEPARTURE] Scheduled {content['data']['type']} {notification_id} "
            f"for {trigger_at.isoformat()}"
        )
        return notification_id

    # ==================== Cancellation ====================

    def cancel(self, notification_id: str) -> None:
        try:
            self.adapter.cancel(notification_id)
        except Exception as e:
            logger.error(f"[DEPARTURE] Failed to cancel notification {notification_id}: {e}")

    def cancel_all_departure_notifications(self) -> int:
        """
        Cancel every scheduled notification tagged as a departure reminder.

        Other app notifications are left untouched.

        Returns:
            Number of notifications cancelled
        """
        try:
            scheduled = self.adapter.list_scheduled()
        except Exception as e:
            logger.error(f"[DEPARTURE] Failed to list scheduled notifications: {e}")
            return 0

        cancelled = 0
        for notification in scheduled:
            data = notification.get("data") or {}
            if data.get("type") in DEPARTURE_NOTIFICATION_TYPES:
                self.cancel(notification["id"])
                cancelled += 1
        return cancelled

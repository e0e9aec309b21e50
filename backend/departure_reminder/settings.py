"""
Departure reminder settings storage.

Settings are the one durable piece of this feature: a per-user document in
MongoDB holding enabled / buffer_minutes / venue_proximity_meters.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone

from pymongo.database import Database

from .models import DepartureReminderSettings

logger = logging.getLogger(__name__)


def settings_from_doc(doc: dict) -> DepartureReminderSettings:
    defaults = DepartureReminderSettings()
    return DepartureReminderSettings(
        enabled=bool(doc.get("enabled", defaults.enabled)),
        buffer_minutes=int(doc.get("buffer_minutes", defaults.buffer_minutes)),
        venue_proximity_meters=float(doc.get("venue_proximity_meters", defaults.venue_proximity_meters)),
    )


class MongoSettingsStore:
    """Settings store backed by the `departure_reminder_settings` collection."""

    def __init__(self, db: Database, user_id: str):
        """
        Args:
            db: MongoDB database instance
            user_id: Owner of the settings document
        """
        if not user_id:
            raise ValueError("user_id required")
        self.collection = db.departure_reminder_settings
        self.user_id = user_id

    def load(self) -> DepartureReminderSettings:
        doc = self.collection.find_one({"user_id": self.user_id})
        if not doc:
            return DepartureReminderSettings()
        try:
            return settings_from_doc(doc)
        except ValueError as e:
            logger.warning(f"[DEPARTURE] Invalid stored settings for {self.user_id}, using defaults: {e}")
            return DepartureReminderSettings()

    def save(self, settings: DepartureReminderSettings) -> DepartureReminderSettings:
        doc = settings.to_mongo_doc()
        doc["user_id"] = self.user_id
        doc["updated_at"] = datetime.now(timezone.utc)
        self.collection.update_one(
            {"user_id": self.user_id},
            {"$set": doc},
            upsert=True,
        )
        return settings

    def enable(self) -> DepartureReminderSettings:
        return self.save(replace(self.load(), enabled=True))

    def disable(self) -> DepartureReminderSettings:
        return self.save(replace(self.load(), enabled=False))

    def set_buffer_minutes(self, buffer_minutes: int) -> DepartureReminderSettings:
        """Raises ValueError for values outside the allowed set."""
        return self.save(replace(self.load(), buffer_minutes=buffer_minutes))

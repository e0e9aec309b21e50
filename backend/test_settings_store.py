"""
Tests for departure_reminder/settings.py and DepartureReminderSettings validation
"""

from unittest.mock import MagicMock

import pytest

from departure_reminder.models import DepartureReminderSettings
from departure_reminder.settings import MongoSettingsStore, settings_from_doc


@pytest.fixture
def db():
    db = MagicMock()
    db.departure_reminder_settings.find_one.return_value = None
    return db


class TestSettingsValidation:

    def test_defaults(self):
        settings = DepartureReminderSettings()
        assert settings.enabled is False
        assert settings.buffer_minutes == 15
        assert settings.venue_proximity_meters == 500

    @pytest.mark.parametrize("buffer_minutes", [5, 10, 15, 20, 30])
    def test_allowed_buffers(self, buffer_minutes):
        assert DepartureReminderSettings(buffer_minutes=buffer_minutes).buffer_minutes == buffer_minutes

    @pytest.mark.parametrize("buffer_minutes", [0, 7, 25, 60])
    def test_rejected_buffers(self, buffer_minutes):
        with pytest.raises(ValueError):
            DepartureReminderSettings(buffer_minutes=buffer_minutes)

    def test_rejects_non_positive_proximity(self):
        with pytest.raises(ValueError):
            DepartureReminderSettings(venue_proximity_meters=0)

    def test_from_partial_doc(self):
        settings = settings_from_doc({"enabled": True})
        assert settings == DepartureReminderSettings(enabled=True)


class TestMongoSettingsStore:

    def test_requires_user(self, db):
        with pytest.raises(ValueError):
            MongoSettingsStore(db, "")

    def test_missing_document_gives_defaults(self, db):
        assert MongoSettingsStore(db, "user-1").load() == DepartureReminderSettings()
        db.departure_reminder_settings.find_one.assert_called_once_with({"user_id": "user-1"})

    def test_invalid_document_gives_defaults(self, db):
        db.departure_reminder_settings.find_one.return_value = {"user_id": "user-1", "buffer_minutes": 7}
        assert MongoSettingsStore(db, "user-1").load() == DepartureReminderSettings()

    def test_load_document(self, db):
        db.departure_reminder_settings.find_one.return_value = {
            "user_id": "user-1",
            "enabled": True,
            "buffer_minutes": 20,
            "venue_proximity_meters": 300,
        }
        settings = MongoSettingsStore(db, "user-1").load()
        assert settings == DepartureReminderSettings(enabled=True, buffer_minutes=20, venue_proximity_meters=300)

    def test_save_upserts(self, db):
        MongoSettingsStore(db, "user-1").save(DepartureReminderSettings(enabled=True, buffer_minutes=10))

        args, kwargs = db.departure_reminder_settings.update_one.call_args
        assert args[0] == {"user_id": "user-1"}
        doc = args[1]["$set"]
        assert doc["enabled"] is True
        assert doc["buffer_minutes"] == 10
        assert doc["user_id"] == "user-1"
        assert "updated_at" in doc
        assert kwargs == {"upsert": True}

    def test_enable_keeps_other_fields(self, db):
        db.departure_reminder_settings.find_one.return_value = {"buffer_minutes": 30}
        settings = MongoSettingsStore(db, "user-1").enable()
        assert settings == DepartureReminderSettings(enabled=True, buffer_minutes=30)

    def test_set_buffer_validates(self, db):
        store = MongoSettingsStore(db, "user-1")
        with pytest.raises(ValueError):
            store.set_buffer_minutes(12)
        db.departure_reminder_settings.update_one.assert_not_called()

"""
Tests for departure_reminder/cleanup.py - cleanup and privacy enforcement
"""

import asyncio
from datetime import timedelta

import pytest

from departure_reminder.background_task import EngineState, TickOutcome
from departure_reminder.cleanup import PrivacyEnforcer
from departure_reminder.route_cache import RateLimiter
from test_background_task import FAR_VENUE, HOME, NOW, Harness, _appointment


def _enforcer(h):
    return PrivacyEnforcer(h.store, h.scheduler, h.task, clock=h.clock)


class TestCleanupPastReminders:

    @pytest.mark.asyncio
    async def test_removes_past_and_cancels_notifications(self):
        h = Harness([_appointment("a", hours=3), _appointment("b", hours=5, location=FAR_VENUE)])
        await h.task.run_check()
        a_id = h.store.get("a").notification_id
        b_id = h.store.get("b").notification_id

        removed = _enforcer(h).cleanup_past_reminders(NOW + timedelta(hours=4))

        assert removed == ["a"]
        assert h.store.get("a") is None
        assert a_id not in h.notifications.scheduled
        assert b_id in h.notifications.scheduled

    @pytest.mark.asyncio
    async def test_shared_notification_cancelled_once(self, monkeypatch):
        h = Harness([_appointment("a", hours=3), _appointment("b", hours=3.5)])
        await h.task.run_check()
        assert h.store.get("a").notification_id == h.store.get("b").notification_id

        cancelled = []
        monkeypatch.setattr(h.notifications, "cancel", cancelled.append)
        removed = _enforcer(h).cleanup_past_reminders(NOW + timedelta(hours=5))

        assert sorted(removed) == ["a", "b"]
        assert len(cancelled) == 1

    @pytest.mark.asyncio
    async def test_on_app_foreground_uses_clock(self):
        h = Harness([_appointment("a", hours=3)])
        await h.task.run_check()
        enforcer = _enforcer(h)

        assert enforcer.on_app_foreground() == []
        h.clock.now = NOW + timedelta(hours=3)
        assert enforcer.on_app_foreground() == ["a"]


class TestCleanupAll:

    @pytest.mark.asyncio
    async def test_feature_disabled_clears_everything(self):
        h = Harness([_appointment("a")])
        await h.task.start_background_task()
        await h.task.run_check()
        other = h.notifications.schedule({"data": {"type": "chat_message"}}, NOW + timedelta(hours=1))
        enforcer = _enforcer(h)

        assert enforcer.verify_no_location_history() is False

        await enforcer.on_feature_disabled()

        assert h.store.list_all() == []
        assert list(h.notifications.scheduled) == [other]
        assert h.task.state == EngineState.IDLE
        assert h.location.tracking is False
        assert enforcer.verify_no_location_history() is True

    @pytest.mark.asyncio
    async def test_logout_resets_store(self):
        h = Harness([_appointment("a")])
        await h.task.start_background_task()
        await h.task.run_check()
        enforcer = _enforcer(h)

        await enforcer.on_logout()

        state = h.store.get_state()
        assert dict(state.reminders) == {}
        assert state.last_known_location is None
        assert state.is_tracking is False
        assert h.notifications.scheduled == {}
        assert enforcer.verify_no_location_history() is True

    @pytest.mark.asyncio
    async def test_cleanup_all_aborts_pending_waits(self):
        h = Harness([_appointment("a")])
        await _enforcer(h).cleanup_all()
        assert h.task._abort.is_set()

        # next tick starts with a fresh abort signal
        await h.task.run_check()
        assert not h.task._abort.is_set()

    @pytest.mark.asyncio
    async def test_disable_during_tick_stops_it(self):
        h = Harness(
            [_appointment("a"), _appointment("c", hours=4, location=FAR_VENUE)],
            rate_limiter=RateLimiter(min_interval_s=30.0),
        )
        await h.task.start_background_task()
        enforcer = _enforcer(h)

        # "a" is routed at once, "c" waits on the rate limiter
        tick = asyncio.ensure_future(h.task.run_check())
        await asyncio.sleep(0.05)
        h.settings_store.disable()
        await enforcer.on_feature_disabled()
        result = await asyncio.wait_for(tick, timeout=5)

        assert result.outcome == TickOutcome.ABORTED
        assert result.scheduled == []
        assert result.fallback == []
        assert h.store.list_all() == []
        assert h.notifications.scheduled == {}
        assert h.store.is_tracking is False
        assert enforcer.verify_no_location_history() is True


class TestVerifyNoLocationHistory:

    def test_fresh_store(self):
        h = Harness()
        assert _enforcer(h).verify_no_location_history() is True

    def test_location_while_tracking(self):
        h = Harness()
        h.store.set_tracking(True)
        h.store.set_location(HOME)
        assert _enforcer(h).verify_no_location_history() is False

    def test_location_without_tracking(self):
        h = Harness(tracking=False)
        h.store.set_location(HOME)
        assert _enforcer(h).verify_no_location_history() is True

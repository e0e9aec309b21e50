"""
Wiring of the departure reminder components.

One DepartureEngine per process: it owns the single route calculator (and
with it the cache and rate limiter) shared by every tick.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from common.config import EngineConfig, load_config
from providers.contracts import SettingsStore
from providers.registry import ProviderSet

from .background_task import DepartureReminderTask
from .cleanup import PrivacyEnforcer
from .notification_scheduler import NotificationScheduler
from .reminder_store import ReminderStore
from .route_calculator import RouteCalculator

logger = logging.getLogger(__name__)


@dataclass
class DepartureEngine:
    providers: ProviderSet
    settings_store: SettingsStore
    store: ReminderStore
    route_calculator: RouteCalculator
    scheduler: NotificationScheduler
    task: DepartureReminderTask
    enforcer: PrivacyEnforcer


def build_engine(
    providers: ProviderSet,
    settings_store: SettingsStore,
    config: Optional[EngineConfig] = None,
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> DepartureEngine:
    config = config or load_config()
    store = ReminderStore(clock=clock)
    route_calculator = RouteCalculator(providers.routing)
    scheduler = NotificationScheduler(
        providers.notifications,
        clock=clock,
        display_tz=ZoneInfo(config.timezone),
        deep_link_scheme=config.deep_link_scheme,
    )
    task = DepartureReminderTask(
        settings_store=settings_store,
        appointment_provider=providers.appointments,
        location=providers.location,
        route_calculator=route_calculator,
        store=store,
        scheduler=scheduler,
        clock=clock,
    )
    enforcer = PrivacyEnforcer(store, scheduler, task, clock=clock)

    if not route_calculator.is_configured():
        logger.warning("[DEPARTURE] Routing API not configured, reminders will use time-based estimates")

    return DepartureEngine(
        providers=providers,
        settings_store=settings_store,
        store=store,
        route_calculator=route_calculator,
        scheduler=scheduler,
        task=task,
        enforcer=enforcer,
    )

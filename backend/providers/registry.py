from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .contracts import (
    AppointmentProvider,
    LocationAdapter,
    NotificationAdapter,
    RoutingBackend,
)
from .fake_providers import FakeRoutingBackend
from .host_adapters import (
    HostLocationAdapter,
    InMemoryAppointmentProvider,
    InMemoryNotificationAdapter,
)
from .real_providers import OjpRoutingBackend


@dataclass
class ProviderSet:
    routing: RoutingBackend
    appointments: AppointmentProvider
    location: LocationAdapter
    notifications: NotificationAdapter


def _build_prod() -> ProviderSet:
    return ProviderSet(
        routing=OjpRoutingBackend(),
        appointments=InMemoryAppointmentProvider(),
        location=HostLocationAdapter(),
        notifications=InMemoryNotificationAdapter(),
    )


def _build_fake() -> ProviderSet:
    return ProviderSet(
        routing=FakeRoutingBackend(),
        appointments=InMemoryAppointmentProvider(),
        location=HostLocationAdapter(),
        notifications=InMemoryNotificationAdapter(),
    )


_provider_cache: Optional[ProviderSet] = None


def load_providers(mode: Optional[str] = None) -> ProviderSet:
    global _provider_cache
    active_mode = (mode or os.environ.get("DEPARTURE_MODE", "prod")).lower()
    if _provider_cache and mode is None:
        return _provider_cache
    if active_mode in {"demo", "test"}:
        _provider_cache = _build_fake()
    else:
        _provider_cache = _build_prod()
    return _provider_cache


def get_providers() -> ProviderSet:
    return load_providers()


def reload_providers(mode: Optional[str] = None) -> ProviderSet:
    global _provider_cache
    _provider_cache = None
    return load_providers(mode)

from .registry import get_providers, reload_providers, load_providers, ProviderSet
from .host_adapters import (
    HostLocationAdapter,
    InMemoryAppointmentProvider,
    InMemoryNotificationAdapter,
    InMemorySettingsStore,
)

__all__ = [
    "get_providers",
    "reload_providers",
    "load_providers",
    "ProviderSet",
    "HostLocationAdapter",
    "InMemoryAppointmentProvider",
    "InMemoryNotificationAdapter",
    "InMemorySettingsStore",
]

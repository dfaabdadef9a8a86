from slotwise.integrations.providers.base import BusyTimeProvider
from slotwise.integrations.providers.native import NativeBusyTimeProvider
from slotwise.integrations.providers.registry import register_provider, resolve_provider

__all__ = [
    "BusyTimeProvider",
    "NativeBusyTimeProvider",
    "register_provider",
    "resolve_provider",
]

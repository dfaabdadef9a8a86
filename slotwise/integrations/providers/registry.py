from __future__ import annotations

from typing import Optional

from slotwise.integrations.providers.base import BusyTimeProvider
from slotwise.integrations.providers.native import NativeBusyTimeProvider


_PROVIDERS: dict[str, BusyTimeProvider] = {
    "native": NativeBusyTimeProvider(),
}


def register_provider(provider: BusyTimeProvider) -> None:
    _PROVIDERS[provider.name] = provider


def resolve_provider(name: Optional[str] = None) -> BusyTimeProvider:
    return _PROVIDERS.get(name or "native", _PROVIDERS["native"])

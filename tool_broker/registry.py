from __future__ import annotations

from typing import Dict, List, Optional

from tool_broker.schema import Provider, ProviderConfig, ProviderStatus, utcnow


class ProviderRegistry:
    """Bookkeeping for configured providers. Never talks to a transport."""

    def __init__(self):
        self._providers: Dict[str, Provider] = {}

    def register(self, config: ProviderConfig) -> Provider:
        provider = Provider(name=config.name, url=config.url, type=config.type)
        self._providers[config.name] = provider
        return provider

    def mark_connected(self, name: str) -> None:
        p = self._providers.get(name)
        if p:
            p.status = ProviderStatus.CONNECTED
            p.last_connected = utcnow()
            p.error = None

    def mark_error(self, name: str, message: str) -> None:
        p = self._providers.get(name)
        if p:
            p.status = ProviderStatus.ERROR
            p.error = message

    def mark_disconnected(self, name: str) -> None:
        p = self._providers.get(name)
        if p:
            p.status = ProviderStatus.DISCONNECTED

    def note_error(self, name: str, message: Optional[str]) -> None:
        """Record a message without changing status (e.g. discovery failure)."""
        p = self._providers.get(name)
        if p:
            p.error = message

    def get(self, name: str) -> Optional[Provider]:
        return self._providers.get(name)

    def all(self) -> List[Provider]:
        return list(self._providers.values())

    def remove(self, name: str) -> Optional[Provider]:
        return self._providers.pop(name, None)

    def __contains__(self, name: str) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)

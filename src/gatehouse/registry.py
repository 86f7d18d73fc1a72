"""Provider registry: provider name -> (strategy, config)."""

import threading

from loguru import logger

from gatehouse.errors import NotFoundError
from gatehouse.models import Config
from gatehouse.strategy import Strategy


class Registry:
    """Lookup of configured providers.

    Built at startup. Registering a provider name twice replaces the first
    pair.

    Example:
        >>> registry = Registry()
        >>> registry.register(apple_strategy, apple_config)
        >>> strategy, config = registry.get("apple")
    """

    def __init__(self) -> None:
        self._providers: dict[str, tuple[Strategy, Config]] = {}
        self._lock = threading.Lock()

    def register(self, strategy: Strategy, config: Config) -> None:
        """Register (or replace) a provider."""
        with self._lock:
            replaced = strategy.provider in self._providers
            self._providers[strategy.provider] = (strategy, config)
        if replaced:
            logger.info(f"Replaced provider registration: {strategy.provider}")
        else:
            logger.info(f"Registered provider: {strategy.provider}")

    def get(self, name: str) -> tuple[Strategy, Config]:
        """Get the strategy and config for a provider.

        Raises:
            NotFoundError: Provider not registered
        """
        try:
            return self._providers[name]
        except KeyError:
            raise NotFoundError(name, f"provider not registered: {name}") from None

    def providers(self) -> list[str]:
        """Names of registered providers (no particular order)."""
        with self._lock:
            return list(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)

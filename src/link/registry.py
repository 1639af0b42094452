"""
Lazily loaded package capabilities.

``link.MiddlewarePipeline``, ``link.common_logger`` and friends are not
imported when ``link`` is. Each name maps to a provider that runs on first
access; the result is cached, so later lookups are a dict hit.

    registry = CapabilityRegistry()
    registry.register("Router", lambda: importlib.import_module("myrouter").Router)
    registry.resolve("Router")   # imports myrouter once
    registry.resolve("Router")   # cached
"""

import importlib
import logging
import threading
from typing import Any, Callable, Dict, Iterator


logger = logging.getLogger(__name__)

Provider = Callable[[], Any]


class CapabilityRegistry:
    """Name → provider mapping with resolve-once caching."""

    def __init__(self):
        self._providers: Dict[str, Provider] = {}
        self._cache: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def register(self, name: str, provider: Provider) -> None:
        """Register (or replace) the provider for ``name``."""
        with self._lock:
            self._providers[name] = provider
            self._cache.pop(name, None)

    def register_module(self, name: str, module: str, attribute: str = None) -> None:
        """
        Register a provider that imports ``module`` and optionally returns
        one of its attributes.
        """
        def provider():
            loaded = importlib.import_module(module)
            return getattr(loaded, attribute) if attribute else loaded

        self.register(name, provider)

    def resolve(self, name: str) -> Any:
        """
        Return the capability registered as ``name``.

        Raises:
            KeyError: If nothing is registered under ``name``.
        """
        with self._lock:
            if name in self._cache:
                return self._cache[name]
            provider = self._providers[name]

        value = provider()
        logger.debug(f"Resolved capability {name!r}")

        with self._lock:
            # First resolution wins if two threads raced.
            return self._cache.setdefault(name, value)

    def is_resolved(self, name: str) -> bool:
        return name in self._cache

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._providers))

    def __len__(self) -> int:
        return len(self._providers)

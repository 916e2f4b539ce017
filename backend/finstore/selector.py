"""Storage proxy: the one object the rest of the application stores through."""

from __future__ import annotations

import logging
from threading import Lock, RLock
from typing import Any, Callable, Optional

from .config import settings
from .persistence import InMemoryPersistence, Persistence, persistence_for_config
from .schemas import DatabaseConfig

logger = logging.getLogger(__name__)


class ActiveBackendHandle:
    """Holds the active config and a generation counter bumped on every change."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._config: Optional[DatabaseConfig] = None
        self._generation = 0

    def set(self, config: Optional[DatabaseConfig]) -> None:
        with self._lock:
            self._config = config
            self._generation += 1

    def current(self) -> tuple[Optional[DatabaseConfig], int]:
        with self._lock:
            return self._config, self._generation

    @property
    def config(self) -> Optional[DatabaseConfig]:
        return self.current()[0]

    @property
    def generation(self) -> int:
        return self.current()[1]


class BackendSelector:
    def __init__(
        self,
        handle: ActiveBackendHandle,
        force_memory: Optional[bool] = None,
        excluded_provider: Optional[str] = None,
        memory_factory: Callable[[], Persistence] = InMemoryPersistence,
        backend_factory: Callable[[DatabaseConfig], Persistence] = persistence_for_config,
    ) -> None:
        self._handle = handle
        self._force_memory = settings.memory_forced if force_memory is None else force_memory
        self._excluded = (excluded_provider if excluded_provider is not None else settings.excluded_provider) or None
        self._memory_factory = memory_factory
        self._backend_factory = backend_factory
        self._forced_config: Optional[DatabaseConfig] = None
        self._backend: Optional[Persistence] = None
        self._generation: Optional[int] = None
        self._lock = RLock()

    def resolve(self) -> Persistence:
        with self._lock:
            config, generation = self._handle.current()
            if self._backend is not None and self._generation == generation:
                return self._backend
            self._close_current()
            self._backend = self._build(config)
            self._generation = generation
            logger.info("Storage resolved to %s", self._backend.label)
            return self._backend

    def _build(self, active: Optional[DatabaseConfig]) -> Persistence:
        if self._force_memory:
            return self._memory_factory()
        if self._forced_config is not None:
            return self._backend_factory(self._forced_config)
        if active is not None and active.provider.value != self._excluded:
            return self._backend_factory(active)
        return self._memory_factory()

    def _close_current(self) -> None:
        if self._backend is not None:
            self._backend.close()
        self._backend = None
        self._generation = None

    def force(self, config: Optional[DatabaseConfig]) -> None:
        """Pin the proxy to ``config`` (the setup flow's provider); ``None`` unpins."""
        with self._lock:
            self._forced_config = config
            self._close_current()

    def force_memory(self, enabled: bool = True) -> None:
        with self._lock:
            self._force_memory = enabled
            self._close_current()

    def reset(self) -> None:
        with self._lock:
            self._close_current()

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self.resolve(), name)

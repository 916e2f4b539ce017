from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

import requests
from sqlalchemy import create_engine

from .dialects import EngineFactory
from .errors import NotFound
from .extractor import DataExtractor
from .migration import MigrationOrchestrator
from .probe import ConnectionProbe
from .registry import ConfigRegistry
from .schemas import (
    PROVIDER_INFO,
    ConnectionTestRequest,
    ConnectionTestResult,
    DatabaseConfig,
    DatabaseConfigCreate,
    DatabaseConfigUpdate,
    MigrationLog,
    ProviderInfo,
    SchemaValidationResult,
)
from .selector import ActiveBackendHandle, BackendSelector


class DatabaseManager:
    """Entry point for database administration: configs, activation, migrations."""

    def __init__(
        self,
        probe: Optional[ConnectionProbe] = None,
        handle: Optional[ActiveBackendHandle] = None,
        storage: Optional[BackendSelector] = None,
        engine_factory: EngineFactory = create_engine,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        self.handle = handle or ActiveBackendHandle()
        self.probe = probe or ConnectionProbe(engine_factory=engine_factory, session_factory=session_factory)
        self.registry = ConfigRegistry(self.probe, self.handle)
        self.storage = storage or BackendSelector(self.handle)
        self.extractor = DataExtractor(
            self.registry.get,
            self.storage.resolve,
            engine_factory=engine_factory,
            session_factory=session_factory,
        )
        self.orchestrator = MigrationOrchestrator(
            self.registry,
            self.extractor,
            engine_factory=engine_factory,
            session_factory=session_factory,
        )

    def list_configs(self) -> list[DatabaseConfig]:
        return self.registry.list()

    def get_config(self, config_id: str) -> DatabaseConfig:
        return self.registry.get(config_id)

    def add_config(self, payload: DatabaseConfigCreate) -> DatabaseConfig:
        return self.registry.add(payload)

    def update_config(self, config_id: str, patch: DatabaseConfigUpdate) -> DatabaseConfig:
        return self.registry.update(config_id, patch)

    def delete_config(self, config_id: str) -> None:
        if not self.registry.remove(config_id):
            raise NotFound(f"Database config {config_id} not found")

    def test_connection(self, payload: ConnectionTestRequest, max_attempts: int = 1) -> ConnectionTestResult:
        now = datetime.now(timezone.utc)
        config = DatabaseConfig(**payload.model_dump(), id="connection-test", createdAt=now, updatedAt=now)
        if max_attempts > 1:
            return self.probe.test_with_retry(config, max_attempts=max_attempts)
        return self.probe.test(config)

    def validate_schema(self, config_id: str) -> SchemaValidationResult:
        return self.probe.validate_schema(self.registry.get(config_id))

    def activate(self, config_id: str) -> DatabaseConfig:
        return self.registry.set_active(config_id)

    def migrate(self, from_id: Optional[str], to_id: str) -> str:
        return self.orchestrator.migrate(from_id, to_id)

    def list_migrations(self) -> list[MigrationLog]:
        return self.registry.list_migrations()

    def get_migration(self, migration_id: str) -> MigrationLog:
        return self.registry.get_migration(migration_id)

    @staticmethod
    def provider_info() -> list[ProviderInfo]:
        return list(PROVIDER_INFO.values())

    def close(self) -> None:
        self.storage.reset()

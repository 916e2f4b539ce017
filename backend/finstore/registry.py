from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import RLock
from typing import Optional
from uuid import uuid4

from .errors import ActiveConfigInUse, CannotActivate, ConnectionFailed, FailureKind, NotFound, ValidationError
from .probe import ConnectionProbe
from .schemas import DatabaseConfig, DatabaseConfigCreate, DatabaseConfigUpdate, MigrationLog
from .selector import ActiveBackendHandle

logger = logging.getLogger(__name__)

CONNECTION_FIELDS = (
    "connectionString",
    "host",
    "port",
    "database",
    "username",
    "password",
    "serviceUrl",
    "anonKey",
    "serviceKey",
    "ssl",
)
REQUIRED_FIELDS = ("name", "ssl", "maxConnections")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ConfigRegistry:
    def __init__(self, probe: ConnectionProbe, handle: Optional[ActiveBackendHandle] = None) -> None:
        self.probe = probe
        self.handle = handle or ActiveBackendHandle()
        self._configs: dict[str, DatabaseConfig] = {}
        self._migrations: dict[str, MigrationLog] = {}
        self._lock = RLock()

    def add(self, payload: DatabaseConfigCreate) -> DatabaseConfig:
        now = _now()
        config = DatabaseConfig(
            **payload.model_dump(),
            id=str(uuid4()),
            isActive=False,
            isConnected=False,
            createdAt=now,
            updatedAt=now,
        )
        result = self.probe.test(config)
        config = config.model_copy(update={"isConnected": result.success, "lastConnectionTest": _now()})
        if not result.success:
            logger.warning("Database config %s saved but connection failed: %s", config.name, result.error)
        with self._lock:
            self._configs[config.id] = config
        logger.info("Added database config %s (%s)", config.name, config.provider.value)
        return config.model_copy()

    def update(self, config_id: str, patch: DatabaseConfigUpdate) -> DatabaseConfig:
        current = self.get(config_id)
        changes = patch.model_dump(exclude_unset=True)
        nulled = [field for field in REQUIRED_FIELDS if field in changes and changes[field] is None]
        if nulled:
            raise ValidationError(f"{', '.join(nulled)} cannot be null")
        updated = current.model_copy(update={**changes, "updatedAt": _now()})
        if any(field in changes and changes[field] != getattr(current, field) for field in CONNECTION_FIELDS):
            result = self.probe.test(updated)
            if not result.success:
                raise ConnectionFailed(f"Connection test failed: {result.error}", result.failureKind or FailureKind.generic)
            updated = updated.model_copy(update={"isConnected": True, "lastConnectionTest": _now()})
        with self._lock:
            if config_id not in self._configs:
                raise NotFound(f"Database config {config_id} not found")
            updated = updated.model_copy(update={"isActive": self._configs[config_id].isActive})
            self._configs[config_id] = updated
            if updated.isActive:
                self.handle.set(updated)
        return updated.model_copy()

    def remove(self, config_id: str) -> bool:
        with self._lock:
            config = self._configs.get(config_id)
            if config is None:
                return False
            if config.isActive:
                raise ActiveConfigInUse("Cannot delete active database configuration")
            del self._configs[config_id]
        logger.info("Removed database config %s", config.name)
        return True

    def list(self) -> list[DatabaseConfig]:
        with self._lock:
            configs = sorted(self._configs.values(), key=lambda item: item.createdAt)
            return [config.model_copy() for config in configs]

    def find(self, config_id: str) -> Optional[DatabaseConfig]:
        with self._lock:
            config = self._configs.get(config_id)
            return config.model_copy() if config else None

    def get(self, config_id: str) -> DatabaseConfig:
        config = self.find(config_id)
        if config is None:
            raise NotFound(f"Database config {config_id} not found")
        return config

    def active(self) -> Optional[DatabaseConfig]:
        with self._lock:
            for config in self._configs.values():
                if config.isActive:
                    return config.model_copy()
        return None

    def set_active(self, config_id: str) -> DatabaseConfig:
        probed = self.get(config_id)
        tested: dict = {}
        if not probed.isConnected:
            result = self.probe.test(probed)
            if not result.success:
                raise CannotActivate(f"Cannot activate database: {result.error}")
            tested = {"isConnected": True, "lastConnectionTest": _now()}

        with self._lock:
            # re-read: an update may have landed while the probe ran
            current = self._configs.get(config_id)
            if current is None:
                raise NotFound(f"Database config {config_id} not found")
            now = _now()
            for key, config in self._configs.items():
                if config.isActive and key != config_id:
                    self._configs[key] = config.model_copy(update={"isActive": False, "updatedAt": now})
            target = current.model_copy(update={**tested, "isActive": True, "updatedAt": now})
            self._configs[config_id] = target
            self.handle.set(target)
        logger.info("Activated database config %s (%s)", target.name, target.provider.value)
        return target.model_copy()

    def record_migration(self, log: MigrationLog) -> None:
        with self._lock:
            self._migrations[log.id] = log.model_copy(deep=True)

    def list_migrations(self) -> list[MigrationLog]:
        with self._lock:
            logs = sorted(self._migrations.values(), key=lambda item: item.startedAt, reverse=True)
            return [log.model_copy(deep=True) for log in logs]

    def get_migration(self, migration_id: str) -> MigrationLog:
        with self._lock:
            log = self._migrations.get(migration_id)
        if log is None:
            raise NotFound(f"Migration {migration_id} not found")
        return log.model_copy(deep=True)

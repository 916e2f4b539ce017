"""Migration runs: extract, provision, insert, and keep the audit log."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Optional
from uuid import uuid4

import requests
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError

from .dialects import EngineFactory
from .errors import FinstoreError, InsertFailed, MigrationError, MigrationInProgress, first_line
from .extractor import CURRENT_DATASET, DataExtractor
from .inserter import InsertReport, OrderedInserter
from .provisioner import SchemaProvisioner
from .registry import ConfigRegistry
from .schemas import DatabaseConfig, MigrationLog, MigrationStatus
from .targets import open_target

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MigrationOrchestrator:
    def __init__(
        self,
        registry: ConfigRegistry,
        extractor: DataExtractor,
        provisioner: Optional[SchemaProvisioner] = None,
        inserter: Optional[OrderedInserter] = None,
        engine_factory: EngineFactory = create_engine,
        session_factory: Callable[[], requests.Session] = requests.Session,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.registry = registry
        self.extractor = extractor
        self.provisioner = provisioner or SchemaProvisioner()
        self.inserter = inserter or OrderedInserter()
        self.engine_factory = engine_factory
        self.session_factory = session_factory
        self.clock = clock
        self._targets: dict[str, Lock] = {}
        self._targets_lock = Lock()

    def _target_lock(self, target_id: str) -> Lock:
        with self._targets_lock:
            return self._targets.setdefault(target_id, Lock())

    def migrate(self, from_id: Optional[str], to_id: str) -> str:
        """Copy the whole dataset of ``from_id`` into ``to_id`` and return the log id.

        Runs to completion on the caller's thread. The log reaches a terminal
        state before this returns or raises; a raised ``MigrationError``
        carries ``migration_id``.
        """
        target = self.registry.get(to_id)
        source = None if from_id in (None, CURRENT_DATASET) else self.registry.get(from_id)

        lock = self._target_lock(to_id)
        if not lock.acquire(blocking=False):
            raise MigrationInProgress(f"A migration into {target.name} is already running")
        try:
            return self._run(from_id, source, target)
        finally:
            lock.release()

    def _run(self, from_id: Optional[str], source: Optional[DatabaseConfig], target: DatabaseConfig) -> str:
        log = MigrationLog(
            id=str(uuid4()),
            fromProvider=source.provider if source else None,
            toProvider=target.provider,
            status=MigrationStatus.pending,
            startedAt=self.clock(),
        )
        report = InsertReport()
        self.registry.record_migration(log)
        try:
            log.status = MigrationStatus.in_progress
            self.registry.record_migration(log)
            logger.info(
                "Migration %s started: %s -> %s",
                log.id,
                source.name if source else "current dataset",
                target.name,
            )

            snapshot = self.extractor.extract(from_id)
            log.migrationDetails["extracted"] = snapshot.counts()
            with open_target(target, engine_factory=self.engine_factory, session_factory=self.session_factory) as handle:
                log.migrationDetails["tables"] = self.provisioner.ensure(handle)
                self.inserter.insert(handle, snapshot, fallback_time=log.startedAt, report=report)

            log.recordsMigrated = report.total
            log.migrationDetails["inserted"] = dict(report.per_collection)
            log.status = MigrationStatus.completed
            logger.info("Migration %s completed: %d records", log.id, report.total)
            return log.id
        except MigrationError as exc:
            self._fail(log, exc, report)
            exc.migration_id = log.id
            raise
        except (SQLAlchemyError, requests.RequestException, OSError, FinstoreError) as exc:
            wrapped = MigrationError(f"migration failed: {first_line(exc)}")
            self._fail(log, wrapped, report)
            wrapped.migration_id = log.id
            raise wrapped from exc
        finally:
            if log.status not in (MigrationStatus.completed, MigrationStatus.failed):
                log.status = MigrationStatus.failed
                log.errorMessage = log.errorMessage or "migration aborted"
            log.completedAt = log.completedAt or self.clock()
            self.registry.record_migration(log)

    def _fail(self, log: MigrationLog, exc: MigrationError, report: InsertReport) -> None:
        log.status = MigrationStatus.failed
        log.errorMessage = exc.message
        log.completedAt = self.clock()
        log.recordsMigrated = 0
        if report.per_collection:
            log.migrationDetails["inserted"] = dict(report.per_collection)
        if isinstance(exc, InsertFailed):
            log.migrationDetails["failedCollection"] = exc.entity
        logger.error("Migration %s failed: %s", log.id, exc.message)

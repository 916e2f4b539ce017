"""Full-dataset reads from any source kind into a canonical snapshot."""

from __future__ import annotations

import logging
from typing import Callable, Optional

import requests
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from .dialects import EngineFactory, strategy_for_config
from .errors import ExtractionFailed, FinstoreError
from .normalizer import canonicalize_record
from .persistence import Persistence
from .rest_client import ManagedRestClient
from .schemas import DatabaseConfig, DatabaseProvider
from .snapshot import Snapshot
from .tables import INSERT_ORDER

logger = logging.getLogger(__name__)

CURRENT_DATASET = "memory"


class DataExtractor:
    def __init__(
        self,
        lookup: Callable[[str], DatabaseConfig],
        current: Callable[[], Persistence],
        engine_factory: EngineFactory = create_engine,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        self.lookup = lookup
        self.current = current
        self.engine_factory = engine_factory
        self.session_factory = session_factory

    def extract(self, source_id: Optional[str]) -> Snapshot:
        """Read every collection from ``source_id``.

        ``None`` or ``"memory"`` means the application's current dataset, read
        through the storage proxy. Any failure raises ``ExtractionFailed``;
        a partial read is never returned.
        """
        try:
            if source_id is None or source_id == CURRENT_DATASET:
                snapshot = Snapshot.from_collections(self.current().dump())
                source = "current dataset"
            else:
                config = self.lookup(source_id)
                source = config.name
                if config.provider == DatabaseProvider.managed_rest_service:
                    snapshot = self._from_rest(config)
                else:
                    snapshot = self._from_sql(config)
        except ExtractionFailed:
            raise
        except (SQLAlchemyError, requests.RequestException, OSError, ValueError, FinstoreError) as exc:
            raise ExtractionFailed(f"extraction failed: {exc}") from exc
        logger.info("Extracted %d records from %s", snapshot.total, source)
        return snapshot

    def _from_sql(self, config: DatabaseConfig) -> Snapshot:
        strategy = strategy_for_config(config)
        engine = strategy.create_engine(config, engine_factory=self.engine_factory)
        snapshot = Snapshot()
        try:
            with engine.connect() as conn:
                quote = conn.dialect.identifier_preparer.quote_identifier
                for entity in INSERT_ORDER:
                    result = conn.execute(text(f"SELECT * FROM {quote(entity)}"))
                    for row in result.mappings():
                        record = canonicalize_record(entity, row)
                        snapshot[entity][record["id"]] = record
        finally:
            engine.dispose()
        return snapshot

    def _from_rest(self, config: DatabaseConfig) -> Snapshot:
        client = ManagedRestClient.from_config(config, session=self.session_factory())
        snapshot = Snapshot()
        try:
            for entity in INSERT_ORDER:
                for row in client.select_all(entity):
                    record = canonicalize_record(entity, row)
                    snapshot[entity][record["id"]] = record
        finally:
            client.close()
        return snapshot

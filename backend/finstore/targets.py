"""Write-side handles the provisioner and the ordered inserter work against."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator, Mapping, Union

import requests
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Connection

from .dialects import DialectStrategy, EngineFactory, strategy_for_config
from .normalizer import normalize_record, to_json_record
from .rest_client import ManagedRestClient
from .schemas import DatabaseConfig, DatabaseProvider, Dialect

logger = logging.getLogger(__name__)


class SqlTarget:
    def __init__(self, conn: Connection, strategy: DialectStrategy):
        self.conn = conn
        self.strategy = strategy

    @property
    def dialect(self) -> Dialect:
        return self.strategy.dialect

    @property
    def creates_schema(self) -> bool:
        return self.strategy.creates_schema

    def encode(self, entity: str, record: Mapping[str, Any], fallback_time: datetime) -> dict[str, Any]:
        return normalize_record(entity, record, self.dialect, fallback_time)

    def execute_ddl(self, statements: list[str]) -> None:
        with self.conn.begin():
            for statement in statements:
                self.conn.execute(text(statement))

    def table_names(self) -> list[str]:
        with self.conn.begin():
            return inspect(self.conn).get_table_names()

    def missing_tables(self, tables: list[str]) -> list[str]:
        existing = set(self.table_names())
        return [table for table in tables if table not in existing]

    def write_batch(self, entity: str, rows: list[dict[str, Any]]) -> int:
        with self.conn.begin():
            return self.strategy.write_batch(self.conn, entity, rows)


class RestTarget:
    dialect = Dialect.postgresql
    creates_schema = False

    def __init__(self, client: ManagedRestClient):
        self.client = client

    def encode(self, entity: str, record: Mapping[str, Any], fallback_time: datetime) -> dict[str, Any]:
        return to_json_record(entity, record, fallback_time)

    def missing_tables(self, tables: list[str]) -> list[str]:
        return self.client.missing_tables(tables)

    def write_batch(self, entity: str, rows: list[dict[str, Any]]) -> int:
        return self.client.insert(entity, rows)


MigrationTarget = Union[SqlTarget, RestTarget]


@contextmanager
def open_target(
    config: DatabaseConfig,
    engine_factory: EngineFactory = create_engine,
    session_factory: Callable[[], requests.Session] = requests.Session,
) -> Iterator[MigrationTarget]:
    """Open a write handle for ``config``; it is released on every exit path."""
    if config.provider == DatabaseProvider.managed_rest_service:
        client = ManagedRestClient.from_config(config, session=session_factory())
        try:
            yield RestTarget(client)
        finally:
            client.close()
        return

    strategy = strategy_for_config(config)
    engine = strategy.create_engine(config, engine_factory=engine_factory)
    try:
        with engine.connect() as conn:
            yield SqlTarget(conn, strategy)
    finally:
        engine.dispose()
        logger.debug("released connection to %s", config.name)

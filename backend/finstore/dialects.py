"""Dialect strategies, resolved once per configuration.

Each strategy owns what differs between SQLite, PostgreSQL and MySQL: how a
connection URL is built, driver connect arguments, engine preparation, the
probe query, whether the schema is created or only verified, and how a batch
of rows is written.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine, URL, make_url

from .errors import ValidationError
from .schemas import PROVIDER_INFO, DatabaseConfig, DatabaseProvider, Dialect
from .tables import get_table

EngineFactory = Callable[..., Engine]


class DialectStrategy:
    dialect: Dialect
    driver: str = ""
    schemes: tuple[str, ...] = ()
    probe_sql = "SELECT 1"
    creates_schema = False
    returning_clause = ""

    def build_url(self, config: DatabaseConfig) -> URL:
        if config.connectionString:
            url = make_url(config.connectionString.strip())
            if url.drivername in self.schemes:
                url = url.set(drivername=self.driver)
            return url
        if not (config.host and config.database):
            raise ValidationError("Connection string is required")
        query = {"sslmode": "require"} if config.ssl and self.dialect == Dialect.postgresql else {}
        return URL.create(
            self.driver,
            username=config.username or None,
            password=config.password or None,
            host=config.host,
            port=config.port or PROVIDER_INFO[config.provider].defaultPort,
            database=config.database,
            query=query,
        )

    def connect_args(self, timeout: float | None) -> dict[str, Any]:
        if timeout is None:
            return {}
        return {"connect_timeout": max(1, int(timeout))}

    def create_engine(self, config: DatabaseConfig, timeout: float | None = None, engine_factory: EngineFactory = create_engine) -> Engine:
        engine = engine_factory(
            self.build_url(config),
            future=True,
            pool_pre_ping=True,
            pool_size=config.maxConnections,
            connect_args=self.connect_args(timeout),
        )
        self.prepare_engine(engine)
        return engine

    def prepare_engine(self, engine: Engine) -> None:
        return None

    def write_batch(self, conn: Connection, entity: str, rows: list[dict[str, Any]]) -> int:
        # One multi-row INSERT ... VALUES (...), (...) statement per collection.
        conn.execute(get_table(entity).insert().values(rows))
        self.sync_identity(conn, entity)
        return len(rows)

    def sync_identity(self, conn: Connection, entity: str) -> None:
        return None

    def insert_one(self, conn: Connection, entity: str, row: dict[str, Any]) -> int:
        """Insert one encoded row and return its id."""
        values = {key: value for key, value in row.items() if not (key == "id" and value is None)}
        quote = conn.dialect.identifier_preparer.quote_identifier
        columns = ", ".join(quote(c) for c in values)
        params = ", ".join(f":{c}" for c in values)
        result = conn.execute(text(f"INSERT INTO {quote(entity)} ({columns}) VALUES ({params})" + self.returning_clause), values)
        if values.get("id") is not None:
            self.sync_identity(conn, entity)
            return int(values["id"])
        return self.inserted_id(result)

    def inserted_id(self, result) -> int:
        return int(result.lastrowid)


class PostgresStrategy(DialectStrategy):
    dialect = Dialect.postgresql
    driver = "postgresql+psycopg"
    schemes = ("postgres", "postgresql")
    returning_clause = " RETURNING id"

    def sync_identity(self, conn: Connection, entity: str) -> None:
        # Explicit ids do not advance the serial sequence.
        conn.execute(
            text(
                f"select setval(pg_get_serial_sequence('{entity}', 'id'), "
                f"coalesce((select max(id) from {entity}), 1))"
            )
        )

    def inserted_id(self, result) -> int:
        return int(result.scalar_one())


class MySQLStrategy(DialectStrategy):
    dialect = Dialect.mysql
    driver = "mysql+pymysql"
    schemes = ("mysql",)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class SqliteStrategy(DialectStrategy):
    dialect = Dialect.sqlite
    driver = "sqlite+pysqlite"
    schemes = ("sqlite",)
    creates_schema = True

    @staticmethod
    def database_path(config: DatabaseConfig) -> str:
        raw = (config.connectionString or config.database or "").strip()
        if not raw:
            raise ValidationError("Connection string is required")
        if raw.startswith("sqlite"):
            return make_url(raw).database or ":memory:"
        if raw.startswith("file:"):
            raw = raw[len("file:"):]
        return raw or ":memory:"

    def build_url(self, config: DatabaseConfig) -> URL:
        path = self.database_path(config)
        return URL.create(self.driver, database=None if path == ":memory:" else path)

    def connect_args(self, timeout: float | None) -> dict[str, Any]:
        return {} if timeout is None else {"timeout": timeout}

    def create_engine(self, config: DatabaseConfig, timeout: float | None = None, engine_factory: EngineFactory = create_engine) -> Engine:
        path = self.database_path(config)
        if path != ":memory:":
            Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        engine = engine_factory(self.build_url(config), future=True, connect_args=self.connect_args(timeout))
        self.prepare_engine(engine)
        return engine

    def prepare_engine(self, engine: Engine) -> None:
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    def write_batch(self, conn: Connection, entity: str, rows: list[dict[str, Any]]) -> int:
        # One prepared statement, executed once per row (executemany).
        columns = [c.name for c in get_table(entity).columns]
        column_list = ", ".join(f'"{c}"' for c in columns)
        params = ", ".join(f":{c}" for c in columns)
        conn.execute(text(f'INSERT INTO "{entity}" ({column_list}) VALUES ({params})'), rows)
        return len(rows)


STRATEGIES: dict[Dialect, DialectStrategy] = {
    Dialect.sqlite: SqliteStrategy(),
    Dialect.postgresql: PostgresStrategy(),
    Dialect.mysql: MySQLStrategy(),
}


def strategy_for(dialect: Dialect) -> DialectStrategy:
    return STRATEGIES[dialect]


def strategy_for_config(config: DatabaseConfig) -> DialectStrategy:
    if config.provider == DatabaseProvider.managed_rest_service:
        raise ValidationError("managed REST configurations are not reached through a SQL driver")
    return STRATEGIES[config.dialect]

from __future__ import annotations

from copy import deepcopy
from datetime import datetime
from typing import Any, Optional

import requests
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .dialects import strategy_for_config
from .errors import NotFound, StorageError, ValidationError
from .normalizer import canonicalize_record, normalize_record, to_json_record
from .provisioner import SQLITE_DDL
from .rest_client import ManagedRestClient
from .schemas import DatabaseConfig, DatabaseProvider
from .store import InMemoryStore, store as default_store
from .tables import INSERT_ORDER, get_table, scalar_default

Collections = dict[str, dict[int, dict[str, Any]]]


def _known_columns(entity: str) -> set[str]:
    return {column.name for column in get_table(entity).columns}


def _check_fields(entity: str, data: dict[str, Any]) -> None:
    unknown = sorted(set(data) - _known_columns(entity))
    if unknown:
        raise ValidationError(f"unknown fields for {entity}: {', '.join(unknown)}")


def complete_record(entity: str, data: dict[str, Any], now: datetime) -> dict[str, Any]:
    """Canonical record for a new row: defaults applied, timestamps stamped."""
    _check_fields(entity, data)
    record = dict(data)
    for column in get_table(entity).columns:
        if record.get(column.name) is None:
            record[column.name] = scalar_default(column)
    record["created_at"] = record.get("created_at") or now
    record["updated_at"] = record.get("updated_at") or now
    return canonicalize_record(entity, record)


def _apply_patch(entity: str, current: dict[str, Any], patch: dict[str, Any], now: datetime) -> dict[str, Any]:
    _check_fields(entity, patch)
    changes = {key: value for key, value in patch.items() if key != "id"}
    merged = {**current, **changes, "updated_at": now}
    return canonicalize_record(entity, merged)


class Persistence:
    def list(self, entity: str, user_id: Optional[int] = None) -> list[dict[str, Any]]:
        raise NotImplementedError

    def get(self, entity: str, record_id: int) -> Optional[dict[str, Any]]:
        raise NotImplementedError

    def create(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def update(self, entity: str, record_id: int, patch: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def delete(self, entity: str, record_id: int) -> bool:
        raise NotImplementedError

    def count(self, entity: str) -> int:
        raise NotImplementedError

    def dump(self) -> Collections:
        """Every collection as ``{entity: {id: canonical record}}`` in insert order."""
        raise NotImplementedError

    def close(self) -> None:
        return None

    @property
    def label(self) -> str:
        return self.__class__.__name__


class InMemoryPersistence(Persistence):
    def __init__(self, backing: Optional[InMemoryStore] = None) -> None:
        self.store = backing if backing is not None else default_store

    @property
    def label(self) -> str:
        return "memory"

    def list(self, entity: str, user_id: Optional[int] = None) -> list[dict[str, Any]]:
        rows = self.store.collection(entity).values()
        if user_id is not None:
            rows = [row for row in rows if row.get("user_id") == user_id]
        return [deepcopy(row) for row in sorted(rows, key=lambda row: row["id"])]

    def get(self, entity: str, record_id: int) -> Optional[dict[str, Any]]:
        row = self.store.collection(entity).get(record_id)
        return deepcopy(row) if row is not None else None

    def create(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        record = complete_record(entity, data, self.store.now())
        collection = self.store.collection(entity)
        if record["id"] is None:
            record["id"] = self.store.make_id(entity)
        elif record["id"] in collection:
            raise ValidationError(f"{entity} {record['id']} already exists")
        collection[record["id"]] = record
        return deepcopy(record)

    def update(self, entity: str, record_id: int, patch: dict[str, Any]) -> dict[str, Any]:
        collection = self.store.collection(entity)
        if record_id not in collection:
            raise NotFound(f"{entity} {record_id} not found")
        collection[record_id] = _apply_patch(entity, collection[record_id], patch, self.store.now())
        return deepcopy(collection[record_id])

    def delete(self, entity: str, record_id: int) -> bool:
        return self.store.collection(entity).pop(record_id, None) is not None

    def count(self, entity: str) -> int:
        return len(self.store.collection(entity))

    def dump(self) -> Collections:
        return {
            entity: {row["id"]: row for row in self.list(entity)}
            for entity in INSERT_ORDER
        }


class SqlPersistence(Persistence):
    def __init__(self, config: DatabaseConfig, engine: Optional[Engine] = None) -> None:
        self.config = config
        self.strategy = strategy_for_config(config)
        self.engine: Engine = engine or self.strategy.create_engine(config)
        self._quote = self.engine.dialect.identifier_preparer.quote_identifier
        if self.strategy.creates_schema:
            self.ensure_schema()

    @property
    def label(self) -> str:
        return self.config.provider.value

    def ensure_schema(self) -> None:
        for statement in SQLITE_DDL:
            self._run(statement)

    def _run(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(text(sql), params or {})
                if result.returns_rows:
                    return [dict(row._mapping) for row in result.fetchall()]
                return []
        except SQLAlchemyError as exc:
            raise StorageError(f"{self.strategy.dialect.value} error: {exc.__class__.__name__}") from exc

    def _select(self, entity: str, where: str = "", params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        get_table(entity)
        rows = self._run(f"select * from {self._quote(entity)} {where} order by id", params)
        return [canonicalize_record(entity, row) for row in rows]

    def list(self, entity: str, user_id: Optional[int] = None) -> list[dict[str, Any]]:
        if user_id is not None and "user_id" in _known_columns(entity):
            return self._select(entity, "where user_id = :user_id", {"user_id": user_id})
        return self._select(entity)

    def get(self, entity: str, record_id: int) -> Optional[dict[str, Any]]:
        rows = self._select(entity, "where id = :id", {"id": record_id})
        return rows[0] if rows else None

    def create(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        now = InMemoryStore.now()
        row = normalize_record(entity, complete_record(entity, data, now), self.strategy.dialect, now)
        try:
            with self.engine.begin() as conn:
                new_id = self.strategy.insert_one(conn, entity, row)
        except SQLAlchemyError as exc:
            raise StorageError(f"insert into {entity} failed: {exc.__class__.__name__}") from exc
        return self.get(entity, new_id)

    def update(self, entity: str, record_id: int, patch: dict[str, Any]) -> dict[str, Any]:
        current = self.get(entity, record_id)
        if current is None:
            raise NotFound(f"{entity} {record_id} not found")
        now = InMemoryStore.now()
        merged = _apply_patch(entity, current, patch, now)
        row = normalize_record(entity, merged, self.strategy.dialect, now)
        assignments = ", ".join(f"{self._quote(c)} = :{c}" for c in row if c != "id")
        self._run(f"update {self._quote(entity)} set {assignments} where id = :id", row)
        return self.get(entity, record_id)

    def delete(self, entity: str, record_id: int) -> bool:
        if self.get(entity, record_id) is None:
            return False
        self._run(f"delete from {self._quote(entity)} where id = :id", {"id": record_id})
        return True

    def count(self, entity: str) -> int:
        get_table(entity)
        rows = self._run(f"select count(*) as total from {self._quote(entity)}")
        return int(rows[0]["total"])

    def dump(self) -> Collections:
        return {entity: {row["id"]: row for row in self._select(entity)} for entity in INSERT_ORDER}

    def close(self) -> None:
        self.engine.dispose()


class RestPersistence(Persistence):
    def __init__(self, config: DatabaseConfig, client: Optional[ManagedRestClient] = None) -> None:
        self.config = config
        self.client = client or ManagedRestClient.from_config(config)

    @property
    def label(self) -> str:
        return self.config.provider.value

    def _call(self, fn, *args):
        try:
            return fn(*args)
        except requests.RequestException as exc:
            raise StorageError(f"managed service error: {exc.__class__.__name__}") from exc

    def list(self, entity: str, user_id: Optional[int] = None) -> list[dict[str, Any]]:
        filters = {"user_id": user_id} if user_id is not None and "user_id" in _known_columns(entity) else None
        rows = self._call(self.client.select_all, get_table(entity).name, filters)
        return [canonicalize_record(entity, row) for row in rows]

    def get(self, entity: str, record_id: int) -> Optional[dict[str, Any]]:
        row = self._call(self.client.select_one, get_table(entity).name, record_id)
        return canonicalize_record(entity, row) if row else None

    def create(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        now = InMemoryStore.now()
        payload = to_json_record(entity, complete_record(entity, data, now), now)
        if payload.get("id") is None:
            payload.pop("id", None)
        row = self._call(self.client.insert_one, entity, payload)
        return canonicalize_record(entity, row)

    def update(self, entity: str, record_id: int, patch: dict[str, Any]) -> dict[str, Any]:
        current = self.get(entity, record_id)
        if current is None:
            raise NotFound(f"{entity} {record_id} not found")
        now = InMemoryStore.now()
        payload = to_json_record(entity, _apply_patch(entity, current, patch, now), now)
        payload.pop("id", None)
        row = self._call(self.client.update, entity, record_id, payload)
        return canonicalize_record(entity, row) if row else self.get(entity, record_id)

    def delete(self, entity: str, record_id: int) -> bool:
        return bool(self._call(self.client.delete, get_table(entity).name, record_id))

    def count(self, entity: str) -> int:
        return self._call(self.client.count, get_table(entity).name)

    def dump(self) -> Collections:
        return {
            entity: {row["id"]: row for row in self.list(entity)}
            for entity in INSERT_ORDER
        }

    def close(self) -> None:
        self.client.close()


def persistence_for_config(config: DatabaseConfig) -> Persistence:
    if config.provider == DatabaseProvider.managed_rest_service:
        return RestPersistence(config)
    return SqlPersistence(config)

"""Per-dialect record encoding.

Canonical records carry tz-aware UTC ``datetime`` values for timestamps,
``date`` for calendar days and ``bool`` for flags. ``normalize_record`` turns
one into the values a target dialect accepts; ``canonicalize_record`` is the
inverse used when reading rows back. Neither touches the clock: absent
non-null timestamps take the ``fallback_time`` the caller passes in.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Mapping

from fastapi.encoders import jsonable_encoder

from .schemas import Dialect
from .tables import get_table, is_boolean, is_date, is_numeric, is_timestamp, scalar_default


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text), tz=timezone.utc)
        return _as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    raise ValueError(f"cannot interpret {value!r} as a timestamp")


def parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _as_utc(value).date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and len(value.strip()) == 10:
        return date.fromisoformat(value.strip())
    moment = parse_timestamp(value)
    return moment.date() if moment else None


def parse_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "t", "yes", "y"}
    return bool(value)


def to_epoch(value: Any) -> int | None:
    moment = parse_timestamp(value)
    return int(moment.timestamp()) if moment else None


def _encode(column, value: Any, dialect: Dialect) -> Any:
    if value is None:
        return None
    if is_timestamp(column):
        if dialect == Dialect.sqlite:
            return to_epoch(value)
        moment = parse_timestamp(value)
        if dialect == Dialect.mysql:
            # MySQL DATETIME has no zone; values are stored as UTC wall time.
            return moment.replace(tzinfo=None)
        return moment
    if is_date(column):
        if dialect == Dialect.sqlite:
            return to_epoch(parse_date(value))
        return parse_date(value)
    if is_boolean(column):
        flag = parse_bool(value)
        if dialect == Dialect.sqlite:
            return 1 if flag else 0
        return flag
    if is_numeric(column) and dialect == Dialect.sqlite and isinstance(value, Decimal):
        return float(value)
    return value


def normalize_record(entity: str, record: Mapping[str, Any], dialect: Dialect, fallback_time: datetime) -> dict[str, Any]:
    """Encode one canonical record for ``dialect``.

    The result has exactly one key per table column, in column order, so a
    fixed-arity insert statement can be reused for every row.
    """
    table = get_table(entity)
    out: dict[str, Any] = {}
    for column in table.columns:
        value = record.get(column.name)
        if value is None:
            value = scalar_default(column)
        if value is None and is_timestamp(column) and not column.nullable:
            value = fallback_time
        out[column.name] = _encode(column, value, dialect)
    return out


def canonicalize_record(entity: str, row: Mapping[str, Any]) -> dict[str, Any]:
    table = get_table(entity)
    out: dict[str, Any] = {}
    for column in table.columns:
        value = row.get(column.name)
        if value is None:
            out[column.name] = None
        elif is_timestamp(column):
            out[column.name] = parse_timestamp(value)
        elif is_date(column):
            out[column.name] = parse_date(value)
        elif is_boolean(column):
            out[column.name] = parse_bool(value)
        else:
            out[column.name] = value
    return out


def to_json_record(entity: str, record: Mapping[str, Any], fallback_time: datetime) -> dict[str, Any]:
    """Encode a canonical record for a JSON transport (ISO-8601 strings)."""
    return jsonable_encoder(normalize_record(entity, record, Dialect.postgresql, fallback_time))

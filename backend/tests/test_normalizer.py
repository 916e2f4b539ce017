from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from finstore.normalizer import canonicalize_record, normalize_record, parse_timestamp, to_json_record
from finstore.schemas import Dialect
from finstore.tables import get_table

FALLBACK = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
JAN_2 = datetime(2024, 1, 2, tzinfo=timezone.utc)


def user_record(**overrides) -> dict:
    record = {
        "id": 1,
        "username": "ada",
        "email": "ada@example.com",
        "password_hash": "hash",
        "is_active": True,
        "is_email_verified": False,
        "created_at": JAN_2,
        "updated_at": JAN_2,
    }
    record.update(overrides)
    return record


def test_sqlite_encodes_timestamps_as_epoch_and_flags_as_ints() -> None:
    row = normalize_record("users", user_record(), Dialect.sqlite, FALLBACK)
    assert row["created_at"] == 1704153600
    assert row["is_active"] == 1
    assert row["is_email_verified"] == 0


def test_server_dialects_keep_native_values() -> None:
    row = normalize_record("users", user_record(created_at="2024-01-02T00:00:00Z"), Dialect.postgresql, FALLBACK)
    assert row["created_at"] == JAN_2
    assert row["is_active"] is True

    mysql_row = normalize_record("users", user_record(), Dialect.mysql, FALLBACK)
    assert mysql_row["created_at"] == datetime(2024, 1, 2)
    assert mysql_row["created_at"].tzinfo is None


def test_every_column_present_with_defaults_and_explicit_nulls() -> None:
    row = normalize_record("users", {"username": "ada", "email": "a@b.c", "password_hash": "h"}, Dialect.sqlite, FALLBACK)
    assert list(row) == [column.name for column in get_table("users").columns]
    assert row["role"] == "user"
    assert row["is_active"] == 1
    assert row["first_name"] is None
    assert row["last_login_at"] is None
    assert row["created_at"] == int(FALLBACK.timestamp())


def test_calendar_dates_and_amounts_for_sqlite() -> None:
    record = {
        "id": 3,
        "user_id": 1,
        "account_id": 1,
        "amount": Decimal("19.99"),
        "description": "groceries",
        "date": date(2024, 1, 2),
        "type": "expense",
    }
    row = normalize_record("transactions", record, Dialect.sqlite, FALLBACK)
    assert row["date"] == 1704153600
    assert row["amount"] == pytest.approx(19.99)
    assert row["category_id"] is None


def test_normalize_is_deterministic() -> None:
    record = user_record(last_login_at="2024-02-01T10:00:00+02:00")
    first = normalize_record("users", record, Dialect.sqlite, FALLBACK)
    second = normalize_record("users", record, Dialect.sqlite, FALLBACK)
    assert first == second
    assert first["last_login_at"] == int(datetime(2024, 2, 1, 8, 0, tzinfo=timezone.utc).timestamp())


def test_canonicalize_reverses_sqlite_encoding() -> None:
    encoded = normalize_record("users", user_record(), Dialect.sqlite, FALLBACK)
    canonical = canonicalize_record("users", encoded)
    assert canonical["created_at"] == JAN_2
    assert canonical["is_active"] is True
    assert canonical["is_email_verified"] is False


def test_json_encoding_uses_iso_strings() -> None:
    payload = to_json_record("goals", {"id": 1, "user_id": 1, "name": "Trip", "target_amount": 500, "target_date": date(2024, 6, 1)}, FALLBACK)
    assert payload["target_date"] == "2024-06-01"
    assert payload["created_at"].startswith("2024-03-01T12:00:00")
    assert payload["is_completed"] is False


def test_parse_timestamp_accepts_epoch_and_naive_values() -> None:
    assert parse_timestamp(1704153600) == JAN_2
    assert parse_timestamp("1704153600") == JAN_2
    assert parse_timestamp(datetime(2024, 1, 2)) == JAN_2
    assert parse_timestamp(None) is None

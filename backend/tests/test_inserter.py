from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, text

from finstore.errors import InsertFailed
from finstore.inserter import InsertReport, OrderedInserter, parents_first
from finstore.provisioner import SchemaProvisioner
from finstore.snapshot import Snapshot
from finstore.targets import RestTarget, open_target

from conftest import make_config

FALLBACK = datetime(2024, 3, 1, tzinfo=timezone.utc)


def linked_snapshot(account_id: int = 1) -> Snapshot:
    return Snapshot.from_collections(
        {
            "users": {1: {"id": 1, "username": "ada", "email": "ada@example.com", "password_hash": "h"}},
            # child listed before its parent
            "categories": {
                2: {"id": 2, "user_id": 1, "name": "Groceries", "parent_id": 3},
                3: {"id": 3, "user_id": 1, "name": "Food"},
            },
            "accounts": {1: {"id": 1, "user_id": 1, "name": "Main", "type": "checking"}},
            "transactions": {
                7: {
                    "id": 7,
                    "user_id": 1,
                    "account_id": account_id,
                    "category_id": 2,
                    "amount": 42.5,
                    "description": "market",
                    "date": date(2024, 2, 3),
                    "type": "expense",
                }
            },
        }
    )


def count_rows(path, table: str) -> int:
    engine = create_engine(f"sqlite:///{path}")
    try:
        with engine.connect() as conn:
            return conn.execute(text(f"select count(*) from {table}")).scalar_one()
    finally:
        engine.dispose()


def test_parents_first_orders_self_references() -> None:
    rows = [{"id": 1, "parent_id": 2}, {"id": 2, "parent_id": 3}, {"id": 3, "parent_id": None}, {"id": 4, "parent_id": 99}]
    assert [row["id"] for row in parents_first(rows)] == [3, 2, 1, 4]


def test_inserts_respect_foreign_keys(tmp_path) -> None:
    path = tmp_path / "fk.db"
    config = make_config(connectionString=f"file:{path}")

    with open_target(config) as target:
        SchemaProvisioner().ensure(target)
        report = OrderedInserter().insert(target, linked_snapshot(), FALLBACK)

    assert report.total == 5
    assert report.per_collection == {"users": 1, "categories": 2, "accounts": 1, "transactions": 1}
    assert count_rows(path, "transactions") == 1


def test_failure_names_collection_and_keeps_earlier_commits(tmp_path) -> None:
    path = tmp_path / "broken.db"
    config = make_config(connectionString=f"file:{path}")
    report = InsertReport()

    with open_target(config) as target:
        SchemaProvisioner().ensure(target)
        with pytest.raises(InsertFailed) as excinfo:
            OrderedInserter().insert(target, linked_snapshot(account_id=99), FALLBACK, report=report)

    assert excinfo.value.entity == "transactions"
    assert excinfo.value.message.startswith("insert into transactions failed")
    assert report.per_collection == {"users": 1, "categories": 2, "accounts": 1}
    assert count_rows(path, "users") == 1
    assert count_rows(path, "transactions") == 0


def test_empty_collections_are_skipped() -> None:
    client = MagicMock()
    client.insert.side_effect = lambda table, rows: len(rows)
    snapshot = Snapshot.from_collections({"products": {5: {"id": 5, "name": "Milk"}}})

    report = OrderedInserter().insert(RestTarget(client), snapshot, FALLBACK)

    assert report.total == 1
    client.insert.assert_called_once()
    table, rows = client.insert.call_args.args
    assert table == "products"
    assert rows[0]["currency"] == "USD"
    assert rows[0]["created_at"].startswith("2024-03-01T00:00:00")

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from finstore.errors import FailureKind
from finstore.manager import DatabaseManager
from finstore.persistence import InMemoryPersistence
from finstore.probe import ConnectionProbe
from finstore.schemas import ConnectionTestResult, DatabaseConfig, DatabaseConfigCreate, DatabaseProvider
from finstore.selector import ActiveBackendHandle, BackendSelector
from finstore.store import InMemoryStore

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_config(provider: DatabaseProvider = DatabaseProvider.local_file, **fields) -> DatabaseConfig:
    fields.setdefault("name", f"{provider.value} db")
    config_id = fields.pop("id", "cfg-1")
    return DatabaseConfig(id=config_id, provider=provider, createdAt=NOW, updatedAt=NOW, **fields)


class FakeProbe:
    """Probe double: a config fails when its connection string or host is in ``failing``."""

    def __init__(self) -> None:
        self.failing: set[str] = set()
        self.calls: list[str] = []
        self.while_testing = None

    def test(self, config: DatabaseConfig) -> ConnectionTestResult:
        key = config.connectionString or config.host or ""
        self.calls.append(key)
        if self.while_testing is not None:
            self.while_testing()
        if key in self.failing:
            return ConnectionTestResult(success=False, error="server closed the connection", failureKind=FailureKind.generic)
        return ConnectionTestResult(success=True, latencyMs=1.0)


@pytest.fixture
def fake_probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def sqlite_payload(tmp_path):
    def build(name: str = "local") -> DatabaseConfigCreate:
        return DatabaseConfigCreate(
            name=name,
            provider=DatabaseProvider.local_file,
            connectionString=f"file:{tmp_path / (name + '.db')}",
        )

    return build


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def manager(memory_store) -> DatabaseManager:
    handle = ActiveBackendHandle()
    storage = BackendSelector(
        handle,
        force_memory=False,
        excluded_provider="managed-rest-service",
        memory_factory=lambda: InMemoryPersistence(memory_store),
    )
    probe = ConnectionProbe(timeout=2, sleep=lambda seconds: None)
    built = DatabaseManager(probe=probe, handle=handle, storage=storage)
    yield built
    built.close()


def seed_finance_data(storage, users: int = 2, accounts: int = 3, transactions: int = 4) -> list[Decimal]:
    """Create a small linked dataset through the storage contract; returns transaction amounts."""
    for n in range(1, users + 1):
        storage.create(
            "users",
            {"id": n, "username": f"user{n}", "email": f"user{n}@example.com", "password_hash": "x"},
        )
    storage.create("categories", {"id": 1, "user_id": 1, "name": "Food"})
    for n in range(1, accounts + 1):
        storage.create(
            "accounts",
            {"id": n, "user_id": 1 + (n % users), "name": f"Account {n}", "type": "checking", "balance": Decimal("100.00")},
        )
    amounts = [Decimal("12.50") * n for n in range(1, transactions + 1)]
    for n, amount in enumerate(amounts, start=1):
        storage.create(
            "transactions",
            {
                "id": n,
                "user_id": 1,
                "account_id": 1 + (n % accounts),
                "category_id": 1 if n % 2 else None,
                "amount": amount,
                "description": f"purchase {n}",
                "date": date(2024, 2, n),
                "type": "expense",
            },
        )
    return amounts

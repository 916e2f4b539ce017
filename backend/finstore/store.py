from datetime import datetime, timezone
from itertools import count
from threading import Lock

from .tables import INSERT_ORDER


class InMemoryStore:
    def __init__(self) -> None:
        self.users: dict[int, dict] = {}
        self.categories: dict[int, dict] = {}
        self.accounts: dict[int, dict] = {}
        self.transactions: dict[int, dict] = {}
        self.budgets: dict[int, dict] = {}
        self.goals: dict[int, dict] = {}
        self.bills: dict[int, dict] = {}
        self.products: dict[int, dict] = {}
        self._ids = {entity: count(1) for entity in INSERT_ORDER}
        self._lock = Lock()

    def collection(self, entity: str) -> dict[int, dict]:
        if entity not in INSERT_ORDER:
            raise ValueError(f"unknown entity collection: {entity}")
        return getattr(self, entity)

    def make_id(self, entity: str) -> int:
        with self._lock:
            collection = self.collection(entity)
            while True:
                candidate = next(self._ids[entity])
                if candidate not in collection:
                    return candidate

    @staticmethod
    def now() -> datetime:
        return datetime.now(timezone.utc)


store = InMemoryStore()

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterator, Mapping

from .tables import INSERT_ORDER


@dataclass
class Snapshot:
    """Backend-agnostic copy of a whole dataset, keyed by source-side id.

    Lives for one migration call only.
    """

    collections: dict[str, dict[Any, dict[str, Any]]] = field(
        default_factory=lambda: {entity: {} for entity in INSERT_ORDER}
    )

    @classmethod
    def from_collections(cls, data: Mapping[str, Mapping[Any, Mapping[str, Any]]]) -> "Snapshot":
        snapshot = cls()
        for entity, rows in data.items():
            if entity not in snapshot.collections:
                raise ValueError(f"unknown entity collection: {entity}")
            snapshot.collections[entity] = {key: dict(row) for key, row in rows.items()}
        return snapshot

    def __getitem__(self, entity: str) -> dict[Any, dict[str, Any]]:
        return self.collections[entity]

    def records(self, entity: str) -> list[dict[str, Any]]:
        return list(self.collections[entity].values())

    def items(self) -> Iterator[tuple[str, dict[Any, dict[str, Any]]]]:
        for entity in INSERT_ORDER:
            yield entity, self.collections[entity]

    def counts(self) -> dict[str, int]:
        return {entity: len(rows) for entity, rows in self.items()}

    @property
    def total(self) -> int:
        return sum(self.counts().values())

    def sum_of(self, entity: str, column: str) -> Decimal:
        total = Decimal("0")
        for row in self.collections[entity].values():
            if row.get(column) is not None:
                total += Decimal(str(row[column]))
        return total

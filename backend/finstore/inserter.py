from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import requests
from sqlalchemy.exc import SQLAlchemyError

from .errors import InsertFailed, first_line
from .snapshot import Snapshot
from .tables import INSERT_ORDER
from .targets import MigrationTarget

logger = logging.getLogger(__name__)


@dataclass
class InsertReport:
    total: int = 0
    per_collection: dict[str, int] = field(default_factory=dict)


def parents_first(records: list[dict[str, Any]], parent_key: str = "parent_id") -> list[dict[str, Any]]:
    """Order self-referencing rows so every parent precedes its children.

    Rows whose parent is not in the batch are treated as roots.
    """
    by_id = {record["id"]: record for record in records}
    ordered: list[dict[str, Any]] = []
    placed: set[Any] = set()

    def place(record: dict[str, Any], trail: set[Any]) -> None:
        if record["id"] in placed:
            return
        parent = record.get(parent_key)
        if parent in by_id and parent not in placed and parent not in trail:
            place(by_id[parent], trail | {record["id"]})
        placed.add(record["id"])
        ordered.append(record)

    for record in records:
        place(record, set())
    return ordered


class OrderedInserter:
    def insert(
        self,
        target: MigrationTarget,
        snapshot: Snapshot,
        fallback_time: datetime,
        report: InsertReport | None = None,
    ) -> InsertReport:
        """Write every non-empty collection in foreign-key order.

        Each collection commits on its own; the first failure raises
        ``InsertFailed`` and later collections are not attempted. Pass
        ``report`` to keep the counts of collections written before a failure.
        """
        report = report if report is not None else InsertReport()
        for entity in INSERT_ORDER:
            records = snapshot.records(entity)
            if not records:
                continue
            if entity == "categories":
                records = parents_first(records)
            try:
                rows = [target.encode(entity, record, fallback_time) for record in records]
                written = target.write_batch(entity, rows)
            except (SQLAlchemyError, requests.RequestException, ValueError) as exc:
                raise InsertFailed(entity, first_line(exc)) from exc
            report.per_collection[entity] = written
            report.total += written
            logger.info("Inserted %d %s", written, entity)
        return report

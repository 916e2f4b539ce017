"""Client for the managed Postgres provider's REST gateway.

The provider exposes each table as ``/rest/v1/<table>`` with PostgREST query
syntax (``?id=eq.5``, ``select=*``). Only the handful of calls the storage
backend, the probe and the migration engine need are implemented here.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import ValidationError
from .schemas import DatabaseConfig

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000


class ManagedRestClient:
    def __init__(
        self,
        service_url: str,
        api_key: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        self.base_url = service_url.rstrip("/") + "/rest/v1"
        self.timeout = timeout
        self._session = session or self._create_session()
        self._session.headers.update(
            {
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    @classmethod
    def from_config(cls, config: DatabaseConfig, session: Optional[requests.Session] = None, timeout: float = 10.0) -> "ManagedRestClient":
        api_key = config.serviceKey or config.anonKey
        if not config.serviceUrl or not api_key:
            raise ValidationError("Service URL and API key are required")
        return cls(config.serviceUrl, api_key, session=session, timeout=timeout)

    @staticmethod
    def _create_session() -> requests.Session:
        session = requests.Session()
        retries = Retry(total=3, backoff_factor=0.5, status_forcelist=[429, 502, 503, 504])
        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    def _url(self, table: str = "") -> str:
        return f"{self.base_url}/{table}" if table else f"{self.base_url}/"

    def ping(self) -> None:
        response = self._session.get(self._url(), timeout=self.timeout)
        response.raise_for_status()

    def select_all(self, table: str, filters: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        offset = 0
        while True:
            params: dict[str, Any] = {"select": "*", "order": "id.asc", "limit": PAGE_SIZE, "offset": offset}
            for key, value in (filters or {}).items():
                params[key] = f"eq.{value}"
            response = self._session.get(self._url(table), params=params, timeout=self.timeout)
            response.raise_for_status()
            page = response.json()
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                return rows
            offset += PAGE_SIZE

    def select_one(self, table: str, row_id: Any) -> Optional[dict[str, Any]]:
        response = self._session.get(
            self._url(table), params={"select": "*", "id": f"eq.{row_id}", "limit": 1}, timeout=self.timeout
        )
        response.raise_for_status()
        rows = response.json()
        return rows[0] if rows else None

    def insert(self, table: str, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        response = self._session.post(
            self._url(table), json=rows, headers={"Prefer": "return=minimal"}, timeout=self.timeout
        )
        response.raise_for_status()
        return len(rows)

    def insert_one(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        response = self._session.post(
            self._url(table), json=row, headers={"Prefer": "return=representation"}, timeout=self.timeout
        )
        response.raise_for_status()
        return response.json()[0]

    def update(self, table: str, row_id: Any, patch: dict[str, Any]) -> Optional[dict[str, Any]]:
        response = self._session.patch(
            self._url(table),
            params={"id": f"eq.{row_id}"},
            json=patch,
            headers={"Prefer": "return=representation"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        rows = response.json()
        return rows[0] if rows else None

    def delete(self, table: str, row_id: Any) -> bool:
        response = self._session.delete(
            self._url(table),
            params={"id": f"eq.{row_id}"},
            headers={"Prefer": "return=representation"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return bool(response.json())

    def count(self, table: str) -> int:
        response = self._session.head(
            self._url(table), params={"select": "id"}, headers={"Prefer": "count=exact"}, timeout=self.timeout
        )
        response.raise_for_status()
        content_range = response.headers.get("Content-Range", "*/0")
        return int(content_range.rsplit("/", 1)[-1] or 0)

    def missing_tables(self, tables: list[str]) -> list[str]:
        missing: list[str] = []
        for table in tables:
            response = self._session.get(self._url(table), params={"select": "id", "limit": 1}, timeout=self.timeout)
            if response.status_code == 404 or "does not exist" in response.text:
                missing.append(table)
                continue
            response.raise_for_status()
        return missing

    def close(self) -> None:
        self._session.close()

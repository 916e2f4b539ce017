"""Liveness probing for configured backends."""

from __future__ import annotations

import logging
import time
from typing import Callable

import requests
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .dialects import EngineFactory, strategy_for_config
from .errors import FailureKind, ValidationError, first_line
from .rest_client import ManagedRestClient
from .schemas import ConnectionTestResult, DatabaseConfig, DatabaseProvider, SchemaValidationResult
from .tables import INSERT_ORDER

logger = logging.getLogger(__name__)

_AUTH_MARKERS = (
    "password authentication failed",
    "authentication failed",
    "access denied",
    "invalid api key",
    "invalid jwt",
    "401",
    "403",
)
_TIMEOUT_MARKERS = ("timeout", "timed out")
_HOST_MARKERS = (
    "could not translate host name",
    "name or service not known",
    "nodename nor servname",
    "enotfound",
    "unknown mysql server host",
    "temporary failure in name resolution",
    "connection refused",
    "no route to host",
    "can't connect",
    "unable to open database file",
)


def classify_failure(message: str) -> FailureKind:
    lowered = message.lower()
    if any(marker in lowered for marker in _TIMEOUT_MARKERS):
        return FailureKind.timeout
    if any(marker in lowered for marker in _HOST_MARKERS):
        return FailureKind.host_unreachable
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return FailureKind.auth
    return FailureKind.generic


def describe_failure(kind: FailureKind, message: str) -> str:
    if kind == FailureKind.auth:
        return "Authentication failed. Please check your credentials."
    if kind == FailureKind.timeout:
        return "Connection timeout. Please check your host and port."
    if kind == FailureKind.host_unreachable:
        return f"Host unreachable. Please check your host address. ({message})"
    return message


class ConnectionProbe:
    def __init__(
        self,
        engine_factory: EngineFactory = create_engine,
        session_factory: Callable[[], requests.Session] = requests.Session,
        timeout: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.engine_factory = engine_factory
        self.session_factory = session_factory
        self.timeout = settings.probe_timeout_seconds if timeout is None else timeout
        self.sleep = sleep

    @staticmethod
    def validate(config: DatabaseConfig) -> None:
        if config.provider == DatabaseProvider.managed_rest_service:
            if not config.serviceUrl or not (config.serviceKey or config.anonKey):
                raise ValidationError("Service URL and API key are required")
            return
        if config.connectionString and config.connectionString.strip():
            return
        if config.provider == DatabaseProvider.local_file and config.database:
            return
        if config.host and config.database:
            return
        raise ValidationError("Connection string is required")

    def test(self, config: DatabaseConfig) -> ConnectionTestResult:
        try:
            self.validate(config)
        except ValidationError as exc:
            return ConnectionTestResult(success=False, error=exc.message)

        started = time.perf_counter()
        try:
            if config.provider == DatabaseProvider.managed_rest_service:
                self._ping_rest(config)
            else:
                self._ping_sql(config)
        except (SQLAlchemyError, requests.RequestException, OSError, ValueError) as exc:
            message = first_line(exc)
            kind = classify_failure(message)
            logger.debug("probe of %s failed (%s): %s", config.name, kind.value, message)
            return ConnectionTestResult(success=False, error=describe_failure(kind, message), failureKind=kind)
        latency_ms = round((time.perf_counter() - started) * 1000, 2)
        return ConnectionTestResult(success=True, latencyMs=latency_ms)

    def _ping_sql(self, config: DatabaseConfig) -> None:
        strategy = strategy_for_config(config)
        engine = strategy.create_engine(config, timeout=self.timeout, engine_factory=self.engine_factory)
        try:
            with engine.connect() as conn:
                conn.execute(text(strategy.probe_sql))
        finally:
            engine.dispose()

    def _ping_rest(self, config: DatabaseConfig) -> None:
        client = ManagedRestClient.from_config(config, session=self.session_factory(), timeout=self.timeout)
        try:
            client.ping()
        finally:
            client.close()

    def test_with_retry(self, config: DatabaseConfig, max_attempts: int = 3) -> ConnectionTestResult:
        last_error = "Unknown error"
        for attempt in range(1, max_attempts + 1):
            logger.info("Testing database connection (attempt %d/%d)...", attempt, max_attempts)
            result = self.test(config)
            if result.success:
                return result
            last_error = result.error or last_error
            if result.error and result.failureKind is None:
                # missing connection fields: nothing to retry
                return result
            if attempt < max_attempts:
                delay = min(settings.retry_base_delay_seconds * 2 ** (attempt - 1), settings.retry_max_delay_seconds)
                logger.info("Connection failed on attempt %d: %s; retrying in %.1fs", attempt, last_error, delay)
                self.sleep(delay)
        return ConnectionTestResult(
            success=False,
            error=f"Connection failed after {max_attempts} attempts. Last error: {last_error}",
            failureKind=classify_failure(last_error),
        )

    def validate_schema(self, config: DatabaseConfig) -> SchemaValidationResult:
        required = list(INSERT_ORDER)
        try:
            self.validate(config)
            if config.provider == DatabaseProvider.managed_rest_service:
                client = ManagedRestClient.from_config(config, session=self.session_factory(), timeout=self.timeout)
                try:
                    missing = client.missing_tables(required)
                finally:
                    client.close()
            else:
                engine = strategy_for_config(config).create_engine(config, timeout=self.timeout, engine_factory=self.engine_factory)
                try:
                    with engine.connect() as conn:
                        existing = set(inspect(conn).get_table_names())
                finally:
                    engine.dispose()
                missing = [table for table in required if table not in existing]
        except ValidationError as exc:
            return SchemaValidationResult(hasSchema=False, missingTables=required, error=exc.message)
        except (SQLAlchemyError, requests.RequestException, OSError, ValueError) as exc:
            return SchemaValidationResult(hasSchema=False, missingTables=required, error=first_line(exc))
        return SchemaValidationResult(hasSchema=not missing, missingTables=missing)

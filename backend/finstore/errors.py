"""Error taxonomy for configuration, probing and migration failures."""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    auth = "auth"
    host_unreachable = "host_unreachable"
    timeout = "timeout"
    generic = "generic"


class FinstoreError(Exception):
    code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(FinstoreError, ValueError):
    code = "VALIDATION_ERROR"


class NotFound(FinstoreError, LookupError):
    code = "NOT_FOUND"


class ActiveConfigInUse(FinstoreError):
    code = "ACTIVE_CONFIG_IN_USE"


class CannotActivate(FinstoreError):
    code = "CANNOT_ACTIVATE"


class ConnectionFailed(FinstoreError):
    code = "CONNECTION_FAILED"

    def __init__(self, message: str, kind: FailureKind = FailureKind.generic) -> None:
        super().__init__(message)
        self.kind = kind


class MigrationError(FinstoreError):
    """Base for failures raised while a migration log is open.

    The orchestrator stamps ``migration_id`` before re-raising so callers can
    look the failed run up in the registry.
    """

    code = "MIGRATION_FAILED"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.migration_id: str | None = None


class ExtractionFailed(MigrationError):
    code = "EXTRACTION_FAILED"


class SchemaProvisioningFailed(MigrationError):
    code = "SCHEMA_PROVISIONING_FAILED"

    def __init__(self, message: str, missing_tables: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing_tables = missing_tables or []


class InsertFailed(MigrationError):
    code = "INSERT_FAILED"

    def __init__(self, entity: str, message: str) -> None:
        super().__init__(f"insert into {entity} failed: {message}")
        self.entity = entity


class MigrationInProgress(FinstoreError):
    code = "MIGRATION_IN_PROGRESS"


class StorageError(FinstoreError):
    code = "STORAGE_ERROR"


def first_line(exc: BaseException) -> str:
    """First line of the driver-level message behind ``exc``."""
    original = getattr(exc, "orig", None) or exc
    message = str(original).strip()
    return message.splitlines()[0] if message else exc.__class__.__name__

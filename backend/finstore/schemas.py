from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from .errors import FailureKind


class Dialect(str, Enum):
    sqlite = "sqlite"
    postgresql = "postgresql"
    mysql = "mysql"


class DatabaseProvider(str, Enum):
    local_file = "local-file"
    generic_postgres = "generic-postgres"
    generic_mysql = "generic-mysql"
    managed_postgres_service = "managed-postgres-service"
    managed_mysql_service = "managed-mysql-service"
    managed_rest_service = "managed-rest-service"


class MigrationStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"


class ProviderInfo(BaseModel):
    provider: DatabaseProvider
    name: str
    description: str
    dialect: Dialect
    defaultPort: Optional[int]
    supportsSsl: bool
    connectionStringFormat: str


PROVIDER_INFO: dict[DatabaseProvider, ProviderInfo] = {
    DatabaseProvider.local_file: ProviderInfo(
        provider=DatabaseProvider.local_file,
        name="SQLite",
        description="File-based SQL database",
        dialect=Dialect.sqlite,
        defaultPort=None,
        supportsSsl=False,
        connectionStringFormat="file:./data/finance.db or :memory:",
    ),
    DatabaseProvider.generic_postgres: ProviderInfo(
        provider=DatabaseProvider.generic_postgres,
        name="PostgreSQL",
        description="Self-hosted PostgreSQL server",
        dialect=Dialect.postgresql,
        defaultPort=5432,
        supportsSsl=True,
        connectionStringFormat="postgresql://[user[:password]@][host][:port][/dbname][?param=value]",
    ),
    DatabaseProvider.generic_mysql: ProviderInfo(
        provider=DatabaseProvider.generic_mysql,
        name="MySQL",
        description="Self-hosted MySQL server",
        dialect=Dialect.mysql,
        defaultPort=3306,
        supportsSsl=True,
        connectionStringFormat="mysql://[user[:password]@][host][:port][/dbname][?param=value]",
    ),
    DatabaseProvider.managed_postgres_service: ProviderInfo(
        provider=DatabaseProvider.managed_postgres_service,
        name="Managed PostgreSQL",
        description="Serverless PostgreSQL platform",
        dialect=Dialect.postgresql,
        defaultPort=5432,
        supportsSsl=True,
        connectionStringFormat="postgresql://[user[:password]@][host][:port][/dbname][?sslmode=require]",
    ),
    DatabaseProvider.managed_mysql_service: ProviderInfo(
        provider=DatabaseProvider.managed_mysql_service,
        name="Managed MySQL",
        description="Serverless MySQL platform",
        dialect=Dialect.mysql,
        defaultPort=3306,
        supportsSsl=True,
        connectionStringFormat="mysql://[user[:password]@][host][:port][/dbname][?ssl=true]",
    ),
    DatabaseProvider.managed_rest_service: ProviderInfo(
        provider=DatabaseProvider.managed_rest_service,
        name="Managed REST Postgres",
        description="Hosted PostgreSQL reached through its REST gateway",
        dialect=Dialect.postgresql,
        defaultPort=5432,
        supportsSsl=True,
        connectionStringFormat="Service URL + API key",
    ),
}

SECRET_MASK = "********"


class ConnectionFields(BaseModel):
    connectionString: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    serviceUrl: Optional[str] = None
    anonKey: Optional[str] = None
    serviceKey: Optional[str] = None
    ssl: bool = True
    maxConnections: int = Field(default=10, ge=1, le=100)


class DatabaseConfigCreate(ConnectionFields):
    model_config = ConfigDict(extra="forbid")
    name: str = Field(min_length=1, max_length=200)
    provider: DatabaseProvider

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        v = value.strip()
        if not v:
            raise ValueError("Database name is required")
        return v


class ConnectionTestRequest(ConnectionFields):
    name: str = "Test Connection"
    provider: DatabaseProvider


class DatabaseConfigUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    connectionString: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    serviceUrl: Optional[str] = None
    anonKey: Optional[str] = None
    serviceKey: Optional[str] = None
    ssl: Optional[bool] = None
    maxConnections: Optional[int] = Field(default=None, ge=1, le=100)


class DatabaseConfig(ConnectionFields):
    id: str
    name: str
    provider: DatabaseProvider
    isActive: bool = False
    isConnected: bool = False
    lastConnectionTest: Optional[datetime] = None
    createdAt: datetime
    updatedAt: datetime

    @computed_field
    @property
    def dialect(self) -> Dialect:
        return PROVIDER_INFO[self.provider].dialect

    def masked(self) -> dict[str, Any]:
        data = self.model_dump()
        for key in ("password", "anonKey", "serviceKey"):
            if data.get(key):
                data[key] = SECRET_MASK
        return data


class DatabaseConfigResponse(BaseModel):
    id: str
    name: str
    provider: DatabaseProvider
    dialect: Dialect
    connectionString: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    serviceUrl: Optional[str] = None
    anonKey: Optional[str] = None
    serviceKey: Optional[str] = None
    ssl: bool
    maxConnections: int
    isActive: bool
    isConnected: bool
    lastConnectionTest: Optional[datetime] = None
    createdAt: datetime
    updatedAt: datetime

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> "DatabaseConfigResponse":
        return cls(**config.masked())


class ConnectionTestResult(BaseModel):
    success: bool
    error: Optional[str] = None
    latencyMs: Optional[float] = None
    failureKind: Optional[FailureKind] = None


class SchemaValidationResult(BaseModel):
    hasSchema: bool
    missingTables: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class MigrationLog(BaseModel):
    id: str
    fromProvider: Optional[DatabaseProvider] = None
    toProvider: DatabaseProvider
    status: MigrationStatus = MigrationStatus.pending
    startedAt: datetime
    completedAt: Optional[datetime] = None
    recordsMigrated: int = 0
    errorMessage: Optional[str] = None
    migrationDetails: dict[str, Any] = Field(default_factory=dict)


class MigrationRequest(BaseModel):
    fromId: Optional[str] = None
    toId: str = Field(min_length=1)


class MigrationStartedResponse(BaseModel):
    migrationId: str
    status: MigrationStatus


class HealthResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    status: str
    activeProvider: Optional[DatabaseProvider] = None


class ApiErrorDetail(BaseModel):
    field: str
    message: str


class ApiErrorPayload(BaseModel):
    code: str
    message: str
    details: list[ApiErrorDetail] = Field(default_factory=list)


class ApiErrorResponse(BaseModel):
    error: ApiErrorPayload

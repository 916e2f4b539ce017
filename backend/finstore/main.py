from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import configure_logging
from .errors import (
    ActiveConfigInUse,
    CannotActivate,
    ConnectionFailed,
    FinstoreError,
    MigrationError,
    MigrationInProgress,
    NotFound,
    ValidationError,
)
from .manager import DatabaseManager
from .schemas import (
    ApiErrorDetail,
    ApiErrorPayload,
    ApiErrorResponse,
    ConnectionTestRequest,
    ConnectionTestResult,
    DatabaseConfigCreate,
    DatabaseConfigResponse,
    DatabaseConfigUpdate,
    HealthResponse,
    MigrationLog,
    MigrationRequest,
    MigrationStartedResponse,
    ProviderInfo,
    SchemaValidationResult,
)

configure_logging()

app = FastAPI(
    title="finstore API",
    version="0.1.0",
    description="Database configuration, activation and cross-database migration for the finance backend.",
)
manager = DatabaseManager()

ERROR_STATUS: list[tuple[type[FinstoreError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (ActiveConfigInUse, status.HTTP_409_CONFLICT),
    (MigrationInProgress, status.HTTP_409_CONFLICT),
    (CannotActivate, status.HTTP_400_BAD_REQUEST),
    (ConnectionFailed, status.HTTP_400_BAD_REQUEST),
    (MigrationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def build_error_response(
    details: list[ApiErrorDetail],
    message: str = "Invalid request payload",
    code: str = "VALIDATION_ERROR",
    status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY,
) -> JSONResponse:
    payload = ApiErrorResponse(error=ApiErrorPayload(code=code, message=message, details=details))
    return JSONResponse(status_code=status_code, content=payload.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details: list[ApiErrorDetail] = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", []) if item != "body")
        details.append(ApiErrorDetail(field=loc or "body", message=err.get("msg", "validation error")))
    return build_error_response(details)


@app.exception_handler(FinstoreError)
async def finstore_exception_handler(request: Request, exc: FinstoreError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    details: list[ApiErrorDetail] = []
    if isinstance(exc, MigrationError) and exc.migration_id:
        details.append(ApiErrorDetail(field="migrationId", message=exc.migration_id))
    if isinstance(exc, ConnectionFailed):
        details.append(ApiErrorDetail(field="failureKind", message=exc.kind.value))
    return build_error_response(details, message=exc.message, code=exc.code, status_code=status_code)


@app.get("/api/v1/health", response_model=HealthResponse)
def health() -> HealthResponse:
    active = manager.registry.active()
    return HealthResponse(status="ok", activeProvider=active.provider if active else None)


@app.get("/api/v1/database/providers", response_model=list[ProviderInfo])
def list_providers() -> list[ProviderInfo]:
    return manager.provider_info()


@app.get("/api/v1/database/configs", response_model=list[DatabaseConfigResponse])
def list_configs() -> list[DatabaseConfigResponse]:
    return [DatabaseConfigResponse.from_config(config) for config in manager.list_configs()]


@app.post("/api/v1/database/configs", response_model=DatabaseConfigResponse, status_code=201)
def create_config(payload: DatabaseConfigCreate) -> DatabaseConfigResponse:
    return DatabaseConfigResponse.from_config(manager.add_config(payload))


@app.get("/api/v1/database/configs/{config_id}", response_model=DatabaseConfigResponse)
def get_config(config_id: str) -> DatabaseConfigResponse:
    return DatabaseConfigResponse.from_config(manager.get_config(config_id))


@app.patch("/api/v1/database/configs/{config_id}", response_model=DatabaseConfigResponse)
def update_config(config_id: str, payload: DatabaseConfigUpdate) -> DatabaseConfigResponse:
    return DatabaseConfigResponse.from_config(manager.update_config(config_id, payload))


@app.delete("/api/v1/database/configs/{config_id}", status_code=204)
def delete_config(config_id: str) -> Response:
    manager.delete_config(config_id)
    return Response(status_code=204)


@app.get("/api/v1/database/configs/{config_id}/schema", response_model=SchemaValidationResult)
def validate_schema(config_id: str) -> SchemaValidationResult:
    return manager.validate_schema(config_id)


@app.post("/api/v1/database/configs/{config_id}/activate", response_model=DatabaseConfigResponse)
def activate_config(config_id: str) -> DatabaseConfigResponse:
    return DatabaseConfigResponse.from_config(manager.activate(config_id))


@app.post("/api/v1/database/test-connection", response_model=ConnectionTestResult)
def test_connection(payload: ConnectionTestRequest, attempts: int = 1) -> ConnectionTestResult:
    return manager.test_connection(payload, max_attempts=max(1, min(attempts, 5)))


@app.post("/api/v1/database/migrations", response_model=MigrationStartedResponse, status_code=201)
def start_migration(payload: MigrationRequest) -> MigrationStartedResponse:
    migration_id = manager.migrate(payload.fromId, payload.toId)
    log = manager.get_migration(migration_id)
    return MigrationStartedResponse(migrationId=log.id, status=log.status)


@app.get("/api/v1/database/migrations", response_model=list[MigrationLog])
def list_migrations() -> list[MigrationLog]:
    return manager.list_migrations()


@app.get("/api/v1/database/migrations/{migration_id}", response_model=MigrationLog)
def get_migration(migration_id: str) -> MigrationLog:
    return manager.get_migration(migration_id)

from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from finstore.errors import FailureKind
from finstore.probe import ConnectionProbe, classify_failure
from finstore.provisioner import SchemaProvisioner
from finstore.schemas import DatabaseProvider
from finstore.tables import INSERT_ORDER
from finstore.targets import open_target

from conftest import make_config


def failing_engine_factory(message: str) -> MagicMock:
    engine = MagicMock()
    engine.connect.side_effect = OperationalError("SELECT 1", {}, Exception(message))
    return MagicMock(return_value=engine)


def test_empty_connection_string_never_reaches_the_network() -> None:
    factory = MagicMock()
    session_factory = MagicMock()
    probe = ConnectionProbe(engine_factory=factory, session_factory=session_factory)

    result = probe.test(make_config(DatabaseProvider.generic_postgres, connectionString=""))

    assert result.success is False
    assert result.error == "Connection string is required"
    factory.assert_not_called()
    session_factory.assert_not_called()


def test_rest_provider_requires_service_url_and_key() -> None:
    session_factory = MagicMock()
    probe = ConnectionProbe(session_factory=session_factory)
    result = probe.test(make_config(DatabaseProvider.managed_rest_service, serviceUrl="https://x.example"))
    assert result.error == "Service URL and API key are required"
    session_factory.assert_not_called()


def test_local_file_probe_succeeds(tmp_path) -> None:
    probe = ConnectionProbe()
    result = probe.test(make_config(connectionString=f"file:{tmp_path / 'probe.db'}"))
    assert result.success is True
    assert result.latencyMs is not None and result.latencyMs >= 0


def test_failed_probe_is_classified_and_engine_released() -> None:
    factory = failing_engine_factory('password authentication failed for user "app"')
    probe = ConnectionProbe(engine_factory=factory)

    result = probe.test(make_config(DatabaseProvider.generic_postgres, connectionString="postgresql://app:bad@db:5432/fin"))

    assert result.success is False
    assert result.failureKind == FailureKind.auth
    assert result.error == "Authentication failed. Please check your credentials."
    factory.return_value.dispose.assert_called_once()
    assert factory.call_args.args[0].drivername == "postgresql+psycopg"


def test_unparseable_url_is_a_generic_failure() -> None:
    factory = MagicMock()
    probe = ConnectionProbe(engine_factory=factory)

    result = probe.test(make_config(DatabaseProvider.generic_postgres, connectionString="postgresql://u:p@db:54x2/fin"))

    assert result.success is False
    assert result.failureKind == FailureKind.generic
    assert "54x2" in result.error
    factory.assert_not_called()


def test_retry_backs_off_exponentially_then_reports_last_error() -> None:
    delays: list[float] = []
    factory = failing_engine_factory("could not connect: Connection refused")
    probe = ConnectionProbe(engine_factory=factory, sleep=delays.append)

    result = probe.test_with_retry(make_config(DatabaseProvider.generic_mysql, host="db", database="fin"), max_attempts=3)

    assert result.success is False
    assert result.error.startswith("Connection failed after 3 attempts. Last error: Host unreachable")
    assert delays == [1, 2]
    assert factory.call_count == 3


def test_retry_stops_on_validation_failure() -> None:
    delays: list[float] = []
    probe = ConnectionProbe(engine_factory=MagicMock(), sleep=delays.append)
    result = probe.test_with_retry(make_config(DatabaseProvider.generic_postgres), max_attempts=4)
    assert result.error == "Connection string is required"
    assert delays == []


def test_classify_failure_patterns() -> None:
    assert classify_failure("getaddrinfo ENOTFOUND db.example.com") == FailureKind.host_unreachable
    assert classify_failure("connection timed out") == FailureKind.timeout
    assert classify_failure("Access denied for user 'app'") == FailureKind.auth
    assert classify_failure("relation does not exist") == FailureKind.generic
    assert classify_failure("column oauth_token does not exist") == FailureKind.generic
    assert classify_failure("401 Client Error: Unauthorized") == FailureKind.auth


def test_validate_schema_reports_missing_tables(tmp_path) -> None:
    config = make_config(connectionString=f"file:{tmp_path / 'schema.db'}")
    probe = ConnectionProbe()

    before = probe.validate_schema(config)
    assert before.hasSchema is False
    assert before.missingTables == list(INSERT_ORDER)

    with open_target(config) as target:
        SchemaProvisioner().ensure(target)

    after = probe.validate_schema(config)
    assert after.hasSchema is True
    assert after.missingTables == []

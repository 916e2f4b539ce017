from fastapi.testclient import TestClient

from finstore.main import app

client = TestClient(app)


def create_local_config(tmp_path, name: str) -> dict:
    res = client.post(
        "/api/v1/database/configs",
        json={"name": name, "provider": "local-file", "connectionString": f"file:{tmp_path / (name + '.db')}"},
    )
    assert res.status_code == 201
    return res.json()


def test_health() -> None:
    res = client.get("/api/v1/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


def test_providers_listed() -> None:
    res = client.get("/api/v1/database/providers")
    assert res.status_code == 200
    providers = {item["provider"]: item for item in res.json()}
    assert len(providers) == 6
    assert providers["local-file"]["dialect"] == "sqlite"
    assert providers["generic-mysql"]["defaultPort"] == 3306


def test_secrets_are_masked_and_unreachable_config_is_kept() -> None:
    res = client.post(
        "/api/v1/database/configs",
        json={"name": "remote", "provider": "generic-postgres", "username": "app", "password": "s3cret"},
    )
    assert res.status_code == 201
    body = res.json()
    assert body["password"] == "********"
    assert body["isConnected"] is False
    assert body["dialect"] == "postgresql"

    fetched = client.get(f"/api/v1/database/configs/{body['id']}")
    assert fetched.json()["password"] == "********"
    assert client.delete(f"/api/v1/database/configs/{body['id']}").status_code == 204


def test_invalid_payloads_return_422() -> None:
    res = client.post("/api/v1/database/configs", json={"name": "x", "provider": "oracle"})
    assert res.status_code == 422
    assert res.json()["error"]["code"] == "VALIDATION_ERROR"

    res = client.post("/api/v1/database/configs", json={"name": "x", "provider": "local-file", "maxConnections": 500})
    assert res.status_code == 422


def test_unknown_config_returns_404() -> None:
    res = client.get("/api/v1/database/configs/does-not-exist")
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "NOT_FOUND"


def test_test_connection_without_connection_string() -> None:
    res = client.post("/api/v1/database/test-connection", json={"provider": "generic-mysql", "connectionString": ""})
    assert res.status_code == 200
    assert res.json()["success"] is False
    assert res.json()["error"] == "Connection string is required"


def test_activate_then_delete_is_blocked(tmp_path) -> None:
    config = create_local_config(tmp_path, "primary")

    res = client.post(f"/api/v1/database/configs/{config['id']}/activate")
    assert res.status_code == 200
    assert res.json()["isActive"] is True
    assert client.get("/api/v1/health").json()["activeProvider"] == "local-file"

    res = client.delete(f"/api/v1/database/configs/{config['id']}")
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "ACTIVE_CONFIG_IN_USE"

    active = [item for item in client.get("/api/v1/database/configs").json() if item["isActive"]]
    assert [item["id"] for item in active] == [config["id"]]


def test_migration_endpoints(tmp_path) -> None:
    target = create_local_config(tmp_path, "archive")

    res = client.post("/api/v1/database/migrations", json={"fromId": None, "toId": target["id"]})
    assert res.status_code == 201
    started = res.json()
    assert started["status"] == "completed"

    log = client.get(f"/api/v1/database/migrations/{started['migrationId']}").json()
    assert log["toProvider"] == "local-file"
    assert log["completedAt"] is not None
    assert any(item["id"] == started["migrationId"] for item in client.get("/api/v1/database/migrations").json())

    schema = client.get(f"/api/v1/database/configs/{target['id']}/schema").json()
    assert schema["hasSchema"] is True


def test_migration_into_unknown_target_returns_404() -> None:
    res = client.post("/api/v1/database/migrations", json={"toId": "nowhere"})
    assert res.status_code == 404
    assert client.get("/api/v1/database/migrations/nowhere").status_code == 404


def test_update_with_unknown_field_is_rejected(tmp_path) -> None:
    config = create_local_config(tmp_path, "patched")
    res = client.patch(f"/api/v1/database/configs/{config['id']}", json={"provider": "generic-mysql"})
    assert res.status_code == 422
    res = client.patch(f"/api/v1/database/configs/{config['id']}", json={"name": "renamed"})
    assert res.status_code == 200
    assert res.json()["name"] == "renamed"


def test_null_name_is_rejected_and_listing_still_works(tmp_path) -> None:
    config = create_local_config(tmp_path, "nullable")

    res = client.patch(f"/api/v1/database/configs/{config['id']}", json={"name": None})
    assert res.status_code == 422
    assert res.json()["error"]["code"] == "VALIDATION_ERROR"

    listed = client.get("/api/v1/database/configs")
    assert listed.status_code == 200
    assert any(item["name"] == "nullable" for item in listed.json())


def test_test_connection_with_unparseable_port() -> None:
    res = client.post(
        "/api/v1/database/test-connection",
        json={"provider": "generic-postgres", "connectionString": "postgresql://u:p@db:54x2/fin"},
    )
    assert res.status_code == 200
    assert res.json()["success"] is False
    assert res.json()["failureKind"] == "generic"


def test_config_with_unparseable_port_is_saved() -> None:
    res = client.post(
        "/api/v1/database/configs",
        json={"name": "typo", "provider": "generic-postgres", "connectionString": "postgresql://u:p@db:54x2/fin"},
    )
    assert res.status_code == 201
    assert res.json()["isConnected"] is False
    assert client.delete(f"/api/v1/database/configs/{res.json()['id']}").status_code == 204

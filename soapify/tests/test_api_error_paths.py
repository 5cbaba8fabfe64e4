from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from soapify.api.deps import assemble_services
from soapify.api.main import app
from soapify.asr.mock import MockTranscriptionProvider
from soapify.internal_core.config import load_config
from soapify.internal_core.errors import PersistenceFailure
from soapify.note.structuring import MockCompletionProvider
from soapify.storage.gateway import InMemoryGateway
from soapify.storage.object_store import InMemoryObjectStore


class _BrokenGateway(InMemoryGateway):
    async def find_user_by_email(self, email: str):
        raise RuntimeError("connection reset")

    async def ping(self) -> None:
        raise PersistenceFailure("database unreachable")


def _install_services(tmp_path, *, env: str = "test", gateway=None):
    cfg = replace(load_config(), SOAPIFY_ENV=env)
    services = assemble_services(
        cfg,
        gateway=gateway or InMemoryGateway(),
        transcriber=MockTranscriptionProvider(),
        object_store=InMemoryObjectStore(),
        completion=MockCompletionProvider(),
        upload_dir=tmp_path,
    )
    app.state.services = services
    app.state.config = cfg
    return services


@pytest.fixture(autouse=True)
def _clear_injected_services():
    yield
    for name in ("services", "config", "services_owned"):
        if hasattr(app.state, name):
            delattr(app.state, name)


def test_health_reports_service_identity() -> None:
    response = TestClient(app).get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["service"] == "SOAPify API"
    assert body["version"] == "1.0.0"


def test_status_reports_healthy_when_database_answers(tmp_path) -> None:
    _install_services(tmp_path)
    response = TestClient(app).get("/api/status")
    assert response.status_code == 200
    assert response.json()["services"]["database"] == "connected"


def test_status_returns_503_when_database_check_fails(tmp_path) -> None:
    _install_services(tmp_path, gateway=_BrokenGateway())
    response = TestClient(app).get("/api/status")
    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"


def test_create_user_is_create_or_get(tmp_path) -> None:
    _install_services(tmp_path)
    client = TestClient(app)

    first = client.post("/api/users", json={"email": "np@example.org"})
    second = client.post("/api/users", json={"email": "np@example.org", "name": "Other"})

    assert first.status_code == 200
    assert first.json()["id"] == second.json()["id"]
    assert "createdAt" in first.json()


def test_create_user_requires_email(tmp_path) -> None:
    _install_services(tmp_path)
    response = TestClient(app).post("/api/users", json={"name": "No Email"})
    assert response.status_code == 400
    assert response.json()["error"] == "missing_email"


def test_malformed_json_body_maps_to_invalid_request(tmp_path) -> None:
    _install_services(tmp_path)
    response = TestClient(app).post(
        "/api/notes/text",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


def test_unknown_route_uses_error_body() -> None:
    response = TestClient(app).get("/api/does-not-exist")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"
    assert response.json()["path"] == "/api/does-not-exist"


def test_unexpected_error_returns_internal_error(tmp_path) -> None:
    _install_services(tmp_path, gateway=_BrokenGateway())
    client = TestClient(app, raise_server_exceptions=False)
    response = client.post("/api/users", json={"email": "x@example.org"})
    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "internal_error"
    assert "connection reset" in body["details"]["traceback"]


def test_production_errors_omit_details(tmp_path) -> None:
    _install_services(tmp_path, env="production")
    response = TestClient(app).post("/api/notes/text", json={"userId": "does-not-exist", "text": "hello"})
    assert response.status_code == 404
    body = response.json()
    assert body == {"error": "user_not_found", "message": "User not found: does-not-exist"}


class _DisposableGateway(InMemoryGateway):
    def __init__(self) -> None:
        super().__init__()
        self.disposed = False

    def dispose(self) -> None:
        self.disposed = True


def test_lifespan_builds_services_once_and_closes_them(tmp_path, monkeypatch) -> None:
    gateway = _DisposableGateway()
    built = []

    def fake_build_services(cfg):
        built.append(cfg)
        return assemble_services(
            cfg,
            gateway=gateway,
            transcriber=MockTranscriptionProvider(),
            object_store=InMemoryObjectStore(),
            completion=MockCompletionProvider(),
            upload_dir=tmp_path,
        )

    monkeypatch.setattr("soapify.api.main.build_services", fake_build_services)
    with TestClient(app) as client:
        assert app.state.services.gateway is gateway
        assert client.get("/api/status").status_code == 200
        assert client.post("/api/users", json={"email": "a@example.org"}).status_code == 200

    assert len(built) == 1
    assert gateway.disposed is True
    assert app.state.services is None


def test_lifespan_keeps_injected_services(tmp_path, monkeypatch) -> None:
    services = _install_services(tmp_path)

    def unexpected_build(cfg):
        raise AssertionError("services were rebuilt")

    monkeypatch.setattr("soapify.api.main.build_services", unexpected_build)
    with TestClient(app) as client:
        assert client.get("/api/status").status_code == 200

    assert app.state.services is services


def test_upload_validation_runs_before_services_are_needed() -> None:
    response = TestClient(app).post("/api/notes/upload", data={"userId": "someone"})
    assert response.status_code == 400
    assert response.json()["error"] == "missing_audio"

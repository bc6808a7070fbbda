import pytest
from fastapi.testclient import TestClient

from app.api import deps
from app.core import health as health_module
from app.main import app
from app.services.task_queue import TaskQueue

client = TestClient(app)


@pytest.fixture(autouse=True)
def _mock_env(monkeypatch):
    monkeypatch.setattr(health_module.settings, "environment", "test")
    app.dependency_overrides[deps.get_task_queue] = lambda: None
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def healthy_backends(monkeypatch):
    async def ok_db():
        return {"status": "ok"}

    async def ok_redis():
        return {"status": "ok"}

    monkeypatch.setattr(health_module, "_check_db", ok_db)
    monkeypatch.setattr(health_module, "_check_redis", ok_redis)


def test_health_live_returns_ok() -> None:
    response = client.get("/api/v1/health/live")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "ok"
    assert "timestamp" in payload


def test_health_ready_ok(healthy_backends) -> None:
    response = client.get("/api/v1/health/ready")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "ok"
    assert payload.get("ready") is True
    assert payload["checks"]["database"]["status"] == "ok"
    assert payload["checks"]["task_queue"] == {"status": "ok", "enabled": False}


def test_health_ready_degraded(monkeypatch) -> None:
    async def bad_db():
        return {"status": "error", "error": "unreachable"}

    async def ok_redis():
        return {"status": "ok"}

    monkeypatch.setattr(health_module, "_check_db", bad_db)
    monkeypatch.setattr(health_module, "_check_redis", ok_redis)

    response = client.get("/api/v1/health/ready")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "degraded"
    assert payload.get("ready") is False
    assert payload["checks"]["database"]["status"] == "error"


def test_stopped_task_queue_degrades_readiness(healthy_backends, monkeypatch) -> None:
    monkeypatch.setattr(health_module.settings, "task_queue_enabled", True)
    queue = TaskQueue()
    app.dependency_overrides[deps.get_task_queue] = lambda: queue

    response = client.get("/api/v1/health")
    payload = response.json()["data"]
    assert payload.get("ready") is False
    assert payload["checks"]["task_queue"]["status"] == "error"
    assert payload["checks"]["task_queue"]["running"] is False


def test_status_summary(healthy_backends) -> None:
    response = client.get("/api/v1/status/summary")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "ok"
    assert payload.get("ready") is True
    assert payload.get("version") == health_module.APP_VERSION


def test_responses_carry_request_id_and_security_headers() -> None:
    response = client.get("/api/v1/health/live", headers={"X-Request-ID": "req-42"})
    assert response.headers["x-request-id"] == "req-42"
    assert response.headers["x-content-type-options"] == "nosniff"
    assert response.headers["cache-control"] == "no-store"

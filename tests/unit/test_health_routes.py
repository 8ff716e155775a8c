from __future__ import annotations

import os

from fastapi import FastAPI
from fastapi.testclient import TestClient
import pytest

from cv_api import main as main_module
from cv_api.config import API_VERSION
from cv_api.main import app, unhandled_exception_handler
from cv_api.services.health_service import format_uptime

client = TestClient(app)


@pytest.mark.unit
def test_format_uptime_omits_leading_zero_units() -> None:
    assert format_uptime(5) == "5s"
    assert format_uptime(65) == "1m 5s"
    assert format_uptime(3600) == "1h 0m 0s"
    assert format_uptime(90061) == "1d 1h 1m 1s"


@pytest.mark.unit
def test_health_reports_worker_process_id() -> None:
    response = client.get(f"/api/{API_VERSION}/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["processId"] == os.getpid()


@pytest.mark.unit
def test_liveness_probe() -> None:
    response = client.get(f"/api/{API_VERSION}/health/live")

    assert response.status_code == 200
    assert response.json()["status"] == "alive"


@pytest.mark.unit
def test_root_and_api_info_list_endpoints() -> None:
    root = client.get("/").json()
    info = client.get(f"/api/{API_VERSION}").json()

    assert root["health"] == f"/api/{API_VERSION}/health"
    assert info["endpoints"]["liveness"] == f"/api/{API_VERSION}/health/live"
    assert "documentation" not in info["endpoints"]


@pytest.mark.unit
def test_unknown_route_returns_json_404() -> None:
    response = client.get("/nope")

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Route not found"
    assert body["message"] == "The endpoint GET /nope does not exist"


def _failing_client() -> TestClient:
    failing_app = FastAPI()
    failing_app.add_exception_handler(Exception, unhandled_exception_handler)

    @failing_app.get("/boom")
    async def boom() -> None:
        raise RuntimeError("数据库连接失败")

    return TestClient(failing_app, raise_server_exceptions=False)


@pytest.mark.unit
def test_unhandled_error_returns_json_500_with_detail_in_development(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(main_module, "is_production", lambda: False)

    response = _failing_client().get("/boom")

    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "error": "Internal server error",
        "message": "数据库连接失败",
    }


@pytest.mark.unit
def test_unhandled_error_hides_detail_in_production(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(main_module, "is_production", lambda: True)

    response = _failing_client().get("/boom")

    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"
    assert response.json()["message"] == "Something went wrong"


@pytest.mark.unit
def test_lifespan_logs_startup_and_shutdown(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level("INFO", logger=main_module.__name__)

    with TestClient(app) as lifespan_client:
        lifespan_client.get(f"/api/{API_VERSION}/health/live")
        assert "HTTP 服务已就绪" in caplog.text
        assert "HTTP 服务已关闭" not in caplog.text

    assert f"worker pid={os.getpid()} HTTP 服务已关闭" in caplog.text

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from app.api import ops
from app.main import app


class _StubSweeper:
    calls = 0

    async def run_once(self):
        type(self).calls += 1
        return 2


@pytest.fixture
def stub_sweeper(monkeypatch):
    _StubSweeper.calls = 0
    monkeypatch.setattr(ops, "OverdueSweeper", _StubSweeper)
    return _StubSweeper


def test_ops_endpoints_fail_closed_without_token(monkeypatch, stub_sweeper):
    # app.settings.settings is instantiated at module level, so patch the object directly.
    from app import settings
    monkeypatch.setattr(settings.settings, "obs_admin_token", None)

    client = TestClient(app)
    response = client.post("/ops/lending/sweep-overdue", headers={"X-Admin-Token": "whatever"})

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["detail"] == "admin_token_not_configured"
    assert stub_sweeper.calls == 0


def test_manual_sweep_runs_with_correct_token(monkeypatch, stub_sweeper):
    from app import settings
    monkeypatch.setattr(settings.settings, "obs_admin_token", "secret-token")

    client = TestClient(app)
    response = client.post("/ops/lending/sweep-overdue", headers={"Authorization": "Bearer secret-token"})

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok", "marked_overdue": 2}
    assert stub_sweeper.calls == 1


def test_ops_endpoints_reject_wrong_token(monkeypatch, stub_sweeper):
    from app import settings
    monkeypatch.setattr(settings.settings, "obs_admin_token", "secret-token")

    client = TestClient(app)
    response = client.post("/ops/lending/sweep-overdue", headers={"X-Admin-Token": "wrong-token"})
    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["detail"] == "forbidden"
    assert stub_sweeper.calls == 0


def test_metrics_private_by_default(monkeypatch):
    from app import settings
    monkeypatch.setattr(settings.settings, "obs_metrics_public", False)
    monkeypatch.setattr(settings.settings, "obs_admin_token", "secret-token")

    client = TestClient(app)
    assert client.get("/metrics").status_code == status.HTTP_403_FORBIDDEN
    assert client.get("/metrics", headers={"X-Admin-Token": "secret-token"}).status_code == status.HTTP_200_OK


def test_scheduler_status_reports_disabled_sweep(monkeypatch):
    from app import settings
    monkeypatch.setattr(settings.settings, "obs_admin_token", "secret-token")
    monkeypatch.setattr(app.state, "lending_scheduler", None, raising=False)

    client = TestClient(app)
    response = client.get("/ops/lending/scheduler", headers={"X-Admin-Token": "secret-token"})
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"running": False, "jobs": [], "sweep_minutes": 0}

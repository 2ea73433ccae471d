"""Tests for the builds router."""

from unittest.mock import AsyncMock, patch

import pytest

from appsynth.api.rate_limit import build_limiter
from appsynth.errors import ConflictError, NotFoundError
from tests.conftest import MOCK_USER, PROJECT_ID, auth_header

_BASE = f"/projects/{PROJECT_ID}"


@pytest.fixture(autouse=True)
def _auth_and_limits():
    build_limiter.reset()
    with patch("appsynth.api.deps.get_user_by_id", AsyncMock(return_value=MOCK_USER)):
        yield
    build_limiter.reset()


def test_start_build_accepted(test_client):
    response = {"project_id": str(PROJECT_ID), "status": "generating", "resume": False}
    with patch("appsynth.services.build_service.start_build", AsyncMock(return_value=response)) as start:
        resp = test_client.post(f"{_BASE}/build", json={"prompt": "Build a todo app"}, headers=auth_header())

    assert resp.status_code == 202
    assert resp.json() == response
    args = start.await_args
    assert args.args[0] == PROJECT_ID
    assert args.args[2] == "Build a todo app"
    assert args.args[3] is None
    assert args.kwargs["resume"] is False


def test_start_build_passes_images_and_resume(test_client):
    with patch("appsynth.services.build_service.start_build", AsyncMock(return_value={})) as start:
        test_client.post(
            f"{_BASE}/build",
            json={"prompt": "", "images": ["data:image/png;base64,iVBORw0"], "resume": True},
            headers=auth_header(),
        )
    assert start.await_args.args[3] == ["data:image/png;base64,iVBORw0"]
    assert start.await_args.kwargs["resume"] is True


def test_start_build_requires_auth(test_client):
    resp = test_client.post(f"{_BASE}/build", json={"prompt": "x"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Missing authentication token"


def test_start_build_conflict(test_client):
    with patch(
        "appsynth.services.build_service.start_build",
        AsyncMock(side_effect=ConflictError("A build is already in progress for this project")),
    ):
        resp = test_client.post(f"{_BASE}/build", json={"prompt": "x"}, headers=auth_header())
    assert resp.status_code == 409
    assert "already in progress" in resp.json()["detail"]


def test_start_build_not_found(test_client):
    with patch("appsynth.services.build_service.start_build", AsyncMock(side_effect=NotFoundError("Project not found"))):
        resp = test_client.post(f"{_BASE}/build", json={"prompt": "x"}, headers=auth_header())
    assert resp.status_code == 404


def test_start_build_rate_limited(test_client, monkeypatch):
    monkeypatch.setattr(build_limiter, "_max", 1)
    with patch("appsynth.services.build_service.start_build", AsyncMock(return_value={})):
        first = test_client.post(f"{_BASE}/build", json={"prompt": "x"}, headers=auth_header())
        second = test_client.post(f"{_BASE}/build", json={"prompt": "x"}, headers=auth_header())
    assert first.status_code == 202
    assert second.status_code == 429
    assert second.json()["detail"] == "Build rate limit exceeded"


def test_repair_requires_error(test_client):
    resp = test_client.post(f"{_BASE}/build/repair", json={"error": ""}, headers=auth_header())
    assert resp.status_code == 422
    assert resp.json()["error"] == "Validation failed"


def test_repair_accepted(test_client):
    with patch("appsynth.services.build_service.repair_build", AsyncMock(return_value={"status": "generating"})) as repair:
        resp = test_client.post(f"{_BASE}/build/repair", json={"error": "TypeError"}, headers=auth_header())
    assert resp.status_code == 202
    assert repair.await_args.args[2] == "TypeError"


def test_cancel(test_client):
    with patch("appsynth.services.build_service.cancel_build", AsyncMock(return_value={"status": "cancelling"})):
        resp = test_client.post(f"{_BASE}/build/cancel", headers=auth_header())
    assert resp.status_code == 200
    assert resp.json() == {"status": "cancelling"}


def test_status(test_client):
    body = {"project_id": str(PROJECT_ID), "status": "idle", "active": False, "build_state": {}}
    with patch("appsynth.services.build_service.get_build_status", AsyncMock(return_value=body)):
        resp = test_client.get(f"{_BASE}/build/status", headers=auth_header())
    assert resp.json() == body


def test_preview_report(test_client):
    with patch("appsynth.services.build_service.report_preview", AsyncMock(return_value={"accepted": True})) as report:
        resp = test_client.post(
            f"{_BASE}/preview-report",
            json={"success": False, "error": "blank page", "health": "blank", "revision": 3},
            headers=auth_header(),
        )
    assert resp.json() == {"accepted": True}
    assert report.await_args.kwargs == {"success": False, "error": "blank page", "health": "blank", "revision": 3}


def test_preview_report_rejects_unknown_health(test_client):
    resp = test_client.post(
        f"{_BASE}/preview-report", json={"success": True, "health": "sparkly"}, headers=auth_header(),
    )
    assert resp.status_code == 422

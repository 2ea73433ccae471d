"""Tests for the projects router and project service."""

from unittest.mock import AsyncMock, patch
from uuid import UUID

import pytest

from appsynth.errors import NotFoundError
from appsynth.services import project_service
from tests.conftest import MOCK_USER, OTHER_USER_ID, PROJECT_ID, USER_ID, auth_header

_PROJECT = {"id": str(PROJECT_ID), "user_id": USER_ID, "title": "Todo Tracker", "status": "idle"}


@pytest.fixture(autouse=True)
def _auth():
    with patch("appsynth.api.deps.get_user_by_id", AsyncMock(return_value=MOCK_USER)):
        yield


def test_create_project(test_client):
    with patch("appsynth.api.routers.projects.create_new_project", AsyncMock(return_value=_PROJECT)) as create:
        resp = test_client.post("/projects", json={"prompt": "Build a todo app"}, headers=auth_header())
    assert resp.status_code == 201
    assert resp.json()["title"] == "Todo Tracker"
    assert create.await_args.kwargs == {"prompt": "Build a todo app", "title": None}


def test_list_projects(test_client):
    with patch("appsynth.api.routers.projects.list_user_projects", AsyncMock(return_value=[_PROJECT])):
        resp = test_client.get("/projects", headers=auth_header())
    assert resp.json() == {"items": [_PROJECT]}


def test_get_project_not_found(test_client):
    with patch("appsynth.api.routers.projects.get_project_detail", AsyncMock(side_effect=NotFoundError("Project not found"))):
        resp = test_client.get(f"/projects/{PROJECT_ID}", headers=auth_header())
    assert resp.status_code == 404
    body = resp.json()
    assert body["error"] == "Project not found"
    assert body["request_id"]


def test_get_project_bad_uuid(test_client):
    resp = test_client.get("/projects/not-a-uuid", headers=auth_header())
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# project_service
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_generates_title_from_prompt():
    with patch("appsynth.services.project_service.build_service.generate_title", AsyncMock(return_value="Todo Tracker")), \
         patch("appsynth.services.project_service.repo_create_project", AsyncMock(return_value={"id": PROJECT_ID})) as create:
        await project_service.create_new_project(UUID(USER_ID), prompt="Build a todo app")
    assert create.await_args.args == (UUID(USER_ID), "Todo Tracker")


@pytest.mark.asyncio
async def test_create_explicit_title_skips_generation():
    title = AsyncMock()
    with patch("appsynth.services.project_service.build_service.generate_title", title), \
         patch("appsynth.services.project_service.repo_create_project", AsyncMock(return_value={"id": PROJECT_ID})) as create:
        await project_service.create_new_project(UUID(USER_ID), prompt="x", title="Mine")
    title.assert_not_awaited()
    assert create.await_args.args[1] == "Mine"


@pytest.mark.asyncio
async def test_create_without_prompt_uses_default_title():
    with patch("appsynth.services.project_service.repo_create_project", AsyncMock(return_value={"id": PROJECT_ID})) as create:
        await project_service.create_new_project(UUID(USER_ID))
    assert create.await_args.args[1] == "New Project"


@pytest.mark.asyncio
async def test_detail_hides_other_users_project():
    row = {"id": PROJECT_ID, "user_id": UUID(OTHER_USER_ID)}
    with patch("appsynth.services.project_service.get_project_by_id", AsyncMock(return_value=row)):
        with pytest.raises(NotFoundError):
            await project_service.get_project_detail(UUID(USER_ID), PROJECT_ID)

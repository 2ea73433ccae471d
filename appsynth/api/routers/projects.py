"""Projects router -- create, list and fetch projects."""

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from appsynth.api.deps import get_current_user
from appsynth.services.project_service import (
    create_new_project,
    get_project_detail,
    list_user_projects,
)

router = APIRouter(prefix="/projects", tags=["projects"])


class CreateProjectRequest(BaseModel):
    """Request body for creating a project.

    With no ``title`` the titling stage names the project from ``prompt``.
    """

    prompt: str | None = Field(None, max_length=20_000)
    title: str | None = Field(None, min_length=1, max_length=255)


@router.post("", status_code=201)
async def create_project(
    body: CreateProjectRequest,
    user: dict = Depends(get_current_user),
):
    """Create a new project."""
    return await create_new_project(user["id"], prompt=body.prompt, title=body.title)


@router.get("")
async def list_projects(user: dict = Depends(get_current_user)):
    """List the current user's projects, newest first."""
    return {"items": await list_user_projects(user["id"])}


@router.get("/{project_id}")
async def get_project(
    project_id: UUID,
    user: dict = Depends(get_current_user),
):
    """Full project detail: files, messages and build state."""
    return await get_project_detail(user["id"], project_id)

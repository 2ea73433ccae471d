"""Project service -- project creation (with a generated title) and lookups."""

import logging
from uuid import UUID

from appsynth.errors import NotFoundError
from appsynth.repos.project_repo import (
    create_project as repo_create_project,
    get_project_by_id,
    get_projects_by_user,
)
from appsynth.services import build_service

logger = logging.getLogger(__name__)


async def create_new_project(user_id: UUID, prompt: str | None = None, title: str | None = None) -> dict:
    """Create a project.  Without an explicit title one is generated from *prompt*."""
    if not title:
        title = await build_service.generate_title(prompt, user_id=user_id) if prompt else build_service.DEFAULT_TITLE
    project = await repo_create_project(user_id, title)
    logger.info("Created project %s (%s) for user %s", project["id"], title, user_id)
    return project


async def list_user_projects(user_id: UUID) -> list[dict]:
    """List all projects for a user."""
    return await get_projects_by_user(user_id)


async def get_project_detail(user_id: UUID, project_id: UUID) -> dict:
    """Full project row.  Raises NotFoundError if missing or not owned."""
    project = await get_project_by_id(project_id)
    if not project or str(project["user_id"]) != str(user_id):
        raise NotFoundError("Project not found")
    return project

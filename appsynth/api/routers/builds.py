"""Builds router -- start, resume, repair and cancel generation runs."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from appsynth.api.deps import get_current_user
from appsynth.api.rate_limit import build_limiter
from appsynth.services import build_service

router = APIRouter(prefix="/projects", tags=["builds"])


class StartBuildRequest(BaseModel):
    """Request body for starting a build."""

    prompt: str = Field("", max_length=20_000)
    images: list[str] = Field(default_factory=list, max_length=8)
    resume: bool = False


class RepairRequest(BaseModel):
    """Request body for a user-triggered repair."""

    error: str = Field(..., min_length=1, max_length=20_000)


class PreviewReportRequest(BaseModel):
    """Boot report from the preview surface."""

    success: bool
    error: str | None = Field(None, max_length=20_000)
    health: str | None = Field(None, pattern="^(healthy|blank|error)$")
    revision: int | None = None


def _check_rate(user: dict) -> None:
    if not build_limiter.is_allowed(str(user["id"])):
        raise HTTPException(status_code=429, detail="Build rate limit exceeded")


@router.post("/{project_id}/build", status_code=202)
async def start_build(
    project_id: UUID,
    body: StartBuildRequest,
    user: dict = Depends(get_current_user),
):
    """Start a build (or resume the last one) in the background."""
    _check_rate(user)
    return await build_service.start_build(
        project_id,
        user["id"],
        body.prompt,
        body.images or None,
        resume=body.resume,
    )


@router.post("/{project_id}/build/repair", status_code=202)
async def repair_build(
    project_id: UUID,
    body: RepairRequest,
    user: dict = Depends(get_current_user),
):
    """Run one repair cycle against the given error."""
    _check_rate(user)
    return await build_service.repair_build(project_id, user["id"], body.error)


@router.post("/{project_id}/build/cancel")
async def cancel_build(
    project_id: UUID,
    user: dict = Depends(get_current_user),
):
    """Cancel the running build.  It stops at the next step boundary."""
    return await build_service.cancel_build(project_id, user["id"])


@router.get("/{project_id}/build/status")
async def build_status(
    project_id: UUID,
    user: dict = Depends(get_current_user),
):
    """Lifecycle status and persisted build state."""
    return await build_service.get_build_status(project_id, user["id"])


@router.post("/{project_id}/preview-report")
async def preview_report(
    project_id: UUID,
    body: PreviewReportRequest,
    user: dict = Depends(get_current_user),
):
    """Deliver the preview's boot report to the waiting build."""
    return await build_service.report_preview(
        project_id,
        user["id"],
        success=body.success,
        error=body.error,
        health=body.health,
        revision=body.revision,
    )

"""Build service -- launches generation runs for projects.

Each build runs as a background task in the module's :class:`JobRegistry`,
keyed by project id, so at most one build runs per project.  The
supervisor's events go to a :class:`_ProjectRecorder`, which persists
messages, files, build state and status, then forwards every event to
the owner's WebSocket connections in emission order.

The preview surface reports boot health through :func:`report_preview`,
which releases the supervisor's pending runtime validation.
"""

import logging
from typing import Awaitable, Callable
from uuid import UUID, uuid4

from appsynth.config import settings
from appsynth.errors import BadRequestError, ConflictError, NotFoundError, SynthError
from appsynth.repos import project_repo
from appsynth.services.build.cancellation import CancellationToken, JobRegistry
from appsynth.services.build.events import (
    ActionRequired,
    BuildCancelled,
    BuildEvent,
    ChunkCompleted,
    FinalFailed,
    MessageUpserted,
    StateCheckpoint,
    Succeeded,
)
from appsynth.services.build.models import Message, Project
from appsynth.services.build.runtime_check import PreviewReportGate, PreviewResult
from appsynth.services.build.stages import Stage
from appsynth.services.build.step_executor import StepExecutor
from appsynth.services.build.supervisor import GenerationSupervisor
from appsynth.services.prompt_resolver import PromptCache, PromptResolver
from appsynth.services.provider_router import ProviderRouter
from appsynth.ws_manager import manager

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Project"
_MAX_TITLE_LEN = 80

# Stage instructions, resolved once per process
_prompt_cache = PromptCache()

# Running builds keyed by project id
_jobs = JobRegistry()

# Pending preview reports keyed by project id
_preview_gates: dict[str, PreviewReportGate] = {}


def _gate(project_id: UUID) -> PreviewReportGate:
    return _preview_gates.setdefault(str(project_id), PreviewReportGate())


async def _load_owned(project_id: UUID, user_id: UUID) -> Project:
    row = await project_repo.get_project_by_id(project_id)
    if not row or str(row["user_id"]) != str(user_id):
        raise NotFoundError("Project not found")
    return Project.model_validate(row)


# ---------------------------------------------------------------------------
# Event recorder
# ---------------------------------------------------------------------------


class _ProjectRecorder:
    """Event sink that persists a run's progress and fans it out over WebSocket.

    Persistence errors are logged, never raised: a storage hiccup must
    not change the outcome of a build.
    """

    def __init__(self, project: Project, gate: PreviewReportGate | None) -> None:
        self.project_id = project.id
        self.user_id = project.user_id
        self._gate = gate
        self._messages = [m.model_dump(mode="json") for m in project.messages]
        self.terminated = False

    async def add_user_message(self, content: str) -> None:
        message = Message(id=str(uuid4()), role="user", content=content)
        self._messages.append(message.model_dump(mode="json"))
        await project_repo.update_project_messages(self.project_id, self._messages)

    async def emit(self, event: BuildEvent) -> None:
        payload = event.to_payload()
        payload["payload"]["project_id"] = str(self.project_id)
        if isinstance(event, ChunkCompleted) and self._gate is not None:
            payload["payload"]["preview_revision"] = self._gate.expect()
        try:
            await self._persist(event)
        except Exception:
            logger.exception("Failed to persist %s for project %s", event.type, self.project_id)
        await manager.send_to_user(str(self.user_id), payload)

    async def _persist(self, event: BuildEvent) -> None:
        if isinstance(event, MessageUpserted):
            self._upsert_message(event.message.model_dump(mode="json"))
            await project_repo.update_project_messages(self.project_id, self._messages)
        elif isinstance(event, (ChunkCompleted, Succeeded)):
            await project_repo.update_project_files(
                self.project_id, [f.model_dump() for f in event.files],
            )
        elif isinstance(event, StateCheckpoint):
            await project_repo.update_build_state(self.project_id, event.state.model_dump(mode="json"))

        if isinstance(event, (Succeeded, ActionRequired, BuildCancelled)):
            self.terminated = True
            await project_repo.update_project_status(self.project_id, "idle")
        elif isinstance(event, FinalFailed):
            self.terminated = True
            await project_repo.update_project_status(self.project_id, "failed")

    def _upsert_message(self, message: dict) -> None:
        for i, existing in enumerate(self._messages):
            if existing.get("id") == message["id"]:
                self._messages[i] = message
                return
        self._messages.append(message)


# ---------------------------------------------------------------------------
# Launching
# ---------------------------------------------------------------------------


async def _launch(
    project: Project,
    prompt: str,
    images: list[str] | None,
    run: Callable[[GenerationSupervisor], Awaitable[None]],
    *,
    user_message: str | None = None,
) -> None:
    if _jobs.is_active(str(project.id)):
        raise ConflictError("A build is already in progress for this project")

    gate = _gate(project.id) if settings.PREVIEW_VALIDATION else None
    if gate is not None:
        # Reports from a previous run never satisfy this one
        gate.expect()
    recorder = _ProjectRecorder(project, gate)
    if user_message:
        await recorder.add_user_message(user_message)
    await project_repo.update_project_status(project.id, "generating")

    async def _job(token: CancellationToken) -> None:
        supervisor = GenerationSupervisor(
            project,
            prompt,
            router=ProviderRouter(),
            resolver=PromptResolver(_prompt_cache),
            sink=recorder,
            token=token,
            validator=gate,
            images=images,
        )
        try:
            await run(supervisor)
        finally:
            if gate is not None and _preview_gates.get(str(project.id)) is gate:
                del _preview_gates[str(project.id)]
            if not recorder.terminated:
                # Task was torn down before the supervisor could finish
                await project_repo.update_project_status(project.id, "idle")

    _jobs.start(str(project.id), _job)


async def start_build(
    project_id: UUID,
    user_id: UUID,
    prompt: str,
    images: list[str] | None = None,
    *,
    resume: bool = False,
) -> dict:
    """Start (or resume) a build for a project.

    Raises:
        NotFoundError: project missing or not owned by *user_id*.
        BadRequestError: empty prompt, or nothing to resume.
        ConflictError: a build is already running for the project.
    """
    project = await _load_owned(project_id, user_id)
    if resume:
        if not project.build_state.phases:
            raise BadRequestError("Nothing to resume: the project has no build plan")
    elif not prompt or not prompt.strip():
        raise BadRequestError("Prompt is required")

    await _launch(
        project,
        prompt,
        images,
        lambda s: s.start(is_resume=resume),
        user_message=None if resume else prompt,
    )
    logger.info("Build %s for project %s", "resumed" if resume else "started", project_id)
    return {"project_id": str(project_id), "status": "generating", "resume": resume}


async def repair_build(project_id: UUID, user_id: UUID, error: str) -> dict:
    """Run one repair cycle for *error* in the background."""
    if not error or not error.strip():
        raise BadRequestError("Error context is required")
    project = await _load_owned(project_id, user_id)
    await _launch(project, error, None, lambda s: s.repair(error))
    logger.info("Repair started for project %s", project_id)
    return {"project_id": str(project_id), "status": "generating"}


async def cancel_build(project_id: UUID, user_id: UUID) -> dict:
    """Raise the cancellation token of the project's running build."""
    await _load_owned(project_id, user_id)
    if not _jobs.cancel(str(project_id)):
        raise BadRequestError("No active build to cancel")
    return {"project_id": str(project_id), "status": "cancelling"}


async def report_preview(
    project_id: UUID,
    user_id: UUID,
    *,
    success: bool,
    error: str | None = None,
    health: str | None = None,
    revision: int | None = None,
) -> dict:
    """Deliver the preview surface's boot report to a waiting build."""
    await _load_owned(project_id, user_id)
    gate = _preview_gates.get(str(project_id))
    if gate is None:
        return {"accepted": False}
    result = PreviewResult(
        success=success,
        error=error,
        health=health or ("healthy" if success else "error"),
    )
    return {"accepted": gate.report(result, revision)}


async def get_build_status(project_id: UUID, user_id: UUID) -> dict:
    project = await _load_owned(project_id, user_id)
    return {
        "project_id": str(project_id),
        "status": project.status,
        "active": _jobs.is_active(str(project_id)),
        "build_state": project.build_state.model_dump(mode="json"),
    }


async def generate_title(prompt: str, *, user_id: UUID | None = None) -> str:
    """Short project title from the titling stage, or DEFAULT_TITLE."""
    executor = StepExecutor(
        ProviderRouter(),
        PromptResolver(_prompt_cache),
        CancellationToken(),
        max_attempts=1,
        user_id=user_id,
    )
    try:
        result = await executor.run(Stage.TITLE, prompt)
    except SynthError as exc:
        logger.warning("Title generation failed: %s", exc)
        return DEFAULT_TITLE
    title = result.get("title") if isinstance(result, dict) else result
    if not isinstance(title, str) or not title.strip():
        return DEFAULT_TITLE
    return title.strip().strip('"')[:_MAX_TITLE_LEN]


async def shutdown() -> None:
    """Cancel every running build (call from lifespan shutdown)."""
    await _jobs.shutdown()
    _preview_gates.clear()

"""Generation supervisor -- the build state machine for one project run.

    Classify ──chat──────────────▶ Succeeded (no file changes)
       │ ──cloud_setup─────────▶ ActionRequired
       │ ──repair──────────────▶ repair cycle
       ▼ build
    Design ─▶ Requirements gate ──backend missing──▶ ActionRequired
       ▼
    Phase planning ─▶ phases ─▶ steps ─▶ runtime validation
                                              │ pass ─▶ Succeeded
                                              ▼ fail
                                         repair cycle ─▶ validate once
                                              │ pass ─▶ Succeeded
                                              ▼ fail
                                         FinalFailed ("Repair failed: ...")

``start`` and ``repair`` are the only entry points.  Both report through
the event sink and end with exactly one terminal event.  No exception
escapes them: cancellation becomes :class:`BuildCancelled`, anything else
becomes :class:`FinalFailed`.

Phases and steps run strictly in planner order.  Each builder call sees
the files written by every earlier step, so nothing here runs in
parallel.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable
from uuid import uuid4

from pydantic import ValidationError

from appsynth.config import settings
from appsynth.errors import (
    Aborted,
    MalformedResponse,
    MissingDependency,
    RepairFailed,
    RepairLimitReached,
    RuntimeValidationFailed,
)
from appsynth.services.build.cancellation import CancellationToken
from appsynth.services.build.events import (
    ActionRequired,
    AIDebugLogged,
    BuildCancelled,
    BuildEvent,
    ChunkCompleted,
    EventSink,
    FinalFailed,
    MessageUpserted,
    PhaseCompleted,
    PhaseFailed,
    PhaseStarted,
    PlanUpdated,
    RepairStarted,
    StateCheckpoint,
    StepCompleted,
    StepRetried,
    StepStarted,
    Succeeded,
)
from appsynth.services.build.file_set import FileSet, normalize_path
from appsynth.services.build.models import (
    PHASE_KINDS,
    BuildAudit,
    BuildState,
    FileChange,
    Message,
    Phase,
    Project,
    Step,
    StepRecord,
)
from appsynth.services.build.runtime_check import RuntimeValidator, validate
from appsynth.services.build.stages import MessageKey, Stage
from appsynth.services.build.step_executor import StepExecutor
from appsynth.services.language import detect_language, language_directive
from appsynth.services.prompt_resolver import PromptResolver
from appsynth.services.provider_router import ProviderRouter

logger = logging.getLogger(__name__)

INTENTS = ("chat", "build", "repair", "cloud_setup")

CONNECT_DATABASE = "CONNECT_DATABASE"
BACKEND_REQUIRED_MESSAGE = (
    "**Backend Required**\n\n"
    "This project requires a database. Please connect a backend to proceed."
)
CLOUD_SETUP_MESSAGE = (
    "**Backend Connection**\n\n"
    "Connect a backend to your project, then send your request again."
)
DEFAULT_NARRATIVE = "I've analyzed your request and I'm starting the build now."
SCHEMA_PATH = "supabase/schema.sql"

# Status line posted once the request is classified
INTENT_MESSAGES = {
    "build": "Got it. Designing your app...",
    "repair": "Looking into the problem...",
}


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _as_dict(value: Any, stage: str) -> dict:
    if not isinstance(value, dict):
        raise MalformedResponse(f"Stage {stage} returned {type(value).__name__}, expected an object")
    return value


def _items(value: Any, key: str) -> list:
    """``value[key]`` when *value* is an object, *value* itself when a list."""
    if isinstance(value, dict):
        value = value.get(key)
    return value if isinstance(value, list) else []


def parse_phases(plan: Any) -> list[Phase]:
    phases = []
    for raw in _items(plan, "phases"):
        if not isinstance(raw, dict):
            continue
        kind = raw.get("type") or raw.get("kind")
        phases.append(Phase(
            id=str(uuid4()),
            title=str(raw.get("title") or f"Phase {len(phases) + 1}"),
            description=str(raw.get("description") or raw.get("goal") or ""),
            kind=kind if kind in PHASE_KINDS else "ui",
        ))
    return phases


def parse_steps(plan: Any) -> list[Step]:
    steps = []
    for raw in _items(plan, "steps"):
        if not isinstance(raw, dict):
            continue
        path = raw.get("path") or raw.get("file") or raw.get("filepath")
        if not path or not isinstance(path, str):
            logger.warning("Skipping build step with no path: %s", raw)
            continue
        path = normalize_path(path)
        deps = raw.get("dependencies") or raw.get("depends_on") or []
        if isinstance(deps, str):
            deps = [deps]
        steps.append(Step(
            path=path,
            task=str(raw.get("description") or raw.get("title") or f"Build {path}"),
            dependencies=[normalize_path(d) for d in deps if isinstance(d, str) and d.strip()],
        ))
    return steps


def parse_changes(result: Any, key: str) -> list[FileChange]:
    changes = []
    for raw in _items(result, key):
        if not isinstance(raw, dict):
            continue
        try:
            changes.append(FileChange.model_validate(raw))
        except ValidationError:
            logger.warning("Ignoring malformed file change: %s", str(raw)[:200])
    return changes


def detect_routes(design: dict | None) -> list[str]:
    routes = []
    for route in _items(design or {}, "routes"):
        if isinstance(route, str):
            routes.append(route)
        elif isinstance(route, dict) and isinstance(route.get("path"), str):
            routes.append(route["path"])
    return routes


class GenerationSupervisor:
    """Drives one build (or one repair) of a project to a terminal event."""

    def __init__(
        self,
        project: Project,
        prompt: str,
        *,
        router: ProviderRouter,
        resolver: PromptResolver,
        sink: EventSink,
        token: CancellationToken | None = None,
        validator: RuntimeValidator | None = None,
        images: list[str] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        preview_timeout_ms: int | None = None,
        max_repair_cycles: int | None = None,
        context_chars: int | None = None,
        allow_forward_dependencies: bool | None = None,
    ) -> None:
        self.project = project
        self.token = token or CancellationToken()
        self.state: BuildState = project.build_state.model_copy(deep=True)
        # A blank prompt (resume) continues the stored request
        self.prompt = prompt if prompt and prompt.strip() else (self.state.request or "")
        self.files = FileSet(project.files, self.state.entry_path)
        self._sink = sink
        self._validator = validator
        self._preview_timeout_ms = preview_timeout_ms or settings.PREVIEW_TIMEOUT_MS
        self._max_repair_cycles = max_repair_cycles or settings.MAX_REPAIR_CYCLES
        self._context_chars = context_chars or settings.BUILDER_CONTEXT_CHARS
        self._allow_forward = (
            settings.ALLOW_FORWARD_DEPENDENCIES
            if allow_forward_dependencies is None
            else allow_forward_dependencies
        )
        self._requirements: dict = self.state.requirements or {"needs_backend": self.state.needs_backend}
        # Logical message key -> message id, stable for this run
        self._message_ids: dict[str, str] = {}
        self._last_message_id: str | None = None
        self._stage = ""
        self._done = False

        self.language = detect_language(self.prompt)
        self._executor = StepExecutor(
            router,
            resolver,
            self.token,
            on_error=self._on_step_error,
            on_debug=self._on_debug,
            language_directive=language_directive(self.language),
            max_attempts=max_attempts,
            retry_delay=retry_delay,
            sleep=sleep,
            images=images,
            project_id=project.id,
            user_id=project.user_id,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def start(self, is_resume: bool = False) -> None:
        """Run a build.  On resume, phases already completed are skipped."""
        await self._guarded(self._start(is_resume))

    async def repair(self, error: str) -> None:
        """Run one repair cycle for *error* and re-validate once."""
        await self._guarded(self._repair_entry(error))

    async def _guarded(self, run: Awaitable[None]) -> None:
        try:
            await run
        except Aborted as exc:
            logger.info("Build for project %s cancelled: %s", self.project.id, exc)
            await self._checkpoint()
            await self._terminate(BuildCancelled(reason=str(exc)))
        except Exception as exc:
            logger.error("Build for project %s failed: %s", self.project.id, exc, exc_info=True)
            await self._fail(str(exc) or type(exc).__name__)

    # ------------------------------------------------------------------
    # Event plumbing
    # ------------------------------------------------------------------

    async def _emit(self, event: BuildEvent) -> None:
        await self._sink.emit(event)

    async def _terminate(self, event: BuildEvent) -> None:
        if self._done:
            logger.warning("Dropping second terminal event %s", event.type)
            return
        self._done = True
        await self._emit(event)

    async def _post(self, key: str, content: str, *, requires_action: str | None = None) -> Message:
        """Upsert the status message for logical *key*."""
        message = Message(
            id=self._message_ids.setdefault(key, str(uuid4())),
            key=key,
            content=content,
            requires_action=requires_action,
        )
        self._last_message_id = message.id
        await self._emit(MessageUpserted(message=message))
        return message

    async def _checkpoint(self) -> None:
        self.state.entry_path = self.files.entry_path
        await self._emit(StateCheckpoint(state=self.state.model_copy(deep=True)))

    async def _step_started(self, phase_index: int | None, title: str, **details: Any) -> None:
        await self._emit(StepStarted(phase_index=phase_index, title=title, vars=details))

    async def _chunk(self, explanation: str) -> None:
        await self._emit(ChunkCompleted(
            files=self.files.snapshot(),
            explanation=explanation,
            revision=self.files.revision,
            entry_path=self.files.entry_path,
        ))

    async def _on_step_error(self, message: str, remaining: int) -> None:
        await self._emit(StepRetried(stage=self._stage, error=message, remaining_attempts=remaining))

    async def _on_debug(self, log: dict) -> None:
        await self._emit(AIDebugLogged(**log, message_id=self._last_message_id))

    async def _run(self, stage: str, payload: Any, *, with_images: bool = False) -> Any:
        self._stage = stage
        prompt = payload if isinstance(payload, str) else _dumps(payload)
        return await self._executor.run(stage, prompt, with_images=with_images)

    # ------------------------------------------------------------------
    # Build flow
    # ------------------------------------------------------------------

    async def _start(self, is_resume: bool) -> None:
        self.token.raise_if_cancelled()
        if is_resume and self.state.phases:
            logger.info("Resuming build for project %s", self.project.id)
            for phase in self.state.phases:
                if phase.status == "failed":
                    phase.status = "retrying"
                    phase.retry_count += 1
            await self._emit(PlanUpdated(phases=[p.model_copy() for p in self.state.phases]))
            await self._execute_plan()
            return

        await self._step_started(None, "Analyzing Intent...")
        decision = _as_dict(
            await self._run(Stage.CLASSIFY, f"USER REQUEST: {self.prompt}", with_images=True),
            Stage.CLASSIFY,
        )
        intent = str(decision.get("intent") or "build").lower()
        if intent not in INTENTS:
            logger.warning("Unknown intent %r, treating as build", intent)
            intent = "build"
        logger.info("Project %s: intent=%s", self.project.id, intent)
        if intent in INTENT_MESSAGES:
            await self._post(MessageKey.INTENT, INTENT_MESSAGES[intent])

        if intent == "chat":
            reply = str(decision.get("direct_response") or decision.get("response") or "")
            await self._post(MessageKey.CHAT, reply)
            await self._terminate(Succeeded(
                files=self.files.snapshot(),
                explanation=reply,
                audit=BuildAudit.success(),
                meta={"intent": "chat"},
            ))
            return
        if intent == "cloud_setup":
            await self._require_action(CLOUD_SETUP_MESSAGE)
            return
        if intent == "repair":
            await self._repair_cycle(self.prompt)
            return

        # A new build: fresh state, fresh repair budget
        self.state = BuildState(request=self.prompt, decision=decision, entry_path=self.files.entry_path)

        await self._step_started(None, "Designing UI/UX...")
        design = _as_dict(await self._run(Stage.DESIGN, {
            "user_input": self.prompt,
            "decision": decision,
            "existing_files": self.files.paths(),
        }, with_images=True), Stage.DESIGN)
        self.state.design = design

        await self._step_started(None, "Checking Requirements...")
        requirements = _as_dict(await self._run(
            Stage.REQUIREMENTS,
            f"Analyze backend needs: {self.prompt}\n\nDECISION_CONTEXT: {_dumps(decision)}",
        ), Stage.REQUIREMENTS)
        self._requirements = requirements
        self.state.requirements = requirements
        self.state.needs_backend = bool(requirements.get("needs_backend") or requirements.get("backendRequired"))
        if self.state.needs_backend and not self.project.backend_connected:
            await self._require_action(BACKEND_REQUIRED_MESSAGE)
            return

        analysis = decision.get("analysis") if isinstance(decision.get("analysis"), dict) else {}
        narrative = decision.get("narrative_summary") or analysis.get("summary") or DEFAULT_NARRATIVE
        await self._post(MessageKey.PLAN, f"**Plan Confirmed:**\n\n{narrative}")

        await self._step_started(None, "Planning Phases...")
        plan = await self._run(Stage.PHASE_PLANNER, {
            "request": self.prompt,
            "analysis": decision,
            "design": design,
            "requirements": requirements,
        })
        phases = parse_phases(plan)
        if not phases:
            raise MalformedResponse("Phase planner returned no phases")
        self.state.phases = phases
        await self._emit(PlanUpdated(phases=[p.model_copy() for p in phases]))
        await self._checkpoint()

        await self._execute_plan()

    async def _require_action(self, content: str) -> None:
        await self._post(MessageKey.ACTION, content, requires_action=CONNECT_DATABASE)
        await self._terminate(ActionRequired(action=CONNECT_DATABASE, message=content))

    async def _execute_plan(self) -> None:
        for index, phase in enumerate(self.state.phases):
            if phase.status in ("completed", "skipped"):
                logger.debug("Skipping %s phase %d", phase.status, index)
                continue
            self.token.raise_if_cancelled()
            await self._run_phase(index, phase)

        if self.state.needs_backend and self.project.backend_connected:
            await self._generate_schema()

        try:
            await self._validate()
        except RuntimeValidationFailed as exc:
            error = str(exc)
        else:
            await self._succeed()
            return
        await self._repair_cycle(error)

    async def _validate(self) -> None:
        result = await validate(self.files, self._validator, self._preview_timeout_ms)
        if not result.success:
            raise RuntimeValidationFailed(result.error or "Preview failed to render.")

    async def _run_phase(self, index: int, phase: Phase) -> None:
        phase.status = "active"
        await self._emit(PhaseStarted(index=index, title=phase.title))
        await self._post(MessageKey.phase(index), f"Working on **{phase.title}**...")
        try:
            await self._step_started(index, f"Planning {phase.title}...")
            plan = await self._run(Stage.STEP_PLANNER, {
                "phase": phase.model_dump(),
                "design": self.state.design,
                "user_request": self.prompt,
                "existing_files": self.files.paths(),
            })
            for step in parse_steps(plan):
                self.token.raise_if_cancelled()
                await self._build_step(index, phase, step)
        except Aborted:
            phase.status = "pending"
            raise
        except Exception as exc:
            phase.status = "failed"
            await self._emit(PhaseFailed(index=index, error=str(exc)))
            raise

        phase.status = "completed"
        await self._emit(PhaseCompleted(index=index))
        await self._post(MessageKey.phase(index), f"**{phase.title}** complete.")
        await self._checkpoint()

    async def _build_step(self, index: int, phase: Phase, step: Step) -> None:
        missing = [d for d in step.dependencies if d not in self.files]
        if missing:
            if not self._allow_forward:
                raise MissingDependency(step.path, missing)
            logger.warning("Step %s depends on files not built yet: %s", step.path, missing)

        await self._step_started(index, f"Building {step.path}...", path=step.path)
        result = await self._run(Stage.BUILDER, {
            "task": step.task,
            "file_path": step.path,
            "design": self.state.design,
            "existing_files": self.files.context_view(self._context_chars),
            "phase": phase.id,
        })
        written = self.files.apply(parse_changes(result, "file_changes"))
        logger.info("Step %s wrote %d file(s)", step.path, len(written))
        self.state.step_log.append(StepRecord(phase_index=index, path=step.path, written=written))

        await self._emit(StepCompleted(phase_index=index, step_name=step.path))
        await self._chunk(f"Built {step.path}")

    async def _generate_schema(self) -> None:
        self.token.raise_if_cancelled()
        await self._step_started(None, "Generating Database Schema...")
        result = await self._run(Stage.SQL, {
            "requirements": self._requirements,
            "decision": self.state.decision,
        })
        sql = result.get("sql") if isinstance(result, dict) else None
        if not isinstance(sql, str) or not sql.strip():
            logger.warning("SQL stage returned no schema")
            return
        self.files.apply([FileChange(path=SCHEMA_PATH, action="update", content=sql)])
        await self._chunk("Generated database schema")

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    async def _repair_entry(self, error: str) -> None:
        self.token.raise_if_cancelled()
        await self._repair_cycle(error)

    async def _repair_cycle(self, error: str) -> None:
        if self.state.repair_cycles >= self._max_repair_cycles:
            raise RepairLimitReached(self._max_repair_cycles)
        self.state.repair_cycles += 1
        self.state.last_error = error
        logger.info("Repair cycle %d for project %s: %s", self.state.repair_cycles, self.project.id, error)
        await self._emit(RepairStarted(cycle=self.state.repair_cycles, error=error))
        await self._post(MessageKey.REPAIR, f"**Repairing**\n\n{error}")

        await self._step_started(None, "Applying Repairs...")
        try:
            result = await self._run(Stage.REPAIR, {
                "error": error,
                "files": self.files.context_view(self._context_chars),
            })
            self.files.apply(parse_changes(result, "patches"))
        except Aborted:
            raise
        except Exception as exc:
            raise RepairFailed(str(exc)) from exc
        await self._chunk("Applied repair patches")
        await self._checkpoint()

        try:
            await self._validate()
        except RuntimeValidationFailed as exc:
            raise RepairFailed(str(exc)) from exc
        await self._succeed()

    # ------------------------------------------------------------------
    # Terminal outcomes
    # ------------------------------------------------------------------

    async def _succeed(self) -> None:
        audit = BuildAudit.success(detect_routes(self.state.design))
        self.state.audit = audit
        self.state.last_error = None
        decision = self.state.decision or {}
        analysis = decision.get("analysis") if isinstance(decision.get("analysis"), dict) else {}
        summary = analysis.get("summary") or "Project built successfully."

        await self._post(MessageKey.RESULT, "**Build Complete**\n\nYour project is ready!")
        await self._checkpoint()
        await self._terminate(Succeeded(
            files=self.files.snapshot(),
            explanation=f"**Build Complete**\n\n{summary}",
            audit=audit,
            meta={
                "entry_path": self.files.entry_path,
                "revision": self.files.revision,
                "repair_cycles": self.state.repair_cycles,
            },
        ))

    async def _fail(self, message: str) -> None:
        if self._done:
            logger.warning("Failure after terminal event ignored: %s", message)
            return
        audit = BuildAudit.failure(message)
        self.state.audit = audit
        self.state.last_error = message
        await self._post(MessageKey.RESULT, f"**Build Failed**\n\n{message}")
        await self._checkpoint()
        await self._terminate(FinalFailed(message=message, audit=audit))

"""Typed build events.

The supervisor reports progress as one ordered stream of these events,
delivered to an :class:`EventSink`.  ``emit`` is awaited, so a sink sees
events strictly in emission order and the supervisor does not move on
until the sink has handled each one.

Terminal events: :class:`Succeeded`, :class:`FinalFailed`,
:class:`ActionRequired` and :class:`BuildCancelled`.  Exactly one of them
ends every ``start`` / ``repair`` run.
"""

from datetime import datetime, timezone
from typing import Literal, Protocol, Union

from pydantic import BaseModel, Field

from appsynth.services.build.models import BuildAudit, BuildState, Message, Phase, ProjectFile


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Event(BaseModel):
    at: datetime = Field(default_factory=_now)

    def to_payload(self) -> dict:
        """WebSocket shape: ``{"type": ..., "payload": {...}}``."""
        data = self.model_dump(mode="json", exclude={"type"})
        return {"type": self.type, "payload": data}  # type: ignore[attr-defined]


class PlanUpdated(_Event):
    type: Literal["plan_updated"] = "plan_updated"
    phases: list[Phase]


class MessageUpserted(_Event):
    type: Literal["message_upserted"] = "message_upserted"
    message: Message


class PhaseStarted(_Event):
    type: Literal["phase_started"] = "phase_started"
    index: int
    title: str


class PhaseCompleted(_Event):
    type: Literal["phase_completed"] = "phase_completed"
    index: int


class PhaseFailed(_Event):
    type: Literal["phase_failed"] = "phase_failed"
    index: int
    error: str


class StepStarted(_Event):
    """A stage call is about to run.  ``phase_index`` is None before phases exist."""

    type: Literal["step_started"] = "step_started"
    phase_index: int | None = None
    title: str
    vars: dict = Field(default_factory=dict)


class StepCompleted(_Event):
    type: Literal["step_completed"] = "step_completed"
    phase_index: int
    step_name: str


class ChunkCompleted(_Event):
    """File set changed; the preview should reload ``files``."""

    type: Literal["chunk_completed"] = "chunk_completed"
    files: list[ProjectFile]
    explanation: str
    revision: int
    entry_path: str | None = None


class StepRetried(_Event):
    type: Literal["step_retried"] = "step_retried"
    stage: str
    error: str
    remaining_attempts: int


class AIDebugLogged(_Event):
    type: Literal["ai_debug"] = "ai_debug"
    stage: str
    provider: str
    model: str
    system_instruction: str
    prompt: str
    response: str
    message_id: str | None = None


class RepairStarted(_Event):
    type: Literal["repair_started"] = "repair_started"
    cycle: int
    error: str


class StateCheckpoint(_Event):
    """Snapshot of the build state for persistence and resume."""

    type: Literal["state_checkpoint"] = "state_checkpoint"
    state: BuildState


class Succeeded(_Event):
    type: Literal["build_succeeded"] = "build_succeeded"
    files: list[ProjectFile]
    explanation: str
    audit: BuildAudit
    meta: dict = Field(default_factory=dict)


class FinalFailed(_Event):
    type: Literal["build_failed"] = "build_failed"
    message: str
    audit: BuildAudit | None = None


class ActionRequired(_Event):
    """The run stopped until the user acts (e.g. connects a backend)."""

    type: Literal["action_required"] = "action_required"
    action: str
    message: str


class BuildCancelled(_Event):
    type: Literal["build_cancelled"] = "build_cancelled"
    reason: str = "Build cancelled"


BuildEvent = Union[
    PlanUpdated,
    MessageUpserted,
    PhaseStarted,
    PhaseCompleted,
    PhaseFailed,
    StepStarted,
    StepCompleted,
    ChunkCompleted,
    StepRetried,
    AIDebugLogged,
    RepairStarted,
    StateCheckpoint,
    Succeeded,
    FinalFailed,
    ActionRequired,
    BuildCancelled,
]

TERMINAL_EVENTS = (Succeeded, FinalFailed, ActionRequired, BuildCancelled)


class EventSink(Protocol):
    async def emit(self, event: BuildEvent) -> None: ...

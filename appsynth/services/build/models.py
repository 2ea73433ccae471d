"""Domain models for the generation pipeline."""

from datetime import datetime, timezone
from typing import Any, Literal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

ProjectStatus = Literal["idle", "generating", "failed"]
PhaseStatus = Literal["pending", "active", "completed", "failed", "skipped", "retrying"]
PhaseKind = Literal["skeleton", "ui", "logic", "backend"]
PreviewHealth = Literal["healthy", "blank", "error"]
ChangeAction = Literal["create", "update", "delete"]

PHASE_KINDS: frozenset[str] = frozenset({"skeleton", "ui", "logic", "backend"})


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ProjectFile(BaseModel):
    path: str
    content: str = ""
    kind: Literal["file", "folder"] = "file"


class FileChange(BaseModel):
    """One entry of a builder's ``file_changes`` or a repair's ``patches``."""

    model_config = ConfigDict(extra="ignore")

    path: str = Field(validation_alias=AliasChoices("path", "file", "filepath"))
    action: ChangeAction = "update"
    content: str = ""
    is_entry: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_entry", "isEntry", "entry", "entry_point"),
    )

    @field_validator("action", mode="before")
    @classmethod
    def _normalise_action(cls, value: Any) -> str:
        action = str(value or "update").lower()
        return action if action in ("create", "update", "delete") else "update"

    @field_validator("content", mode="before")
    @classmethod
    def _stringify_content(cls, value: Any) -> str:
        return "" if value is None else str(value)


class Phase(BaseModel):
    id: str
    title: str
    description: str = ""
    status: PhaseStatus = "pending"
    retry_count: int = 0
    kind: PhaseKind = "ui"


class Step(BaseModel):
    """One unit of work inside a phase.  Not persisted on its own."""

    path: str
    task: str
    dependencies: list[str] = Field(default_factory=list)


class StepRecord(BaseModel):
    """A finished builder step, as kept in the build state's step log."""

    phase_index: int
    path: str
    written: list[str] = Field(default_factory=list)
    completed_at: datetime = Field(default_factory=_now)


class AuditIssue(BaseModel):
    severity: Literal["info", "warning", "error"] = "error"
    message: str


class BuildAudit(BaseModel):
    score: int
    passed: bool
    issues: list[AuditIssue] = Field(default_factory=list)
    preview_health: PreviewHealth = "healthy"
    routes_detected: list[str] = Field(default_factory=list)

    @classmethod
    def success(cls, routes: list[str] | None = None) -> "BuildAudit":
        return cls(score=100, passed=True, preview_health="healthy", routes_detected=routes or [])

    @classmethod
    def failure(cls, message: str) -> "BuildAudit":
        return cls(
            score=0,
            passed=False,
            issues=[AuditIssue(severity="error", message=message)],
            preview_health="error",
        )


class Message(BaseModel):
    id: str
    key: str | None = None
    role: Literal["user", "assistant", "system"] = "assistant"
    content: str
    requires_action: str | None = None
    timestamp: datetime = Field(default_factory=_now)


class BuildState(BaseModel):
    """What a resumed or repaired run needs from the previous one."""

    model_config = ConfigDict(extra="ignore")

    request: str | None = None
    phases: list[Phase] = Field(default_factory=list)
    design: dict | None = None
    decision: dict | None = None
    requirements: dict | None = None
    needs_backend: bool = False
    step_log: list[StepRecord] = Field(default_factory=list)
    entry_path: str | None = None
    repair_cycles: int = 0
    last_error: str | None = None
    audit: BuildAudit | None = None


class Project(BaseModel):
    """A project as the supervisor sees it."""

    model_config = ConfigDict(extra="ignore")

    id: UUID
    user_id: UUID
    title: str = "New Project"
    status: ProjectStatus = "idle"
    files: list[ProjectFile] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)
    build_state: BuildState = Field(default_factory=BuildState)
    backend_connected: bool = False

    @field_validator("build_state", mode="before")
    @classmethod
    def _empty_state(cls, value: Any) -> Any:
        return value or {}

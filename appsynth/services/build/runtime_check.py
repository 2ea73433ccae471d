"""Runtime validation -- does the assembled file set actually boot?

Two checks, in order:

1. Structural: an entry point was recorded, or a conventional entry file
   exists.  Without one the preview has nothing to load.
2. Behavioural: when a :class:`RuntimeValidator` is configured, wait (time
   boxed) for the preview surface to report whether the latest file set
   rendered.  A timeout is a failure.

The preview surface lives outside this service.  It receives the file
set through ``chunk_completed`` events and reports back over HTTP; the
:class:`PreviewReportGate` turns those reports into an awaitable.
"""

import asyncio
import logging
from typing import Protocol

from pydantic import BaseModel

from appsynth.services.build.file_set import FileSet
from appsynth.services.build.models import PreviewHealth

logger = logging.getLogger(__name__)

NO_ENTRY_POINT_ERROR = (
    "No runtime entry point: the project has no declared entry file and none "
    "of src/main.tsx, src/index.tsx, src/main.jsx, src/index.jsx, main.tsx, "
    "index.tsx exists. Create an entry file that mounts the root component."
)
BLANK_PREVIEW_ERROR = "Preview rendered a blank page."

# Slack on top of the validator's own timeout before we stop waiting
_GRACE_S = 1.0


class PreviewResult(BaseModel):
    success: bool
    error: str | None = None
    health: PreviewHealth = "healthy"

    @classmethod
    def failed(cls, error: str, health: PreviewHealth = "error") -> "PreviewResult":
        return cls(success=False, error=error, health=health)


class RuntimeValidator(Protocol):
    async def wait_for_preview(self, timeout_ms: int) -> PreviewResult | None: ...


async def validate(
    files: FileSet,
    validator: RuntimeValidator | None,
    timeout_ms: int,
) -> PreviewResult:
    """Check that *files* is bootable.  Never raises for a failed check."""
    if not files.has_entry_point():
        logger.info("Runtime validation: no entry point among %d files", len(files))
        return PreviewResult.failed(NO_ENTRY_POINT_ERROR)
    if validator is None:
        return PreviewResult(success=True)

    try:
        result = await asyncio.wait_for(
            validator.wait_for_preview(timeout_ms),
            timeout=timeout_ms / 1000 + _GRACE_S,
        )
    except asyncio.TimeoutError:
        result = None
    if result is None:
        logger.warning("Preview did not report within %d ms", timeout_ms)
        return PreviewResult.failed(f"Preview did not report within {timeout_ms} ms")
    if not result.success or result.health != "healthy":
        logger.info("Preview reported failure (%s): %s", result.health, result.error)
        if result.health == "blank":
            return PreviewResult.failed(result.error or BLANK_PREVIEW_ERROR, "blank")
        return PreviewResult.failed(result.error or "Preview failed to render.")
    return result


class PreviewReportGate:
    """One project's pending preview report.

    The build side calls :meth:`expect` whenever it publishes a new file
    set and tells the preview the returned revision.  The HTTP side calls
    :meth:`report`.  Reports tagged with an older revision are dropped so
    a slow report about a previous file set cannot pass the current one.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._result: PreviewResult | None = None
        self._revision = 0

    @property
    def revision(self) -> int:
        return self._revision

    def expect(self) -> int:
        """Start waiting for a report on a new file set.  Returns its revision."""
        self._revision += 1
        self._result = None
        self._event.clear()
        return self._revision

    def report(self, result: PreviewResult, revision: int | None = None) -> bool:
        """Deliver a report.  Returns False when it was stale and ignored."""
        if revision is not None and revision < self._revision:
            logger.debug("Dropping stale preview report (rev %d < %d)", revision, self._revision)
            return False
        self._result = result
        self._event.set()
        return True

    async def wait_for_preview(self, timeout_ms: int) -> PreviewResult | None:
        """The latest report, or None if none arrives within *timeout_ms*."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            return None
        return self._result

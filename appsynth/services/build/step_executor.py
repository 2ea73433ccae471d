"""Step executor -- one LLM-backed pipeline stage with bounded retries.

``run(stage_key, prompt)`` resolves the stage's system instruction, calls
the provider router (which may itself fall back once) and extracts JSON
from the answer.  The call -> extract pipeline is attempted up to
``max_attempts`` times with a fixed pause in between.

Not retried:
    MissingConfiguration -- raised before the first attempt.
    UnknownProvider      -- a configuration defect, raised at once.
    Aborted              -- the token is checked before every attempt and
                            again once a call returns; a result that
                            arrives after cancellation is discarded.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable
from uuid import UUID

from appsynth.config import settings
from appsynth.errors import MalformedResponse, ProviderCallFailed
from appsynth.services.build.cancellation import CancellationToken
from appsynth.services.json_extractor import extract
from appsynth.services.prompt_resolver import PromptResolver
from appsynth.services.provider_router import ProviderRouter

logger = logging.getLogger(__name__)

# Errors worth another attempt
RETRYABLE_ERRORS = (ProviderCallFailed, MalformedResponse)

ErrorObserver = Callable[[str, int], Awaitable[None]]
DebugObserver = Callable[[dict], Awaitable[None]]


class StepExecutor:
    def __init__(
        self,
        router: ProviderRouter,
        resolver: PromptResolver,
        token: CancellationToken,
        *,
        on_error: ErrorObserver | None = None,
        on_debug: DebugObserver | None = None,
        language_directive: str = "",
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        images: list[str] | None = None,
        project_id: UUID | None = None,
        user_id: UUID | None = None,
    ) -> None:
        self._router = router
        self._resolver = resolver
        self._token = token
        self._on_error = on_error
        self._on_debug = on_debug
        self._directive = language_directive
        self._max_attempts = max_attempts or settings.STEP_MAX_ATTEMPTS
        self._retry_delay = settings.STEP_RETRY_DELAY_S if retry_delay is None else retry_delay
        self._sleep = sleep
        self._images = list(images or [])
        self._project_id = project_id
        self._user_id = user_id

    async def run(self, stage_key: str, prompt: str, *, with_images: bool = False) -> Any:
        """Run *stage_key* on *prompt* and return the parsed JSON object.

        Images ride along only when *with_images* is set (the stages that
        read the request itself).  Raises the last error once every
        attempt has failed.
        """
        system_instruction = await self._resolver.resolve(stage_key)
        if self._directive:
            system_instruction = f"{self._directive}\n\n{system_instruction}"
        images = self._images if with_images else None

        attempt = 1
        while True:
            self._token.raise_if_cancelled()
            try:
                text, usage = await self._router.call_with_fallback(
                    prompt,
                    system_instruction,
                    images,
                    operation=stage_key,
                    project_id=self._project_id,
                    user_id=self._user_id,
                )
                self._token.raise_if_cancelled()
                result = extract(text)
            except RETRYABLE_ERRORS as exc:
                remaining = self._max_attempts - attempt
                if remaining <= 0:
                    logger.error("Stage %s failed after %d attempts: %s", stage_key, attempt, exc)
                    raise
                logger.warning(
                    "Stage %s attempt %d/%d failed: %s",
                    stage_key, attempt, self._max_attempts, exc,
                )
                if self._on_error is not None:
                    await self._on_error(str(exc), remaining)
                await self._sleep(self._retry_delay)
                attempt += 1
                continue

            if self._on_debug is not None:
                await self._on_debug({
                    "stage": stage_key,
                    "provider": usage.provider,
                    "model": usage.model,
                    "system_instruction": system_instruction,
                    "prompt": prompt,
                    "response": text,
                })
            return result

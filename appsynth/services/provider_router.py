"""Provider router -- one model call against the active provider, with fallback.

Every provider implements the same :class:`Provider` interface
(``call(config, prompt, system_instruction, images) -> (text, usage)``)
and owns its own request shaping: image encoding, JSON mode, and the
parameter differences of reasoning models.  The router depends only on
that interface.

:meth:`ProviderRouter.call_with_fallback` makes at most two upstream
calls per invocation, primary then fallback, strictly in sequence.
Usage is recorded only for the provider that actually answered.
"""

import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable
from uuid import UUID

import httpx

from appsynth.clients import llm_client
from appsynth.config import settings
from appsynth.errors import ProviderCallFailed, SynthError, UnknownProvider
from appsynth.repos import usage_repo
from appsynth.services import provider_service
from appsynth.services.pricing import estimate_cost
from appsynth.services.provider_service import AIProviderConfig, AIUsageResult

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Image helpers
# ---------------------------------------------------------------------------

# Leading base64 characters of common image formats
_MAGIC_PREFIXES: tuple[tuple[str, str], ...] = (
    ("iVBORw", "image/png"),
    ("R0lGOD", "image/gif"),
    ("UklGR", "image/webp"),
    ("/9j/", "image/jpeg"),
)


def split_image(image: str) -> tuple[str, str]:
    """Return ``(mime_type, base64_data)`` for a data URI or raw base64 string."""
    if "base64," in image:
        header, data = image.split("base64,", 1)
        if header.startswith("data:"):
            mime = header[5:].rstrip(";")
            if mime.startswith("image/"):
                return mime, data
    else:
        data = image
    for prefix, mime in _MAGIC_PREFIXES:
        if data.startswith(prefix):
            return mime, data
    return "image/jpeg", data


def _is_reasoning_model(model: str) -> bool:
    """o-series and gpt-5 models reject temperature and ``max_tokens``."""
    name = model.lower()
    return name.startswith(("o1", "o3", "o4", "gpt-5"))


def _mentions_json(system_instruction: str) -> bool:
    return "json" in system_instruction.lower()


# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


class Provider(ABC):
    """A model backend able to answer one prompt."""

    id: str = ""
    default_model: str = ""

    @abstractmethod
    async def call(
        self,
        config: AIProviderConfig,
        prompt: str,
        system_instruction: str,
        images: list[str],
    ) -> tuple[str, AIUsageResult]:
        """Send one request and return the response text and its usage."""

    def _usage(self, model: str, result: dict) -> AIUsageResult:
        usage = result.get("usage", {})
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)
        return AIUsageResult(
            prompt_tokens=input_tokens,
            completion_tokens=output_tokens,
            cost_usd=estimate_cost(self.id, model, input_tokens, output_tokens),
            provider=self.id,
            model=model,
        )


class GeminiProvider(Provider):
    id = "google"
    default_model = "gemini-2.5-flash"

    async def call(self, config, prompt, system_instruction, images):
        model = config.model or self.default_model
        parts: list[dict] = []
        for image in images:
            mime, data = split_image(image)
            parts.append({"inlineData": {"mimeType": mime, "data": data}})
        parts.append({"text": prompt})

        result = await llm_client.chat_gemini(
            config.api_key,
            model,
            system_instruction,
            parts,
            max_tokens=settings.LLM_MAX_OUTPUT_TOKENS,
            temperature=settings.LLM_TEMPERATURE,
            # Strict validators reject JSON mode unless the instruction asks for it
            json_mode=_mentions_json(system_instruction),
        )
        return result["text"], self._usage(model, result)


class OpenAIProvider(Provider):
    id = "openai"
    default_model = "gpt-4o"

    async def call(self, config, prompt, system_instruction, images):
        model = config.model or self.default_model
        if images:
            content: str | list[dict] = [{"type": "text", "text": prompt}]
            for image in images:
                mime, data = split_image(image)
                content.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{mime};base64,{data}"},
                })
        else:
            content = prompt
        messages = [{"role": "user", "content": content}]

        if not _is_reasoning_model(model):
            result = await self._standard(config.api_key, model, system_instruction, messages)
            return result["text"], self._usage(model, result)

        try:
            result = await llm_client.chat_openai(
                config.api_key,
                model,
                system_instruction,
                messages,
                settings.LLM_REASONING_MAX_TOKENS,
                system_role="developer",
                token_param="max_completion_tokens",
            )
        except ValueError as exc:
            if "API 404" not in str(exc) and "API 403" not in str(exc):
                raise
            # Account has no access to the reasoning model
            logger.warning("OpenAI model %s unavailable (%s), retrying with %s", model, exc, self.default_model)
            model = self.default_model
            result = await self._standard(config.api_key, model, system_instruction, messages)
        return result["text"], self._usage(model, result)

    async def _standard(self, api_key: str, model: str, system_instruction: str, messages: list[dict]) -> dict:
        return await llm_client.chat_openai(
            api_key,
            model,
            system_instruction,
            messages,
            settings.OPENAI_MAX_TOKENS,
            temperature=settings.LLM_TEMPERATURE,
            json_mode=_mentions_json(system_instruction),
        )


class ClaudeProvider(Provider):
    id = "claude"
    default_model = "claude-3-5-sonnet-20241022"
    _ALIASES = {"claude-3-5-sonnet-latest": "claude-3-5-sonnet-20241022"}

    async def call(self, config, prompt, system_instruction, images):
        model = self._ALIASES.get(config.model, config.model) or self.default_model
        content: list[dict] = []
        for image in images:
            mime, data = split_image(image)
            content.append({
                "type": "image",
                "source": {"type": "base64", "media_type": mime, "data": data},
            })
        content.append({"type": "text", "text": prompt})

        result = await llm_client.chat_anthropic(
            config.api_key,
            model,
            system_instruction,
            [{"role": "user", "content": content}],
            max_tokens=settings.LLM_MAX_OUTPUT_TOKENS,
            temperature=settings.LLM_TEMPERATURE,
        )
        return result["text"], self._usage(model, result)


PROVIDERS: dict[str, Provider] = {
    p.id: p for p in (GeminiProvider(), OpenAIProvider(), ClaudeProvider())
}


async def execute(
    config: AIProviderConfig,
    prompt: str,
    system_instruction: str,
    images: list[str] | None = None,
    *,
    providers: dict[str, Provider] | None = None,
) -> tuple[str, AIUsageResult]:
    """Run one call against the provider *config* names.

    Raises:
        UnknownProvider: no implementation for ``config.id``.
        ProviderCallFailed: missing key, transport, HTTP or payload error.
    """
    provider = (providers or PROVIDERS).get(config.id)
    if provider is None:
        raise UnknownProvider(config.id)
    if not config.api_key:
        raise ProviderCallFailed(config.id, f"API key missing for provider: {config.name or config.id}")
    try:
        return await provider.call(config, prompt, system_instruction, list(images or []))
    except (httpx.HTTPError, ValueError, KeyError) as exc:
        raise ProviderCallFailed(config.id, str(exc) or type(exc).__name__) from exc


UsageRecorder = Callable[..., Awaitable[None]]


class ProviderRouter:
    """Primary-then-fallback dispatch with usage recording.

    The config lookups and the usage recorder are injectable so callers
    (and tests) can run the router without a database.
    """

    def __init__(
        self,
        *,
        resolve_primary: Callable[[], Awaitable[AIProviderConfig]] | None = None,
        resolve_fallback: Callable[[], Awaitable[AIProviderConfig | None]] | None = None,
        record_usage: UsageRecorder | None = None,
        providers: dict[str, Provider] | None = None,
    ) -> None:
        self._resolve_primary = resolve_primary or provider_service.get_primary_config
        self._resolve_fallback = resolve_fallback or provider_service.get_fallback_config
        self._record_usage = record_usage or usage_repo.record_usage
        self._providers = providers

    async def execute(self, config, prompt, system_instruction, images=None):
        return await execute(config, prompt, system_instruction, images, providers=self._providers)

    async def call_with_fallback(
        self,
        prompt: str,
        system_instruction: str,
        images: list[str] | None = None,
        *,
        operation: str = "generate",
        project_id: UUID | None = None,
        user_id: UUID | None = None,
    ) -> tuple[str, AIUsageResult]:
        """Call the primary provider, falling back once on any failure.

        Returns the answering provider's text and usage.  When both fail
        the fallback's error is raised, chained to the primary's.
        """
        primary = await self._resolve_primary()
        try:
            text, usage = await self.execute(primary, prompt, system_instruction, images)
        except SynthError as primary_exc:
            logger.warning("Primary AI (%s) failed: %s", primary.name or primary.id, primary_exc)
            fallback = await self._resolve_fallback()
            if fallback is None or not fallback.api_key or fallback.id == primary.id:
                raise
            logger.warning("Retrying %s against fallback provider %s", operation, fallback.id)
            try:
                text, usage = await self.execute(fallback, prompt, system_instruction, images)
            except SynthError as fallback_exc:
                raise fallback_exc from primary_exc
            await self._record(usage, f"{operation}_fallback", project_id, user_id)
            return text, usage

        await self._record(usage, operation, project_id, user_id)
        return text, usage

    async def _record(self, usage: AIUsageResult, operation: str, project_id, user_id) -> None:
        try:
            await self._record_usage(
                usage, operation=operation, project_id=project_id, user_id=user_id,
            )
        except Exception:
            # Usage recording never fails the call
            logger.warning("Failed to record usage for %s", operation, exc_info=True)

"""LLM client -- single-request chat wrappers for Gemini, OpenAI and Anthropic.

Each function issues exactly one HTTP request and returns the simplified
``{"text": ..., "usage": {"input_tokens": ..., "output_tokens": ...}}``
shape.  Retrying and provider fallback live in the provider router, so
nothing here loops.
"""

import logging

import httpx

from appsynth.config import settings

logger = logging.getLogger(__name__)

# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for LLM API calls."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=settings.LLM_HTTP_TIMEOUT_S)
    return _client


async def close_client() -> None:
    """Close the shared LLM HTTP client.  Called during app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def _api_error(label: str, response: httpx.Response) -> ValueError:
    """Build a ``ValueError`` carrying the provider's own error message."""
    try:
        err_body = response.json()
        err = err_body.get("error", {})
        err_msg = err.get("message", response.text) if isinstance(err, dict) else str(err)
    except Exception:
        err_msg = response.text
    return ValueError(f"{label} API {response.status_code}: {err_msg}")


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"


def _anthropic_headers(api_key: str) -> dict:
    """Return standard Anthropic API headers."""
    return {
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_API_VERSION,
        "Content-Type": "application/json",
    }


async def chat_anthropic(
    api_key: str,
    model: str,
    system_prompt: str,
    messages: list[dict],
    max_tokens: int = 8192,
    temperature: float | None = None,
) -> dict:
    """Send a chat request to the Anthropic Messages API."""
    body: dict = {
        "model": model,
        "max_tokens": max_tokens,
        "system": system_prompt,
        "messages": messages,
    }
    if temperature is not None:
        body["temperature"] = temperature

    client = _get_client()
    response = await client.post(
        ANTHROPIC_MESSAGES_URL,
        headers=_anthropic_headers(api_key),
        json=body,
    )
    if response.status_code >= 400:
        raise _api_error("Anthropic", response)

    data = response.json()
    content_blocks = data.get("content", [])
    if not content_blocks:
        raise ValueError("Empty response from Anthropic API")

    text_parts = [b["text"] for b in content_blocks if b.get("type") == "text"]
    if not text_parts:
        raise ValueError("No text block in Anthropic API response")

    usage = data.get("usage", {})
    return {
        "text": "\n".join(text_parts),
        "usage": {
            "input_tokens": usage.get("input_tokens", 0),
            "output_tokens": usage.get("output_tokens", 0),
        },
    }


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


def _openai_headers(api_key: str) -> dict:
    """Return standard OpenAI API headers."""
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


async def chat_openai(
    api_key: str,
    model: str,
    system_prompt: str,
    messages: list[dict],
    max_tokens: int = 4096,
    *,
    system_role: str = "system",
    token_param: str = "max_tokens",
    temperature: float | None = None,
    json_mode: bool = False,
) -> dict:
    """Send a chat request to the OpenAI Chat Completions API.

    Reasoning models take the system prompt under the ``developer`` role,
    count output with ``max_completion_tokens`` and reject ``temperature``;
    callers pick those knobs via *system_role*, *token_param* and
    *temperature*.
    """
    oai_messages = [{"role": system_role, "content": system_prompt}]
    oai_messages.extend(messages)

    body: dict = {
        "model": model,
        "messages": oai_messages,
        token_param: max_tokens,
    }
    if temperature is not None:
        body["temperature"] = temperature
    if json_mode:
        body["response_format"] = {"type": "json_object"}

    client = _get_client()
    response = await client.post(
        OPENAI_CHAT_URL,
        headers=_openai_headers(api_key),
        json=body,
    )
    if response.status_code >= 400:
        raise _api_error("OpenAI", response)

    data = response.json()
    choices = data.get("choices", [])
    if not choices:
        raise ValueError("Empty response from OpenAI API")

    content = choices[0].get("message", {}).get("content")
    if not content:
        raise ValueError("No content in OpenAI API response")

    usage = data.get("usage", {})
    return {
        "text": content,
        "usage": {
            "input_tokens": usage.get("prompt_tokens", 0),
            "output_tokens": usage.get("completion_tokens", 0),
        },
    }


# ---------------------------------------------------------------------------
# Google Gemini
# ---------------------------------------------------------------------------

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"


def _gemini_headers(api_key: str) -> dict:
    """Return standard Gemini API headers."""
    return {
        "x-goog-api-key": api_key,
        "Content-Type": "application/json",
    }


async def chat_gemini(
    api_key: str,
    model: str,
    system_prompt: str,
    parts: list[dict],
    max_tokens: int = 8192,
    temperature: float | None = None,
    json_mode: bool = False,
) -> dict:
    """Send a ``generateContent`` request to the Gemini API.

    *parts* is the single user turn (text and ``inlineData`` parts).
    """
    generation_config: dict = {"maxOutputTokens": max_tokens}
    if temperature is not None:
        generation_config["temperature"] = temperature
    if json_mode:
        generation_config["responseMimeType"] = "application/json"

    body: dict = {
        "systemInstruction": {"parts": [{"text": system_prompt}]},
        "contents": [{"role": "user", "parts": parts}],
        "generationConfig": generation_config,
    }

    client = _get_client()
    response = await client.post(
        f"{GEMINI_API_BASE}/{model}:generateContent",
        headers=_gemini_headers(api_key),
        json=body,
    )
    if response.status_code >= 400:
        raise _api_error("Gemini", response)

    data = response.json()
    candidates = data.get("candidates", [])
    if not candidates:
        feedback = data.get("promptFeedback", {}).get("blockReason")
        raise ValueError(
            f"Empty response from Gemini API (blocked: {feedback})"
            if feedback else "Empty response from Gemini API"
        )

    content_parts = candidates[0].get("content", {}).get("parts", [])
    text_parts = [p["text"] for p in content_parts if "text" in p]
    if not text_parts:
        raise ValueError("No text part in Gemini API response")

    usage = data.get("usageMetadata", {})
    return {
        "text": "".join(text_parts),
        "usage": {
            "input_tokens": usage.get("promptTokenCount", 0),
            "output_tokens": usage.get("candidatesTokenCount", 0),
        },
    }

"""Tests for provider configuration and the active/fallback rotation."""

from unittest.mock import AsyncMock, patch

import pytest

from appsynth.errors import NotFoundError
from appsynth.services.provider_service import (
    AIProviderConfig,
    ProviderUpdate,
    apply_activation,
    get_available_models,
    get_primary_config,
    save_config,
)


def _cfg(provider_id, active=False, fallback=False, key=""):
    return AIProviderConfig(id=provider_id, is_active=active, is_fallback=fallback, api_key=key)


def _flags(configs):
    return {c.id: (c.is_active, c.is_fallback) for c in configs}


# ---------------------------------------------------------------------------
# apply_activation
# ---------------------------------------------------------------------------


def test_activation_demotes_previous_active_to_fallback():
    configs = [_cfg("google", active=True), _cfg("openai"), _cfg("claude", fallback=True)]
    result = apply_activation(configs, _cfg("openai", active=True))
    assert _flags(result) == {
        "google": (False, True),
        "openai": (True, False),
        "claude": (False, False),
    }
    assert [c.id for c in result] == ["google", "openai", "claude"]


def test_activation_clears_own_fallback_flag():
    configs = [_cfg("google", active=True), _cfg("openai", fallback=True)]
    result = apply_activation(configs, _cfg("openai", active=True, fallback=True))
    assert _flags(result)["openai"] == (True, False)
    assert _flags(result)["google"] == (False, True)


def test_activation_without_previous_active():
    configs = [_cfg("google"), _cfg("openai", fallback=True)]
    result = apply_activation(configs, _cfg("google", active=True))
    assert _flags(result) == {"google": (True, False), "openai": (False, True)}


def test_marking_fallback_clears_other_fallbacks():
    configs = [_cfg("google", active=True), _cfg("openai", fallback=True), _cfg("claude")]
    result = apply_activation(configs, _cfg("claude", fallback=True))
    assert _flags(result) == {
        "google": (True, False),
        "openai": (False, False),
        "claude": (False, True),
    }


def test_at_most_one_active_and_one_fallback():
    configs = [_cfg("google", active=True), _cfg("openai"), _cfg("claude")]
    for provider_id in ("openai", "claude", "google"):
        configs = apply_activation(configs, _cfg(provider_id, active=True))
        assert sum(c.is_active for c in configs) == 1
        assert sum(c.is_fallback for c in configs) <= 1


def test_available_models():
    assert "gpt-4o" in get_available_models("openai")
    assert get_available_models("unknown") == []


def test_public_view_masks_key():
    data = _cfg("google", key="secret").public()
    assert "api_key" not in data
    assert data["has_api_key"] is True


# ---------------------------------------------------------------------------
# Primary resolution
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_primary_is_active_row():
    row = {"id": "openai", "name": "OpenAI", "is_active": True, "api_key": "k", "model": "gpt-4o"}
    with patch("appsynth.services.provider_service.provider_repo.get_active_provider", AsyncMock(return_value=row)):
        config = await get_primary_config()
    assert config.id == "openai"
    assert config.api_key == "k"


@pytest.mark.asyncio
async def test_primary_falls_back_to_keyed_fallback_row():
    row = {"id": "claude", "is_fallback": True, "api_key": "k", "model": "claude-3-haiku-20240307"}
    with patch("appsynth.services.provider_service.provider_repo.get_active_provider", AsyncMock(return_value=None)), \
         patch("appsynth.services.provider_service.provider_repo.get_fallback_provider", AsyncMock(return_value=row)):
        config = await get_primary_config()
    assert config.id == "claude"


@pytest.mark.asyncio
async def test_primary_from_environment():
    with patch("appsynth.services.provider_service.provider_repo.get_active_provider", AsyncMock(return_value=None)), \
         patch("appsynth.services.provider_service.provider_repo.get_fallback_provider", AsyncMock(return_value=None)), \
         patch("appsynth.services.provider_service.settings.GEMINI_API_KEY", "env-key"):
        config = await get_primary_config()
    assert config.id == "google"
    assert config.api_key == "env-key"


# ---------------------------------------------------------------------------
# save_config
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_save_config_persists_changed_rows_only():
    upsert = AsyncMock()
    with patch("appsynth.services.provider_service.provider_repo.get_all_providers", AsyncMock(return_value=[])), \
         patch("appsynth.services.provider_service.provider_repo.upsert_provider", upsert):
        result = await save_config("openai", ProviderUpdate(api_key="sk-1", is_active=True))

    assert _flags(result)["openai"] == (True, False)
    assert _flags(result)["google"] == (False, True)
    assert {c.args[0] for c in upsert.await_args_list} == {"openai", "google"}
    saved = next(c for c in upsert.await_args_list if c.args[0] == "openai")
    assert saved.kwargs["api_key"] == "sk-1"


@pytest.mark.asyncio
async def test_save_unknown_provider():
    with patch("appsynth.services.provider_service.provider_repo.get_all_providers", AsyncMock(return_value=[])):
        with pytest.raises(NotFoundError):
            await save_config("mistral", ProviderUpdate(is_active=True))

"""Tests for stage instruction resolution."""

from unittest.mock import AsyncMock

import pytest

from appsynth.errors import MissingConfiguration
from appsynth.services.prompt_resolver import PromptCache, PromptResolver


@pytest.mark.asyncio
async def test_resolve_reads_store_once_per_cache():
    loader = AsyncMock(return_value="Return STRICT JSON.")
    cache = PromptCache()
    resolver = PromptResolver(cache, loader)

    assert await resolver.resolve("SYSTEM_INSTRUCTION_DESIGN") == "Return STRICT JSON."
    assert await resolver.resolve("SYSTEM_INSTRUCTION_DESIGN") == "Return STRICT JSON."

    loader.assert_awaited_once_with("SYSTEM_INSTRUCTION_DESIGN")
    assert "SYSTEM_INSTRUCTION_DESIGN" in cache


@pytest.mark.asyncio
async def test_new_cache_reads_store_again():
    loader = AsyncMock(side_effect=["v1", "v2"])
    assert await PromptResolver(PromptCache(), loader).resolve("K") == "v1"
    assert await PromptResolver(PromptCache(), loader).resolve("K") == "v2"


@pytest.mark.asyncio
@pytest.mark.parametrize("stored", [None, "", "   "])
async def test_missing_instruction_raises(stored):
    cache = PromptCache()
    resolver = PromptResolver(cache, AsyncMock(return_value=stored))
    with pytest.raises(MissingConfiguration) as exc_info:
        await resolver.resolve("SYSTEM_INSTRUCTION_REPAIR")
    assert exc_info.value.stage_key == "SYSTEM_INSTRUCTION_REPAIR"
    # A miss is not cached
    assert len(cache) == 0

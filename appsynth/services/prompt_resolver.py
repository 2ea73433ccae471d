"""Stage system instructions, resolved from the settings store.

There is deliberately no built-in instruction text: a stage without a
stored instruction raises :class:`MissingConfiguration`.

Resolved instructions are kept in a :class:`PromptCache` that the caller
creates and passes in.  The cache never invalidates; a new cache (new
process or run) reads the store again.
"""

import logging
from typing import Awaitable, Callable

from appsynth.errors import MissingConfiguration
from appsynth.repos import settings_repo

logger = logging.getLogger(__name__)

Loader = Callable[[str], Awaitable[str | None]]


class PromptCache:
    """In-memory stage-key -> instruction map with no invalidation."""

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_resolve(self, key: str, resolve: Callable[[str], Awaitable[str]]) -> str:
        """Return the cached value for *key*, resolving and storing it on a miss."""
        if key not in self._entries:
            self._entries[key] = await resolve(key)
        return self._entries[key]


class PromptResolver:
    """``resolve(stage_key) -> instruction`` backed by a store and a cache."""

    def __init__(self, cache: PromptCache, loader: Loader | None = None) -> None:
        self._cache = cache
        self._loader = loader or settings_repo.get_setting

    async def resolve(self, stage_key: str) -> str:
        """Return the stage's system instruction.

        Raises:
            MissingConfiguration: the store has no non-blank value for the key.
        """
        return await self._cache.get_or_resolve(stage_key, self._load)

    async def _load(self, stage_key: str) -> str:
        value = await self._loader(stage_key)
        if not value or not value.strip():
            logger.error("System instruction missing for stage %s", stage_key)
            raise MissingConfiguration(stage_key)
        return value

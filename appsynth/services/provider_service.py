"""Provider service -- AI provider configurations and the active/fallback rotation.

At most one provider is active and at most one is the fallback.
Activating a provider demotes the previously active one to fallback and
clears the fallback flag everywhere else (a single-slot rotation, not a
stack).  :func:`apply_activation` holds that rule as a pure function so
the repo layer only ever writes its result.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from appsynth.config import settings
from appsynth.errors import NotFoundError
from appsynth.repos import provider_repo

logger = logging.getLogger(__name__)

PROVIDER_IDS = ("google", "openai", "claude")


class AIProviderConfig(BaseModel):
    """Credentials and model choice for one provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    is_active: bool = False
    is_fallback: bool = False
    api_key: str = ""
    model: str = ""
    updated_at: datetime | None = None

    def public(self) -> dict:
        """Serialisable view with the key masked."""
        data = self.model_dump(mode="json", exclude={"api_key"})
        data["has_api_key"] = bool(self.api_key)
        return data


class AIUsageResult(BaseModel):
    """Token usage and cost of one provider call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: Decimal = Decimal(0)
    provider: str
    model: str


class ProviderUpdate(BaseModel):
    """Partial update; ``None`` leaves a field untouched."""

    name: str | None = None
    api_key: str | None = None
    model: str | None = None
    is_active: bool | None = None
    is_fallback: bool | None = None


DEFAULT_PROVIDERS: list[AIProviderConfig] = [
    AIProviderConfig(id="google", name="Google Gemini", is_active=True, model="gemini-2.5-flash"),
    AIProviderConfig(id="openai", name="OpenAI (ChatGPT)", model="gpt-4o"),
    AIProviderConfig(id="claude", name="Anthropic Claude", model="claude-3-5-sonnet-20241022"),
]

AVAILABLE_MODELS: dict[str, list[str]] = {
    "google": [
        "gemini-3-pro-preview",
        "gemini-3-pro",
        "gemini-2.5-flash",
        "gemini-2.0-flash",
        "gemini-1.5-pro",
        "gemini-1.5-flash",
    ],
    "openai": [
        "gpt-5.1",
        "gpt-4.1",
        "gpt-4o",
        "gpt-4o-mini",
        "gpt-4-turbo",
        "o1-preview",
        "o1-mini",
    ],
    "claude": [
        "claude-3-5-sonnet-20241022",
        "claude-3-5-sonnet-20240620",
        "claude-3-5-haiku-20241022",
        "claude-3-opus-20240229",
        "claude-3-haiku-20240307",
    ],
}


def get_available_models(provider_id: str) -> list[str]:
    """Return the model catalogue for a provider (empty for unknown ids)."""
    return list(AVAILABLE_MODELS.get(provider_id, []))


def apply_activation(
    configs: list[AIProviderConfig],
    saved: AIProviderConfig,
) -> list[AIProviderConfig]:
    """Return *configs* with *saved* written in and the rotation enforced.

    - Activating *saved* demotes the previously active provider to fallback
      and clears the fallback flag on every other provider.
    - Activating with no previous active provider deactivates the rest.
    - Marking *saved* as fallback clears the fallback flag elsewhere.
    """
    others = [c for c in configs if c.id != saved.id]

    if saved.is_active:
        saved = saved.model_copy(update={"is_fallback": False})
        previous = next((c for c in others if c.is_active), None)
        rotated = []
        for cfg in others:
            if previous is not None and cfg.id == previous.id:
                logger.info(
                    "Switching active provider. Old active (%s) becoming fallback.", cfg.id,
                )
                rotated.append(cfg.model_copy(update={"is_active": False, "is_fallback": True}))
            elif previous is not None:
                rotated.append(cfg.model_copy(update={"is_fallback": False}))
            else:
                rotated.append(cfg.model_copy(update={"is_active": False}))
        others = rotated
    elif saved.is_fallback:
        others = [c.model_copy(update={"is_fallback": False}) for c in others]

    by_id = {c.id: c for c in others}
    by_id[saved.id] = saved
    order = [c.id for c in configs] + ([saved.id] if saved.id not in {c.id for c in configs} else [])
    return [by_id[i] for i in order]


async def get_all_configs() -> list[AIProviderConfig]:
    """Every known provider, stored rows merged over the built-in defaults."""
    rows = {r["id"]: r for r in await provider_repo.get_all_providers()}
    merged: list[AIProviderConfig] = []
    for default in DEFAULT_PROVIDERS:
        row = rows.get(default.id)
        if row is None:
            merged.append(default)
            continue
        merged.append(AIProviderConfig(
            id=default.id,
            name=row.get("name") or default.name,
            is_active=bool(row.get("is_active")),
            is_fallback=bool(row.get("is_fallback")),
            api_key=row.get("api_key") or "",
            model=row.get("model") or default.model,
            updated_at=row.get("updated_at"),
        ))
    return merged


def _row_to_config(row: dict | None) -> AIProviderConfig | None:
    if row is None:
        return None
    return AIProviderConfig(
        id=row["id"],
        name=row.get("name") or "",
        is_active=bool(row.get("is_active")),
        is_fallback=bool(row.get("is_fallback")),
        api_key=row.get("api_key") or "",
        model=row.get("model") or "",
        updated_at=row.get("updated_at"),
    )


async def get_active_config() -> AIProviderConfig | None:
    """The active provider row (newest wins if several are flagged)."""
    return _row_to_config(await provider_repo.get_active_provider())


async def get_fallback_config() -> AIProviderConfig | None:
    """The fallback provider row, if any."""
    return _row_to_config(await provider_repo.get_fallback_provider())


def _environment_config() -> AIProviderConfig:
    return AIProviderConfig(
        id="google",
        name="Google Gemini (Env)",
        is_active=True,
        api_key=settings.GEMINI_API_KEY,
        model=settings.DEFAULT_GEMINI_MODEL,
    )


async def get_primary_config() -> AIProviderConfig:
    """Config the router calls first.

    Resolution order: the active row, then the fallback row when it has a
    key, then a Gemini config built from ``GEMINI_API_KEY``.
    """
    active = await get_active_config()
    if active is not None:
        return active
    fallback = await get_fallback_config()
    if fallback is not None and fallback.api_key:
        return fallback
    return _environment_config()


async def save_config(provider_id: str, update: ProviderUpdate) -> list[AIProviderConfig]:
    """Apply *update* to one provider and persist the rotated set.

    Returns every provider config after the save.
    """
    configs = await get_all_configs()
    current = next((c for c in configs if c.id == provider_id), None)
    if current is None:
        raise NotFoundError(f"Unknown provider: {provider_id}")

    changes = update.model_dump(exclude_none=True)
    changes["updated_at"] = datetime.now(timezone.utc)
    saved = current.model_copy(update=changes)

    rotated = apply_activation(configs, saved)
    before = {c.id: c for c in configs}
    for cfg in rotated:
        if cfg.id == provider_id or cfg != before.get(cfg.id):
            await provider_repo.upsert_provider(
                cfg.id,
                name=cfg.name,
                api_key=cfg.api_key,
                model=cfg.model,
                is_active=cfg.is_active,
                is_fallback=cfg.is_fallback,
            )
    return rotated

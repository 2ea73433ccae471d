"""Provider repository -- database reads and writes for the ai_providers table."""

from appsynth.repos.db import get_pool

_COLUMNS = "id, name, is_active, is_fallback, api_key, model, updated_at"


async def get_all_providers() -> list[dict]:
    """Fetch every stored provider row."""
    pool = await get_pool()
    rows = await pool.fetch(f"SELECT {_COLUMNS} FROM ai_providers ORDER BY id")
    return [dict(r) for r in rows]


async def get_active_provider() -> dict | None:
    """Fetch the active provider.  Newest wins if several are flagged."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        SELECT {_COLUMNS} FROM ai_providers
        WHERE is_active = true
        ORDER BY updated_at DESC
        LIMIT 1
        """
    )
    return dict(row) if row else None


async def get_fallback_provider() -> dict | None:
    """Fetch the fallback provider.  Newest wins if several are flagged."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        SELECT {_COLUMNS} FROM ai_providers
        WHERE is_fallback = true
        ORDER BY updated_at DESC
        LIMIT 1
        """
    )
    return dict(row) if row else None


async def upsert_provider(
    provider_id: str,
    *,
    name: str,
    api_key: str,
    model: str,
    is_active: bool,
    is_fallback: bool,
) -> None:
    """Insert or overwrite one provider row."""
    pool = await get_pool()
    await pool.execute(
        """
        INSERT INTO ai_providers (id, name, api_key, model, is_active, is_fallback, updated_at)
        VALUES ($1, $2, $3, $4, $5, $6, now())
        ON CONFLICT (id) DO UPDATE SET
            name = EXCLUDED.name,
            api_key = EXCLUDED.api_key,
            model = EXCLUDED.model,
            is_active = EXCLUDED.is_active,
            is_fallback = EXCLUDED.is_fallback,
            updated_at = now()
        """,
        provider_id,
        name,
        api_key,
        model,
        is_active,
        is_fallback,
    )

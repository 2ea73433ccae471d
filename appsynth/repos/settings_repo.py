"""Settings repository -- key/value rows in the system_settings table.

Stage system instructions live here, keyed by stage key.
"""

from appsynth.repos.db import get_pool


async def get_setting(key: str) -> str | None:
    """Return the value stored under *key*, or None."""
    pool = await get_pool()
    return await pool.fetchval(
        "SELECT value FROM system_settings WHERE key = $1",
        key,
    )


async def set_setting(key: str, value: str) -> None:
    """Insert or overwrite the value stored under *key*."""
    pool = await get_pool()
    await pool.execute(
        """
        INSERT INTO system_settings (key, value, updated_at)
        VALUES ($1, $2, now())
        ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = now()
        """,
        key,
        value,
    )

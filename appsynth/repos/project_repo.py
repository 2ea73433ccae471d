"""Project repository -- database reads and writes for the projects table."""

import json
from uuid import UUID

from appsynth.repos.db import get_pool

_COLUMNS = """id, user_id, title, status, files, messages, build_state,
              backend_connected, created_at, updated_at"""


async def create_project(user_id: UUID, title: str) -> dict:
    """Insert a new project. Returns the created row as a dict."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        INSERT INTO projects (user_id, title)
        VALUES ($1, $2)
        RETURNING {_COLUMNS}
        """,
        user_id,
        title,
    )
    return _project_to_dict(row)


async def get_project_by_id(project_id: UUID) -> dict | None:
    """Fetch a project by primary key. Returns None if not found."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"SELECT {_COLUMNS} FROM projects WHERE id = $1",
        project_id,
    )
    return _project_to_dict(row) if row else None


async def get_projects_by_user(user_id: UUID) -> list[dict]:
    """Fetch all projects for a user, newest first (without file contents)."""
    pool = await get_pool()
    rows = await pool.fetch(
        """
        SELECT id, user_id, title, status, backend_connected, created_at, updated_at
        FROM projects
        WHERE user_id = $1
        ORDER BY created_at DESC
        """,
        user_id,
    )
    return [dict(r) for r in rows]


async def update_project_status(project_id: UUID, status: str) -> None:
    """Set the lifecycle status (idle | generating | failed)."""
    pool = await get_pool()
    await pool.execute(
        "UPDATE projects SET status = $2, updated_at = now() WHERE id = $1",
        project_id,
        status,
    )


async def update_project_files(project_id: UUID, files: list[dict]) -> None:
    """Replace the accumulated file set."""
    pool = await get_pool()
    await pool.execute(
        "UPDATE projects SET files = $2::jsonb, updated_at = now() WHERE id = $1",
        project_id,
        json.dumps(files),
    )


async def update_project_messages(project_id: UUID, messages: list[dict]) -> None:
    """Replace the conversation / status message list."""
    pool = await get_pool()
    await pool.execute(
        "UPDATE projects SET messages = $2::jsonb, updated_at = now() WHERE id = $1",
        project_id,
        json.dumps(messages, default=str),
    )


async def update_build_state(project_id: UUID, build_state: dict) -> None:
    """Replace the persisted build state (phases, design, repair count...)."""
    pool = await get_pool()
    await pool.execute(
        "UPDATE projects SET build_state = $2::jsonb, updated_at = now() WHERE id = $1",
        project_id,
        json.dumps(build_state, default=str),
    )


async def set_backend_connected(project_id: UUID, connected: bool) -> None:
    """Record whether a backend connection is active for the project."""
    pool = await get_pool()
    await pool.execute(
        "UPDATE projects SET backend_connected = $2, updated_at = now() WHERE id = $1",
        project_id,
        connected,
    )


async def reset_interrupted_builds() -> int:
    """Set every project left in ``generating`` back to ``idle``.

    Called at startup: builds run in-process, so none survive a restart.
    Returns the number of projects reset.
    """
    pool = await get_pool()
    result = await pool.execute(
        "UPDATE projects SET status = 'idle', updated_at = now() WHERE status = 'generating'"
    )
    # asyncpg returns the command tag, e.g. "UPDATE 3"
    return int(result.split()[-1]) if result else 0


def _project_to_dict(row) -> dict:
    """Convert an asyncpg Record to a dict, decoding JSONB columns."""
    d = dict(row)
    for key, empty in (("files", []), ("messages", []), ("build_state", {})):
        value = d.get(key)
        if isinstance(value, str):
            value = json.loads(value)
        d[key] = value if value is not None else empty
    return d

"""Baseline schema.

Revision ID: 0001_baseline
Revises: None
Create Date: 2026-10-16

Idempotent (CREATE ... IF NOT EXISTS) so it can run against a database
that was created by hand.
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_baseline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email           VARCHAR(320) NOT NULL UNIQUE,
            display_name    VARCHAR(255),
            is_admin        BOOLEAN NOT NULL DEFAULT false,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    # files / messages / build_state are owned by the build pipeline
    op.execute("""
        CREATE TABLE IF NOT EXISTS projects (
            id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id             UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title               VARCHAR(255) NOT NULL DEFAULT 'New Project',
            status              VARCHAR(20) NOT NULL DEFAULT 'idle'
                                CHECK (status IN ('idle', 'generating', 'failed')),
            files               JSONB NOT NULL DEFAULT '[]'::jsonb,
            messages            JSONB NOT NULL DEFAULT '[]'::jsonb,
            build_state         JSONB NOT NULL DEFAULT '{}'::jsonb,
            backend_connected   BOOLEAN NOT NULL DEFAULT false,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at          TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_projects_user_id ON projects(user_id, created_at DESC)"
    )

    op.execute("""
        CREATE TABLE IF NOT EXISTS ai_providers (
            id              VARCHAR(32) PRIMARY KEY,
            name            VARCHAR(255) NOT NULL,
            api_key         TEXT NOT NULL DEFAULT '',
            model           VARCHAR(255) NOT NULL DEFAULT '',
            is_active       BOOLEAN NOT NULL DEFAULT false,
            is_fallback     BOOLEAN NOT NULL DEFAULT false,
            updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    # Stage system instructions live here under sys_prompt_*_v2 keys
    op.execute("""
        CREATE TABLE IF NOT EXISTS system_settings (
            key             VARCHAR(255) PRIMARY KEY,
            value           TEXT NOT NULL,
            updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS ai_usage_log (
            id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            project_id          UUID REFERENCES projects(id) ON DELETE SET NULL,
            user_id             UUID REFERENCES users(id) ON DELETE SET NULL,
            operation           VARCHAR(100) NOT NULL,
            provider            VARCHAR(32) NOT NULL,
            model               VARCHAR(255) NOT NULL,
            input_tokens        INTEGER NOT NULL DEFAULT 0,
            output_tokens       INTEGER NOT NULL DEFAULT 0,
            cost_usd            NUMERIC(12, 6) NOT NULL DEFAULT 0,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_ai_usage_log_project ON ai_usage_log(project_id)"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS ai_usage_log")
    op.execute("DROP TABLE IF EXISTS system_settings")
    op.execute("DROP TABLE IF EXISTS ai_providers")
    op.execute("DROP TABLE IF EXISTS projects")
    op.execute("DROP TABLE IF EXISTS users")

"""Application configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.  Validates required settings on import -- fails
fast if critical vars are missing outside of tests.
"""

VERSION = "0.1.0"

import sys

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Required var names -- checked after instantiation (not during), so tests
# that leave them blank still work.
# ---------------------------------------------------------------------------
_REQUIRED_VARS: list[str] = [
    "DATABASE_URL",
    "JWT_SECRET",
]


class Settings(BaseSettings):
    """Application settings -- sourced from environment / ``.env`` file.

    Required vars (must be set in production, may be blank in test):
      DATABASE_URL, JWT_SECRET
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- required in production (default empty so tests don't fail) --
    DATABASE_URL: str = ""
    JWT_SECRET: str = ""

    # -- optional with sensible defaults --
    FRONTEND_URL: str = "http://localhost:5173"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # -------------------------------------------------------------------------
    # Environment provider.  Used only when no provider row is active and no
    # fallback row carries a key.
    # -------------------------------------------------------------------------
    GEMINI_API_KEY: str = ""
    DEFAULT_GEMINI_MODEL: str = "gemini-2.5-flash"

    # Request shaping shared by every provider
    LLM_TEMPERATURE: float = 0.2
    LLM_MAX_OUTPUT_TOKENS: int = 8192
    OPENAI_MAX_TOKENS: int = 4096
    LLM_REASONING_MAX_TOKENS: int = 25_000
    LLM_HTTP_TIMEOUT_S: float = 300.0

    # -------------------------------------------------------------------------
    # Generation pipeline
    # -------------------------------------------------------------------------
    STEP_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    STEP_RETRY_DELAY_S: float = 1.5
    # Per-file content cap for builder / repair context
    BUILDER_CONTEXT_CHARS: int = 400
    PREVIEW_TIMEOUT_MS: int = 5000
    # Wait for the preview surface to report boot health before success
    PREVIEW_VALIDATION: bool = True
    # Repair cycles allowed per build, automatic and user-triggered combined
    MAX_REPAIR_CYCLES: int = Field(default=3, ge=1)
    DEFAULT_OUTPUT_LANGUAGE: str = "en"
    # When True a step may name a dependency that a later step creates
    ALLOW_FORWARD_DEPENDENCIES: bool = False

    # Build starts per user per hour
    BUILD_RATE_LIMIT_PER_HOUR: int = 20


settings = Settings()


# Validate at import time -- but only when NOT running under pytest.
if "pytest" not in sys.modules:
    _missing = [v for v in _REQUIRED_VARS if not getattr(settings, v)]
    if _missing:
        print(
            f"[config] FATAL: missing required environment variables: "
            f"{', '.join(_missing)}",
            file=sys.stderr,
        )
        sys.exit(1)

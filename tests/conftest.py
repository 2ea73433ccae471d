"""Shared test fixtures -- reduces boilerplate across test modules.

Provides:
- ``set_test_config`` -- autouse fixture that patches common settings
- ``MOCK_USER`` / ``USER_ID`` / ``PROJECT_ID`` -- reusable IDs
- ``auth_header`` -- helper to generate JWT auth headers
- ``test_client`` -- pre-built TestClient against the app
"""

from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from appsynth.auth import create_token
from appsynth.main import app


def pytest_configure(config):
    """Register custom markers.

    Tests that need real external services (database, etc.) should be
    decorated with ``@pytest.mark.integration``.
    """
    config.addinivalue_line(
        "markers",
        "integration: tests requiring external services (database, cache, etc.)",
    )


# ---------------------------------------------------------------------------
# Canonical test identifiers (used by most test modules)
# ---------------------------------------------------------------------------

USER_ID = "22222222-2222-2222-2222-222222222222"
OTHER_USER_ID = "33333333-3333-3333-3333-333333333333"
PROJECT_ID = UUID("44444444-4444-4444-4444-444444444444")

MOCK_USER: dict = {
    "id": UUID(USER_ID),
    "email": "dev@example.com",
    "display_name": "Dev",
    "is_admin": False,
}

MOCK_ADMIN: dict = {**MOCK_USER, "is_admin": True}

# ---------------------------------------------------------------------------
# Environment patching
# ---------------------------------------------------------------------------

_SETTINGS_PATCHES: dict[str, object] = {
    "appsynth.config.settings.JWT_SECRET": "test-secret-key-for-unit-tests",
    "appsynth.auth.settings.JWT_SECRET": "test-secret-key-for-unit-tests",
    "appsynth.config.settings.FRONTEND_URL": "http://localhost:5173",
    "appsynth.config.settings.GEMINI_API_KEY": "",
    "appsynth.config.settings.DEFAULT_OUTPUT_LANGUAGE": "en",
    "appsynth.config.settings.STEP_RETRY_DELAY_S": 0.0,
    "appsynth.config.settings.ALLOW_FORWARD_DEPENDENCIES": False,
}


@pytest.fixture(autouse=True)
def set_test_config(monkeypatch):
    """Patch common application settings for a safe test environment.

    This is ``autouse=True`` so every test automatically gets a
    deterministic, non-production configuration.
    """
    for target, value in _SETTINGS_PATCHES.items():
        monkeypatch.setattr(target, value)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def auth_header(user_id: str = USER_ID, email: str = "dev@example.com") -> dict:
    """Return an ``Authorization`` header dict with a valid JWT."""
    token = create_token(user_id, email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def test_client() -> TestClient:
    """A fresh ``TestClient`` instance wrapping the FastAPI app."""
    return TestClient(app)

"""Tests for the providers router."""

from unittest.mock import AsyncMock, patch

from appsynth.services.provider_service import AIProviderConfig
from tests.conftest import MOCK_ADMIN, MOCK_USER, auth_header

_CONFIGS = [
    AIProviderConfig(id="google", name="Google Gemini", is_active=True, api_key="secret", model="gemini-2.5-flash"),
    AIProviderConfig(id="openai", name="OpenAI (ChatGPT)", model="gpt-4o"),
]


def test_list_providers_masks_keys(test_client):
    with patch("appsynth.api.deps.get_user_by_id", AsyncMock(return_value=MOCK_USER)), \
         patch("appsynth.services.provider_service.get_all_configs", AsyncMock(return_value=_CONFIGS)):
        resp = test_client.get("/providers", headers=auth_header())

    assert resp.status_code == 200
    items = resp.json()["items"]
    assert [i["id"] for i in items] == ["google", "openai"]
    assert "api_key" not in items[0]
    assert items[0]["has_api_key"] is True
    assert items[1]["has_api_key"] is False


def test_update_provider_requires_admin(test_client):
    with patch("appsynth.api.deps.get_user_by_id", AsyncMock(return_value=MOCK_USER)):
        resp = test_client.put("/providers/openai", json={"is_active": True}, headers=auth_header())
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Admin access required"


def test_update_provider_as_admin(test_client):
    save = AsyncMock(return_value=_CONFIGS)
    with patch("appsynth.api.deps.get_user_by_id", AsyncMock(return_value=MOCK_ADMIN)), \
         patch("appsynth.services.provider_service.save_config", save):
        resp = test_client.put(
            "/providers/openai", json={"is_active": True, "api_key": "sk-1"}, headers=auth_header(),
        )
    assert resp.status_code == 200
    provider_id, update = save.await_args.args
    assert provider_id == "openai"
    assert update.is_active is True
    assert update.api_key == "sk-1"
    assert update.model is None


def test_models_for_provider(test_client):
    with patch("appsynth.api.deps.get_user_by_id", AsyncMock(return_value=MOCK_USER)):
        resp = test_client.get("/providers/claude/models", headers=auth_header())
    assert "claude-3-5-sonnet-20241022" in resp.json()["items"]


def test_models_for_unknown_provider(test_client):
    with patch("appsynth.api.deps.get_user_by_id", AsyncMock(return_value=MOCK_USER)):
        resp = test_client.get("/providers/mistral/models", headers=auth_header())
    assert resp.status_code == 404

"""Providers router -- AI provider configuration (admin only for writes)."""

from fastapi import APIRouter, Depends

from appsynth.api.deps import get_current_user, require_admin
from appsynth.errors import NotFoundError
from appsynth.services import provider_service
from appsynth.services.provider_service import PROVIDER_IDS, ProviderUpdate

router = APIRouter(prefix="/providers", tags=["providers"])


@router.get("")
async def list_providers(user: dict = Depends(get_current_user)):
    """Every provider config, keys masked."""
    configs = await provider_service.get_all_configs()
    return {"items": [c.public() for c in configs]}


@router.put("/{provider_id}")
async def update_provider(
    provider_id: str,
    body: ProviderUpdate,
    user: dict = Depends(require_admin),
):
    """Save one provider.  Activating it demotes the previous active to fallback."""
    configs = await provider_service.save_config(provider_id, body)
    return {"items": [c.public() for c in configs]}


@router.get("/{provider_id}/models")
async def list_models(
    provider_id: str,
    user: dict = Depends(get_current_user),
):
    """Model catalogue for a provider."""
    if provider_id not in PROVIDER_IDS:
        raise NotFoundError(f"Unknown provider: {provider_id}")
    return {"items": provider_service.get_available_models(provider_id)}

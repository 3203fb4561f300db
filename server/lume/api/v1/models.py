from fastapi import APIRouter
from typing import Any, Dict, Optional

from lume.config import Settings, get_settings
from lume.providers.router import router as provider_router

router = APIRouter()

PROVIDER_NAMES = {"anthropic": "Anthropic", "openai": "OpenAI", "google": "Google"}


def _api_key(settings: Settings, provider_id: str) -> Optional[str]:
    if provider_id == "google":
        return settings.google_api_key or settings.gemini_api_key
    return getattr(settings, f"{provider_id}_api_key", None)


@router.get("/models")
async def list_models() -> Dict[str, Any]:
    """Catalog grouped by provider, plus the default model.

    ``configured`` is false for providers without an API key; those answer
    with a mock stream.
    """
    settings = get_settings()
    grouped = await provider_router.list_models()
    return {
        "defaultModelId": settings.default_model_id,
        "providers": {
            pid: {
                "name": PROVIDER_NAMES.get(pid, pid.capitalize()),
                "configured": bool(_api_key(settings, pid)),
                "models": [m.model_dump() for m in models],
            }
            for pid, models in grouped.items()
        },
    }

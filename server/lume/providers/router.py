from __future__ import annotations
from typing import Dict, List

from lume.errors import InvalidInput
from lume.providers.anthropic import AnthropicProvider
from lume.providers.base import ChatProvider
from lume.providers.catalog import ModelConfig, get_model
from lume.providers.gemini import GeminiProvider
from lume.providers.openai import OpenAIProvider
from lume.schemas.chat import ModelInfo


class ProviderRouter:
    def __init__(self) -> None:
        # Register enabled providers here, keyed by catalog provider name
        self.providers: Dict[str, ChatProvider] = {
            "anthropic": AnthropicProvider(),
            "openai": OpenAIProvider(),
            "google": GeminiProvider(),
        }

    def register(self, provider_id: str, provider: ChatProvider) -> None:
        self.providers[provider_id] = provider

    async def list_models(self) -> Dict[str, List[ModelInfo]]:
        result: Dict[str, List[ModelInfo]] = {}
        for pid, provider in self.providers.items():
            result[pid] = await provider.list_models()
        return result

    def resolve_model(self, model_id: str) -> ModelConfig:
        model = get_model(model_id)
        if model is None or model.provider not in self.providers:
            raise InvalidInput(f"Unknown model: {model_id}")
        return model

    def get_provider(self, model_id: str) -> ChatProvider:
        return self.providers[self.resolve_model(model_id).provider]


router = ProviderRouter()

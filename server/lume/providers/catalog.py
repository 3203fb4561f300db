"""Known models, their providers and per-1K-token pricing."""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class ModelConfig:
    id: str
    name: str
    provider: str  # "anthropic" | "openai" | "google"
    description: str
    input_cost_per_1k: float  # USD
    output_cost_per_1k: float  # USD
    context_length: int = 128_000
    supports_thinking: bool = False


AVAILABLE_MODELS: List[ModelConfig] = [
    ModelConfig(
        id="claude-3-7-sonnet-20250219",
        name="Claude 3.7 Sonnet",
        provider="anthropic",
        description="Most intelligent model, best for complex tasks",
        input_cost_per_1k=0.003,
        output_cost_per_1k=0.015,
        context_length=200_000,
        supports_thinking=True,
    ),
    ModelConfig(
        id="claude-3-5-sonnet-20241022",
        name="Claude 3.5 Sonnet",
        provider="anthropic",
        description="Balanced intelligence and speed",
        input_cost_per_1k=0.003,
        output_cost_per_1k=0.015,
        context_length=200_000,
    ),
    ModelConfig(
        id="claude-3-5-haiku-20241022",
        name="Claude 3.5 Haiku",
        provider="anthropic",
        description="Fastest model, great for simple tasks",
        input_cost_per_1k=0.001,
        output_cost_per_1k=0.005,
        context_length=200_000,
    ),
    ModelConfig(
        id="gpt-4o",
        name="GPT-4o",
        provider="openai",
        description="OpenAI's most advanced multimodal model",
        input_cost_per_1k=0.0025,
        output_cost_per_1k=0.01,
    ),
    ModelConfig(
        id="gpt-4o-mini",
        name="GPT-4o Mini",
        provider="openai",
        description="Fast and affordable OpenAI model",
        input_cost_per_1k=0.00015,
        output_cost_per_1k=0.0006,
    ),
    ModelConfig(
        id="o1",
        name="OpenAI o1",
        provider="openai",
        description="Advanced reasoning model",
        input_cost_per_1k=0.015,
        output_cost_per_1k=0.06,
        context_length=200_000,
    ),
    ModelConfig(
        id="o1-mini",
        name="OpenAI o1-mini",
        provider="openai",
        description="Faster reasoning model",
        input_cost_per_1k=0.003,
        output_cost_per_1k=0.012,
    ),
    ModelConfig(
        id="gemini-2.0-flash",
        name="Gemini 2.0 Flash",
        provider="google",
        description="Google's fast multimodal model",
        input_cost_per_1k=0.0001,
        output_cost_per_1k=0.0004,
        context_length=1_000_000,
    ),
    ModelConfig(
        id="gemini-1.5-pro",
        name="Gemini 1.5 Pro",
        provider="google",
        description="Long-context reasoning across large documents",
        input_cost_per_1k=0.00125,
        output_cost_per_1k=0.005,
        context_length=2_000_000,
    ),
]

DEFAULT_MODEL_ID = "claude-3-7-sonnet-20250219"

_BY_ID = {m.id: m for m in AVAILABLE_MODELS}


def get_model(model_id: Optional[str]) -> Optional[ModelConfig]:
    if not model_id:
        return None
    return _BY_ID.get(model_id)


def models_for_provider(provider: str) -> List[ModelConfig]:
    return [m for m in AVAILABLE_MODELS if m.provider == provider]


def calculate_cost(model_id: str, input_tokens: int, output_tokens: int) -> float:
    model = get_model(model_id)
    if model is None:
        return 0.0
    return (input_tokens / 1000) * model.input_cost_per_1k + (output_tokens / 1000) * model.output_cost_per_1k

"""Model providers and the Fast/Smart router for grounded study generation."""

from server.services.llm.provider import (
    ModelProvider,
    ProviderError,
    classify_provider_error,
    FakeProvider,
    GeminiProvider,
    OpenAICompatibleProvider,
)
from server.services.llm.router import (
    ModelConfig,
    ModelRouter,
    ModelRouterError,
    RoutedText,
    resolve_model_config,
)

__all__ = [
    "ModelProvider",
    "ProviderError",
    "classify_provider_error",
    "FakeProvider",
    "GeminiProvider",
    "OpenAICompatibleProvider",
    "ModelConfig",
    "ModelRouter",
    "ModelRouterError",
    "RoutedText",
    "resolve_model_config",
]

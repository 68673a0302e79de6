"""Provider router - maps model names to Generator providers."""

import os
from typing import Optional

from .base import Generator, ProviderCapability
from .google import GoogleProvider
from .openai_compat import LLMClient

DEFAULT_MODEL = "gemini-2.5-flash"

# Mapping from user-facing model names to (provider_class, model_id)
MODEL_MAPPING = {
    # Google Gemini models
    "gemini-2.5-flash": (GoogleProvider, "gemini-2.5-flash"),
    "gemini-2.5-pro": (GoogleProvider, "gemini-2.5-pro"),
    "gemini-2.0-flash": (GoogleProvider, "gemini-2.0-flash"),
    "Gemini Flash": (GoogleProvider, "gemini-flash"),
    "Gemini Pro": (GoogleProvider, "gemini-pro"),
    # OpenAI-compatible models
    "gpt-4.1-mini": (LLMClient, "gpt-4.1-mini"),
    "gpt-4.1-nano": (LLMClient, "gpt-4.1-nano"),
}


class ProviderRouter:
    """Routes requests to a provider based on model selection."""

    def __init__(self, gemini_api_key: Optional[str] = None, openai_api_key: Optional[str] = None):
        """
        Initialize the router with API keys.

        Keys can be provided directly or will be read from environment variables.
        """
        self._keys = {
            GoogleProvider.PROVIDER_NAME: gemini_api_key or os.getenv("GEMINI_API_KEY"),
            LLMClient.PROVIDER_NAME: openai_api_key or os.getenv("OPENAI_API_KEY"),
        }
        self._key_names = {
            GoogleProvider.PROVIDER_NAME: "GEMINI_API_KEY",
            LLMClient.PROVIDER_NAME: "OPENAI_API_KEY",
        }

        # Cache of active provider instances
        self._providers: dict[str, Generator] = {}

    def get_provider(self, model_name: Optional[str] = None) -> Generator:
        """
        Get the appropriate provider for a model.

        Args:
            model_name: User-facing model name; defaults to $TUTOR_MODEL

        Returns:
            Configured Generator instance

        Raises:
            ValueError: If model is not recognized or API key is missing
        """
        model_name = model_name or os.getenv("TUTOR_MODEL", DEFAULT_MODEL)
        if model_name not in MODEL_MAPPING:
            raise ValueError(f"Unknown model: {model_name}. Available models: {list(MODEL_MAPPING.keys())}")

        provider_class, model_id = MODEL_MAPPING[model_name]
        cache_key = f"{provider_class.PROVIDER_NAME}:{model_id}"

        if cache_key not in self._providers:
            api_key = self._keys.get(provider_class.PROVIDER_NAME)
            if not api_key:
                raise ValueError(f"{self._key_names[provider_class.PROVIDER_NAME]} not configured")
            self._providers[cache_key] = provider_class(api_key=api_key, model=model_id)

        return self._providers[cache_key]

    def supports_model(self, model_name: str) -> bool:
        """Check if a model is supported."""
        return model_name in MODEL_MAPPING

    def get_models_for_capability(self, capability: ProviderCapability) -> list[str]:
        """Get all models that support a capability."""
        return [
            model_name
            for model_name, (provider_class, _) in MODEL_MAPPING.items()
            if capability in provider_class.CAPABILITIES
        ]

    async def close_all(self):
        """Close all provider connections."""
        for provider in self._providers.values():
            await provider.close()
        self._providers.clear()


_router: Optional[ProviderRouter] = None


def get_router() -> ProviderRouter:
    """Return the router singleton."""
    global _router
    if _router is None:
        _router = ProviderRouter()
    return _router

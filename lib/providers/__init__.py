"""Generator providers for the tutoring engine."""

from .base import Generator, GenerationConfig, ProviderCapability, build_history, history_chars
from .router import ProviderRouter, MODEL_MAPPING, get_router
from .openai_compat import LLMClient
from .google import GoogleProvider

__all__ = [
    "Generator",
    "GenerationConfig",
    "ProviderCapability",
    "build_history",
    "history_chars",
    "ProviderRouter",
    "MODEL_MAPPING",
    "get_router",
    "GoogleProvider",
    "LLMClient",
]

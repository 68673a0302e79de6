"""Base class for Generator providers.

A Generator takes an ordered message history, a system instruction and an
optional tool schema, and streams newline-delimited JSON records back:
``{"type": "text", "content": ...}`` or
``{"type": "tool_call", "toolName": ..., "args": {...}}``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional

from lib.models import ChatMessage, MessageRole


class ProviderCapability(Enum):
    """Capabilities that providers may support."""
    TEXT = "text"
    VISION = "vision"
    TOOL_CALLING = "tool_calling"
    STREAMING = "streaming"


@dataclass
class GenerationConfig:
    """Configuration for one generation request."""
    temperature: float = 0.7
    max_tokens: int = 8192


def build_history(messages: list[ChatMessage]) -> list[dict]:
    """Convert stored chat messages to ``{role: user|model, parts}`` history.

    Leading assistant messages are dropped (the history must open with a user
    turn) and empty messages are skipped.
    """
    history: list[dict] = []
    for message in messages:
        if message.parts:
            parts = message.parts
        elif message.content.strip():
            parts = [{"text": message.content}]
        else:
            continue
        role = "user" if message.role == MessageRole.USER else "model"
        if not history and role != "user":
            continue
        history.append({"role": role, "parts": parts})
    return history


def history_chars(history: list[dict], system_instruction: str = "") -> int:
    """Character count of the text carried by a request (for token estimates)."""
    total = len(system_instruction)
    for entry in history:
        for part in entry.get("parts", []):
            text = part.get("text")
            if isinstance(text, str):
                total += len(text)
    return total


class Generator(ABC):
    """Abstract base class for language-model providers."""

    PROVIDER_NAME: str = "base"
    CAPABILITIES: set[ProviderCapability] = set()

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key
        self._client = None

    @abstractmethod
    def stream(
        self,
        history: list[dict],
        system_instruction: str,
        tools: Optional[list[dict]] = None,
        config: Optional[GenerationConfig] = None,
    ) -> AsyncIterator[str]:
        """
        Stream NDJSON text chunks for one model turn.

        Args:
            history: Ordered ``{role, parts}`` messages, ending with the user turn
            system_instruction: System prompt for this call
            tools: Optional function declarations; when given, a tool call is required
            config: Optional generation configuration

        Yields:
            Text chunks whose concatenation is newline-delimited JSON records
        """

    def supports(self, capability: ProviderCapability) -> bool:
        """Check if this provider supports a capability."""
        return capability in self.CAPABILITIES

    async def close(self):
        """Close any open connections."""

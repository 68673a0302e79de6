"""Provider for any OpenAI-compatible chat completions API (OpenAI, OpenRouter, etc.)."""

import json
import logging
import os
from typing import AsyncIterator, Optional

from openai import AsyncOpenAI, OpenAIError

from lib.errors import UpstreamGeneratorFailure
from lib.stream_decoder import encode_record

from .base import GenerationConfig, Generator, ProviderCapability

logger = logging.getLogger(__name__)


def _to_openai_messages(history: list[dict], system_instruction: str) -> list[dict]:
    """Translate ``{role, parts}`` history into chat-completions messages."""
    messages: list[dict] = []
    if system_instruction:
        messages.append({"role": "system", "content": system_instruction})
    for entry in history:
        content: list[dict] = []
        for part in entry.get("parts", []):
            if "text" in part:
                content.append({"type": "text", "text": part["text"]})
            elif "fileData" in part:
                file_data = part["fileData"]
                if str(file_data.get("mimeType", "")).startswith("image/"):
                    content.append({"type": "image_url", "image_url": {"url": file_data.get("fileUri", "")}})
        role = "assistant" if entry.get("role") == "model" else "user"
        if role == "assistant":
            text = "".join(c["text"] for c in content if c["type"] == "text")
            messages.append({"role": role, "content": text})
        else:
            messages.append({"role": role, "content": content})
    return messages


class LLMClient(Generator):
    """Client for interacting with any OpenAI-compatible API."""

    PROVIDER_NAME = "openai"
    CAPABILITIES = {
        ProviderCapability.TEXT,
        ProviderCapability.VISION,
        ProviderCapability.TOOL_CALLING,
        ProviderCapability.STREAMING,
    }

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4.1-mini",
        base_url: str | None = None,
    ):
        """
        Initialize the OpenAI client.

        Args:
            api_key: API key. If None, uses OPENAI_API_KEY env var.
            model: Model name to use.
            base_url: Optional base URL for OpenAI-compatible APIs (e.g. OpenRouter).
        """
        api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError(
                "API key required. Set OPENAI_API_KEY env var or pass api_key."
            )
        super().__init__(api_key)
        kwargs: dict = {"api_key": api_key}
        base_url = base_url or os.getenv("OPENAI_BASE_URL")
        if base_url:
            kwargs["base_url"] = base_url
        self._client = AsyncOpenAI(**kwargs)
        self.model = model

    async def stream(
        self,
        history: list[dict],
        system_instruction: str,
        tools: Optional[list[dict]] = None,
        config: Optional[GenerationConfig] = None,
    ) -> AsyncIterator[str]:
        """Yield text records as they arrive and one record per completed tool call."""
        config = config or GenerationConfig()
        kwargs: dict = {
            "model": self.model,
            "messages": _to_openai_messages(history, system_instruction),
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "stream": True,
        }
        if tools:
            kwargs["tools"] = [{"type": "function", "function": tool} for tool in tools]
            kwargs["tool_choice"] = "required"

        # Tool-call arguments arrive as string fragments keyed by index.
        pending: dict[int, dict] = {}
        try:
            stream = await self._client.chat.completions.create(**kwargs)
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    yield encode_record({"type": "text", "content": delta.content})
                for call in delta.tool_calls or []:
                    slot = pending.setdefault(call.index, {"name": "", "arguments": ""})
                    if call.function and call.function.name:
                        slot["name"] = call.function.name
                    if call.function and call.function.arguments:
                        slot["arguments"] += call.function.arguments
        except OpenAIError as e:
            raise UpstreamGeneratorFailure(f"OpenAI request failed: {e}") from e

        for index in sorted(pending):
            slot = pending[index]
            try:
                args = json.loads(slot["arguments"] or "{}")
            except json.JSONDecodeError:
                logger.warning("Dropping tool call %s with unparsable arguments", slot["name"])
                continue
            yield encode_record({"type": "tool_call", "toolName": slot["name"], "args": args})

    async def close(self):
        await self._client.close()

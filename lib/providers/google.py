"""Google Gemini provider implementation (streaming, function calling)."""

import json
import logging
from typing import AsyncIterator, Optional

import httpx

from lib.errors import UpstreamGeneratorFailure
from lib.stream_decoder import encode_record

from .base import GenerationConfig, Generator, ProviderCapability

logger = logging.getLogger(__name__)


def _to_gemini_schema(node):
    """Gemini's schema dialect spells types in upper case."""
    if isinstance(node, dict):
        out = {}
        for key, value in node.items():
            if key == "type" and isinstance(value, str):
                out[key] = value.upper()
            else:
                out[key] = _to_gemini_schema(value)
        return out
    if isinstance(node, list):
        return [_to_gemini_schema(v) for v in node]
    return node


class GoogleProvider(Generator):
    """Provider for Google's Gemini models."""

    PROVIDER_NAME = "google"
    CAPABILITIES = {
        ProviderCapability.TEXT,
        ProviderCapability.VISION,
        ProviderCapability.TOOL_CALLING,
        ProviderCapability.STREAMING,
    }

    BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

    # Model name mapping from user-facing names to API model IDs
    MODEL_MAP = {
        "gemini-flash": "gemini-2.5-flash",
        "gemini-pro": "gemini-2.5-pro",
        "gemini-2.0-flash": "gemini-2.0-flash",
        "gemini-2.5-pro": "gemini-2.5-pro",
        "gemini-2.5-flash": "gemini-2.5-flash",
    }

    DEFAULT_MODEL = "gemini-2.5-flash"

    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_MODEL):
        super().__init__(api_key)
        self.model = self.MODEL_MAP.get(model, model)
        self._client = httpx.AsyncClient(timeout=60.0)

    async def stream(
        self,
        history: list[dict],
        system_instruction: str,
        tools: Optional[list[dict]] = None,
        config: Optional[GenerationConfig] = None,
    ) -> AsyncIterator[str]:
        """Stream a Gemini turn, re-encoding each part as an NDJSON record."""
        if not self.api_key:
            raise ValueError("GEMINI_API_KEY not configured")

        config = config or GenerationConfig()
        url = f"{self.BASE_URL}/{self.model}:streamGenerateContent?alt=sse&key={self.api_key}"
        request_body = self._build_request_body(history, system_instruction, tools, config)

        try:
            async with self._client.stream(
                "POST",
                url,
                json=request_body,
                headers={"Content-Type": "application/json"},
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise UpstreamGeneratorFailure(self._error_message(response))

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    payload = line[len("data:"):].strip()
                    if not payload:
                        continue
                    try:
                        data = json.loads(payload)
                    except json.JSONDecodeError:
                        logger.warning("Skipping undecodable Gemini SSE event: %r", payload[:120])
                        continue
                    for record in self._records_from_event(data):
                        yield encode_record(record)
        except httpx.HTTPError as e:
            raise UpstreamGeneratorFailure(f"Gemini request failed: {e}") from e

    def _build_request_body(
        self,
        history: list[dict],
        system_instruction: str,
        tools: Optional[list[dict]],
        config: GenerationConfig,
    ) -> dict:
        """Build the Gemini API request body."""
        body: dict = {
            "contents": history,
            "generationConfig": {
                "temperature": config.temperature,
                "maxOutputTokens": config.max_tokens,
            },
        }
        if system_instruction:
            body["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        if tools:
            body["tools"] = [{"functionDeclarations": _to_gemini_schema(tools)}]
            body["toolConfig"] = {
                "functionCallingConfig": {
                    "mode": "ANY",
                    "allowedFunctionNames": [t["name"] for t in tools],
                }
            }
        return body

    def _records_from_event(self, data: dict) -> list[dict]:
        """Extract text and function-call records from one streamed response."""
        if "error" in data:
            raise UpstreamGeneratorFailure(f"Gemini API error: {data['error'].get('message', 'Unknown error')}")

        records = []
        for candidate in data.get("candidates", [])[:1]:
            for part in candidate.get("content", {}).get("parts", []):
                call = part.get("functionCall")
                if call:
                    records.append({
                        "type": "tool_call",
                        "toolName": call.get("name", ""),
                        "args": call.get("args") or {},
                    })
                elif part.get("text") and not part.get("thought"):
                    records.append({"type": "text", "content": part["text"]})
        return records

    def _error_message(self, response: httpx.Response) -> str:
        try:
            error_data = response.json()
            if isinstance(error_data, list) and error_data:
                error_data = error_data[0]
            if "error" in error_data:
                return f"Gemini API error: {error_data['error'].get('message', 'Unknown error')}"
        except (ValueError, AttributeError):
            pass
        return f"Gemini API returned HTTP {response.status_code}"

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()

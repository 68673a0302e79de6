"""
Mock Responses - Scripted Generator for testing without hitting a real model.

Serves either an explicit script of turns or a canned record per requested tool.
"""

import asyncio
from typing import AsyncIterator, Optional, Union

from lib.providers.base import GenerationConfig, Generator, ProviderCapability
from lib.stream_decoder import encode_record

# Canned records keyed by the tool the caller requires ("text" = no tool).
MOCK_RESPONSES = {
    "text": [
        {"type": "text", "content": "Got it! What would you like to be able to do once you have learned this?"},
    ],
    "generate_response": [
        {"type": "text", "content": "Let me put that on the board."},
        {
            "type": "tool_call",
            "toolName": "generate_response",
            "args": {
                "comment": "Here is a short overview on the board.",
                "operations": [
                    {
                        "action": "create",
                        "node": {
                            "type": "text",
                            "content": "# Derivatives\n\n- Rate of change\n- Slope of the tangent line",
                        },
                    },
                    {
                        "action": "create",
                        "node": {"type": "equation", "content": r"\frac{d}{dx}x^2 = 2x"},
                    },
                ],
                "suggestedQuestions": [
                    "How do I differentiate a product?",
                    "What is the chain rule?",
                ],
            },
        },
    ],
    "generate_roadmap": [
        {
            "type": "tool_call",
            "toolName": "generate_roadmap",
            "args": {
                "goal": "Differentiate polynomial functions",
                "currentLevel": "Comfortable with algebra",
                "units": [
                    {
                        "id": "unit-1",
                        "title": "Limits",
                        "sections": [
                            {"id": "section-1-1", "title": "Intuition for limits"},
                            {"id": "section-1-2", "title": "Computing limits"},
                        ],
                    },
                    {
                        "id": "unit-2",
                        "title": "Derivatives",
                        "sections": [
                            {"id": "section-2-1", "title": "Definition of the derivative"},
                            {"id": "section-2-2", "title": "The power rule"},
                        ],
                    },
                ],
            },
        },
    ],
    "teach_section": [
        {
            "type": "tool_call",
            "toolName": "teach_section",
            "args": {
                "explanation": "## Key idea\n\nA limit describes the value a function approaches.",
                "practiceQuestion": {
                    "question": "What is the limit of 2x as x approaches 3?",
                    "type": "choice",
                    "options": ["3", "5", "6", "9"],
                    "correctAnswer": 2,
                    "explanation": "Substitute x = 3 to get 6.",
                },
                "chatMessage": "Let's start with this section!",
            },
        },
    ],
    "evaluate_answer": [
        {
            "type": "tool_call",
            "toolName": "evaluate_answer",
            "args": {"isCorrect": True, "feedback": "Nice work, that's right!", "shouldRepeat": False},
        },
    ],
}

Turn = Union[list[Union[dict, str]], Exception]


class MockGenerator(Generator):
    """Generator that replays scripted turns.

    Each turn is a list of records (dicts, encoded as NDJSON lines) or raw
    strings (passed through untouched, so malformed lines can be scripted),
    or an exception to raise. When the script runs out, the canned record for
    the requested tool is served.
    """

    PROVIDER_NAME = "mock"
    CAPABILITIES = {ProviderCapability.TEXT, ProviderCapability.TOOL_CALLING, ProviderCapability.STREAMING}

    def __init__(self, turns: Optional[list[Turn]] = None, chunk_size: int = 0, delay: float = 0.0):
        super().__init__(api_key=None)
        self.turns = list(turns or [])
        self.chunk_size = chunk_size
        self.delay = delay
        self.calls: list[dict] = []

    async def stream(
        self,
        history: list[dict],
        system_instruction: str,
        tools: Optional[list[dict]] = None,
        config: Optional[GenerationConfig] = None,
    ) -> AsyncIterator[str]:
        tool_names = [t["name"] for t in tools or []]
        self.calls.append({
            "history": history,
            "system_instruction": system_instruction,
            "tools": tool_names,
        })

        if self.turns:
            turn = self.turns.pop(0)
        else:
            turn = MOCK_RESPONSES.get(tool_names[0] if tool_names else "text", MOCK_RESPONSES["text"])

        if isinstance(turn, Exception):
            raise turn

        payload = "".join(item if isinstance(item, str) else encode_record(item) for item in turn)
        size = self.chunk_size or len(payload) or 1
        for start in range(0, len(payload), size):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield payload[start:start + size]

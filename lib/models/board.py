"""Models for the whiteboard and its content nodes."""

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import Field

from .common import CamelModel, now_ms


class NodeType(str, Enum):
    """Kinds of content a board node can hold."""
    TEXT = "text"
    STICKY = "sticky"
    EQUATION = "equation"
    PROBLEM = "problem"
    QUIZ = "quiz"


class NodeStyle(CamelModel):
    color: Optional[str] = None
    background_color: Optional[str] = None
    font_size: Optional[str] = None


class BoardNode(CamelModel):
    """A single content item on a room's board."""
    id: str = Field(..., description="Node identifier, stable across updates")
    type: NodeType = Field(NodeType.TEXT, description="Node kind")
    content: str = Field("", description="Markdown content")
    style: Optional[NodeStyle] = None
    chat_turn_id: Optional[str] = Field(None, description="Groups nodes created in the same turn")
    created_by: Literal["user", "ai"] = "ai"
    created_at: int = Field(default_factory=now_ms, description="Epoch milliseconds")
    section_id: Optional[str] = Field(None, description="Roadmap section this node belongs to")
    quiz_data: Optional[dict[str, Any]] = Field(None, description="Practice question payload for quiz nodes")


class Board(CamelModel):
    """Ordered node collection owned by exactly one room."""
    nodes: list[BoardNode] = Field(default_factory=list)
    last_updated: int = Field(default_factory=now_ms)

    def find(self, node_id: str) -> Optional[BoardNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


class BoardOperation(CamelModel):
    """One decoded create/update/delete instruction from a tool call."""
    action: Literal["create", "update", "delete"]
    node: dict[str, Any] = Field(default_factory=dict)


# Tool declaration offered to the model for normal chat turns.
GENERATE_RESPONSE_TOOL = {
    "name": "generate_response",
    "description": "Generate a response with text comment and board updates.",
    "parameters": {
        "type": "object",
        "properties": {
            "comment": {
                "type": "string",
                "description": "The explanation or text to show in the chat.",
            },
            "operations": {
                "type": "array",
                "description": "List of operations to perform on the whiteboard.",
                "items": {
                    "type": "object",
                    "properties": {
                        "action": {"type": "string", "enum": ["create", "update", "delete"]},
                        "node": {
                            "type": "object",
                            "properties": {
                                "id": {"type": "string"},
                                "type": {"type": "string", "enum": ["text", "sticky", "equation", "problem"]},
                                "content": {"type": "string"},
                                "style": {
                                    "type": "object",
                                    "properties": {
                                        "color": {"type": "string"},
                                        "backgroundColor": {"type": "string"},
                                    },
                                },
                            },
                            "required": ["type", "content"],
                        },
                    },
                    "required": ["action", "node"],
                },
            },
            "suggestedQuestions": {
                "type": "array",
                "description": "2-3 follow-up questions the user might want to ask next.",
                "items": {"type": "string"},
            },
        },
        "required": ["comment", "operations", "suggestedQuestions"],
    },
}

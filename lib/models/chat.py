"""Models for chat messages and the chat/managed request bodies."""

from enum import Enum
from typing import Any, Optional

from pydantic import Field

from .common import CamelModel, now_ms


class MessageRole(str, Enum):
    """Role in a chat conversation."""
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(CamelModel):
    """A persisted message in a room's conversation."""
    id: str
    role: MessageRole
    content: str = ""
    parts: Optional[list[dict[str, Any]]] = Field(None, description="Text or fileData parts for multimodal turns")
    chat_turn_id: Optional[str] = None
    created_at: int = Field(default_factory=now_ms)


class ChatRequest(CamelModel):
    """Request body for a normal (free-form) chat turn."""
    room_id: str = Field(..., min_length=1)
    message: str = Field("", description="User's message")
    parts: Optional[list[dict[str, Any]]] = None
    message_id: Optional[str] = None
    model: Optional[str] = None


class ManagedMessageRequest(CamelModel):
    message: str = Field(..., min_length=1)
    message_id: Optional[str] = None
    model: Optional[str] = None


class AdvanceRequest(CamelModel):
    is_correct: bool
    model: Optional[str] = None


class ModifyRoadmapRequest(CamelModel):
    request: str = Field(..., min_length=1)
    model: Optional[str] = None


class ImportanceRequest(CamelModel):
    unit_index: int = Field(..., ge=0)
    section_index: int = Field(..., ge=0)


class EvaluateRequest(CamelModel):
    question: str = Field(..., min_length=1)
    user_answer: str
    model: Optional[str] = None

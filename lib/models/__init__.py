"""Pydantic models for the tutoring server."""

from .common import CamelModel, now_ms
from .board import Board, BoardNode, BoardOperation, NodeStyle, NodeType, GENERATE_RESPONSE_TOOL
from .roadmap import (
    HearingData,
    Importance,
    ManagedSessionState,
    Phase,
    Roadmap,
    Section,
    SectionStatus,
    Unit,
    GENERATE_ROADMAP_TOOL,
)
from .tutoring import (
    EvaluationResult,
    PracticeQuestion,
    TeachSectionResult,
    EVALUATE_ANSWER_TOOL,
    TEACH_SECTION_TOOL,
)
from .chat import (
    AdvanceRequest,
    ChatMessage,
    ChatRequest,
    EvaluateRequest,
    ImportanceRequest,
    ManagedMessageRequest,
    MessageRole,
    ModifyRoadmapRequest,
)
from .user import PlanConfig, QuotaCheck, UsageResponse, UserLedger

__all__ = [
    # Common
    "CamelModel",
    "now_ms",
    # Board
    "Board",
    "BoardNode",
    "BoardOperation",
    "NodeStyle",
    "NodeType",
    "GENERATE_RESPONSE_TOOL",
    # Roadmap
    "HearingData",
    "Importance",
    "ManagedSessionState",
    "Phase",
    "Roadmap",
    "Section",
    "SectionStatus",
    "Unit",
    "GENERATE_ROADMAP_TOOL",
    # Tutoring
    "EvaluationResult",
    "PracticeQuestion",
    "TeachSectionResult",
    "EVALUATE_ANSWER_TOOL",
    "TEACH_SECTION_TOOL",
    # Chat
    "AdvanceRequest",
    "ChatMessage",
    "ChatRequest",
    "EvaluateRequest",
    "ImportanceRequest",
    "ManagedMessageRequest",
    "MessageRole",
    "ModifyRoadmapRequest",
    # User
    "PlanConfig",
    "QuotaCheck",
    "UsageResponse",
    "UserLedger",
]

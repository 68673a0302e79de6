"""Structured model outputs used while teaching a roadmap."""

from typing import Literal, Optional

from pydantic import Field

from .common import CamelModel


class PracticeQuestion(CamelModel):
    question: str
    type: Literal["choice", "freeform"] = "freeform"
    options: Optional[list[str]] = None
    correct_answer: Optional[int] = Field(None, description="0-based index of the right option")
    keywords: Optional[list[str]] = None
    explanation: Optional[str] = None


class TeachSectionResult(CamelModel):
    """Output of the teach_section tool."""
    explanation: str
    practice_question: PracticeQuestion
    chat_message: str


class EvaluationResult(CamelModel):
    """Output of the evaluate_answer tool."""
    is_correct: bool = True
    feedback: str = ""
    should_repeat: bool = False


TEACH_SECTION_TOOL = {
    "name": "teach_section",
    "description": "Teach a section with explanation on the board and a practice question",
    "parameters": {
        "type": "object",
        "properties": {
            "explanation": {
                "type": "string",
                "description": "Markdown content to display on the board explaining this section",
            },
            "practiceQuestion": {
                "type": "object",
                "description": "Practice question to test understanding",
                "properties": {
                    "question": {"type": "string"},
                    "type": {"type": "string", "enum": ["choice", "freeform"]},
                    "options": {"type": "array", "items": {"type": "string"}},
                    "correctAnswer": {"type": "number", "description": "Index of correct answer (0-based)"},
                    "keywords": {"type": "array", "items": {"type": "string"}},
                    "explanation": {"type": "string", "description": "Explanation shown after answering"},
                },
                "required": ["question", "type"],
            },
            "chatMessage": {"type": "string", "description": "Brief message for chat (one line)"},
        },
        "required": ["explanation", "practiceQuestion", "chatMessage"],
    },
}

EVALUATE_ANSWER_TOOL = {
    "name": "evaluate_answer",
    "description": "Evaluate user's answer and decide next action",
    "parameters": {
        "type": "object",
        "properties": {
            "isCorrect": {"type": "boolean"},
            "feedback": {"type": "string", "description": "Feedback message for chat (one line)"},
            "shouldRepeat": {"type": "boolean", "description": "Whether to repeat the section"},
        },
        "required": ["isCorrect", "feedback", "shouldRepeat"],
    },
}

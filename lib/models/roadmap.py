"""Models for the guided-learning curriculum and per-room session state."""

from enum import Enum
from typing import Optional

from pydantic import Field, field_validator

from .common import CamelModel


class Phase(str, Enum):
    """Stages of a guided learning session."""
    HEARING_LEVEL = "hearing_level"
    HEARING_GOAL = "hearing_goal"
    GENERATING_ROADMAP = "generating_roadmap"
    PROPOSAL = "proposal"
    LEARNING = "learning"
    COMPLETED = "completed"


class SectionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class Importance(str, Enum):
    NORMAL = "normal"
    FOCUS = "focus"
    SKIP = "skip"


class Section(CamelModel):
    id: str
    title: str
    status: SectionStatus = SectionStatus.PENDING
    importance: Importance = Importance.NORMAL


class Unit(CamelModel):
    id: str
    title: str
    sections: list[Section] = Field(default_factory=list)


class Roadmap(CamelModel):
    goal: str
    current_level: str = ""
    units: list[Unit] = Field(default_factory=list)

    def total_sections(self) -> int:
        return sum(len(unit.sections) for unit in self.units)


class HearingData(CamelModel):
    level: Optional[str] = None
    goal: Optional[str] = None


class ManagedSessionState(CamelModel):
    """Mutable guided-session state, one instance per room."""
    phase: Phase = Phase.HEARING_LEVEL
    roadmap: Optional[Roadmap] = None
    current_unit_index: int = 0
    current_section_index: int = 0
    hearing_data: HearingData = Field(default_factory=HearingData)
    last_message_id: Optional[str] = Field(None, description="Id of the last inbound message that completed a transition")

    @field_validator("phase", mode="before")
    @classmethod
    def _accept_hearing_alias(cls, value):
        if value == "hearing":
            return Phase.HEARING_LEVEL
        return value

    def current_section(self) -> Optional[Section]:
        if self.roadmap is None:
            return None
        try:
            return self.roadmap.units[self.current_unit_index].sections[self.current_section_index]
        except IndexError:
            return None


# Tool declaration for roadmap generation and modification.
GENERATE_ROADMAP_TOOL = {
    "name": "generate_roadmap",
    "description": "Generate a learning roadmap based on user's level and goal",
    "parameters": {
        "type": "object",
        "properties": {
            "goal": {"type": "string", "description": "The learning goal"},
            "currentLevel": {"type": "string", "description": "User's current knowledge level"},
            "units": {
                "type": "array",
                "description": "Learning units (major topics)",
                "items": {
                    "type": "object",
                    "properties": {
                        "id": {"type": "string"},
                        "title": {"type": "string", "description": "Unit title"},
                        "sections": {
                            "type": "array",
                            "description": "Sections within this unit",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "id": {"type": "string"},
                                    "title": {"type": "string", "description": "Section title"},
                                },
                                "required": ["id", "title"],
                            },
                        },
                    },
                    "required": ["id", "title", "sections"],
                },
            },
        },
        "required": ["goal", "currentLevel", "units"],
    },
}

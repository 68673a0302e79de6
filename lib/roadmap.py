"""Curriculum helpers: parsing, fallback generation, importance and navigation."""

import json
import logging
import re
from typing import Any, Optional

from pydantic import ValidationError

from lib.errors import RoadmapParseFailure
from lib.models import Importance, Roadmap, Section, SectionStatus, Unit

logger = logging.getLogger(__name__)

Position = tuple[int, int]

_IMPORTANCE_CYCLE = {
    Importance.NORMAL: Importance.FOCUS,
    Importance.FOCUS: Importance.SKIP,
    Importance.SKIP: Importance.NORMAL,
}

# Goal text is cut at the first connective to name the fallback topic.
_TOPIC_SPLIT = re.compile(r"[をのにはがで]|\s+(?:to|for|in|with|about)\s+", re.IGNORECASE)
_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def _load_payload(raw: Any) -> dict:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        cleaned = _FENCE.sub("", raw.strip())
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise RoadmapParseFailure(f"roadmap is not JSON: {e.msg}") from e
        if isinstance(data, dict):
            return data
    raise RoadmapParseFailure(f"roadmap payload has type {type(raw).__name__}")


def parse_roadmap(raw: Any, current_level: str = "") -> Roadmap:
    """Build a Roadmap from model output.

    Every section starts pending/normal; missing ids are filled positionally.

    Args:
        raw: Tool-call args, or JSON text optionally wrapped in a code fence.
        current_level: Used when the payload carries no ``currentLevel``.

    Returns:
        The parsed Roadmap.

    Raises:
        RoadmapParseFailure: Not JSON, no goal, no units or a unit without sections.
    """
    data = _load_payload(raw)

    goal = data.get("goal")
    units_raw = data.get("units")
    if not isinstance(goal, str) or not goal.strip():
        raise RoadmapParseFailure("roadmap has no goal")
    if not isinstance(units_raw, list) or not units_raw:
        raise RoadmapParseFailure("roadmap has no units")

    units = []
    for u_idx, unit_raw in enumerate(units_raw, start=1):
        if not isinstance(unit_raw, dict):
            raise RoadmapParseFailure(f"unit {u_idx} is not an object")
        sections_raw = unit_raw.get("sections")
        if not isinstance(sections_raw, list) or not sections_raw:
            raise RoadmapParseFailure(f"unit {u_idx} has no sections")
        sections = []
        for s_idx, section_raw in enumerate(sections_raw, start=1):
            if not isinstance(section_raw, dict) or not section_raw.get("title"):
                raise RoadmapParseFailure(f"section {u_idx}.{s_idx} has no title")
            sections.append(Section(
                id=str(section_raw.get("id") or f"section-{u_idx}-{s_idx}"),
                title=str(section_raw["title"]),
            ))
        try:
            units.append(Unit(
                id=str(unit_raw.get("id") or f"unit-{u_idx}"),
                title=str(unit_raw.get("title") or f"Unit {u_idx}"),
                sections=sections,
            ))
        except ValidationError as e:
            raise RoadmapParseFailure(str(e)) from e

    level = data.get("currentLevel")
    return Roadmap(
        goal=goal,
        current_level=level if isinstance(level, str) and level else current_level,
        units=units,
    )


def fallback_roadmap(goal: str, current_level: str = "") -> Roadmap:
    """Deterministic two-unit roadmap used when generation cannot be parsed."""
    topic = _TOPIC_SPLIT.split(goal.strip(), maxsplit=1)[0].strip() or goal.strip() or "this topic"
    return Roadmap(
        goal=goal,
        current_level=current_level,
        units=[
            Unit(
                id="unit-1",
                title=f"{topic}: Fundamentals",
                sections=[
                    Section(id="section-1-1", title=f"What is {topic}?"),
                    Section(id="section-1-2", title=f"Core concepts of {topic}"),
                    Section(id="section-1-3", title=f"Basic operations in {topic}"),
                ],
            ),
            Unit(
                id="unit-2",
                title=f"{topic}: In Practice",
                sections=[
                    Section(id="section-2-1", title=f"Applied {topic} techniques"),
                    Section(id="section-2-2", title=f"{topic} practice exercises"),
                ],
            ),
        ],
    )


def next_importance(importance: Importance) -> Importance:
    """normal -> focus -> skip -> normal."""
    return _IMPORTANCE_CYCLE[Importance(importance)]


def toggle_importance(roadmap: Roadmap, unit_index: int, section_index: int) -> Roadmap:
    """Return a copy of ``roadmap`` with one section's importance cycled.

    Status is left untouched.

    Args:
        roadmap: Roadmap to copy; it is not modified.
        unit_index: Zero-based unit position.
        section_index: Zero-based section position within the unit.

    Returns:
        The updated copy.

    Raises:
        IndexError: No section at that position.
    """
    updated = roadmap.model_copy(deep=True)
    section = updated.units[unit_index].sections[section_index]
    section.importance = next_importance(section.importance)
    return updated


def set_section_status(roadmap: Roadmap, position: Position, status: SectionStatus) -> None:
    """Set a section's status in place.

    A completed section never moves back to pending/in_progress from here.
    """
    unit_index, section_index = position
    section = roadmap.units[unit_index].sections[section_index]
    if section.status == SectionStatus.COMPLETED and status != SectionStatus.COMPLETED:
        logger.debug("Section %s already completed; keeping status", section.id)
        return
    section.status = status


class SectionNavigator:
    """Moves a (unit, section) cursor through a roadmap."""

    def __init__(self, roadmap: Roadmap):
        self.roadmap = roadmap

    def is_valid(self, position: Position) -> bool:
        unit_index, section_index = position
        units = self.roadmap.units
        return 0 <= unit_index < len(units) and 0 <= section_index < len(units[unit_index].sections)

    def first(self) -> Optional[Position]:
        for unit_index, unit in enumerate(self.roadmap.units):
            if unit.sections:
                return (unit_index, 0)
        return None

    def advance(self, position: Position) -> Optional[Position]:
        """Next position in reading order, or None past the last section."""
        unit_index, section_index = position
        units = self.roadmap.units
        section_index += 1
        while unit_index < len(units):
            if section_index < len(units[unit_index].sections):
                return (unit_index, section_index)
            unit_index += 1
            section_index = 0
        return None

    def rewind(self, position: Position) -> Position:
        """Previous position; stays put at the first section."""
        unit_index, section_index = position
        units = self.roadmap.units
        if section_index > 0:
            return (unit_index, section_index - 1)
        prev_unit = unit_index - 1
        while prev_unit >= 0:
            if units[prev_unit].sections:
                return (prev_unit, len(units[prev_unit].sections) - 1)
            prev_unit -= 1
        return position

    def next_teachable(self, position: Position) -> tuple[Optional[Position], list[Position]]:
        """Advance past sections marked skip.

        Returns the next position to teach (or None) and the positions
        passed over on the way.
        """
        passed: list[Position] = []
        candidate = self.advance(position)
        while candidate is not None:
            unit_index, section_index = candidate
            section = self.roadmap.units[unit_index].sections[section_index]
            if section.importance != Importance.SKIP:
                return candidate, passed
            passed.append(candidate)
            candidate = self.advance(candidate)
        return None, passed

    def first_teachable(self) -> tuple[Optional[Position], list[Position]]:
        start = self.first()
        if start is None:
            return None, []
        unit_index, section_index = start
        if self.roadmap.units[unit_index].sections[section_index].importance != Importance.SKIP:
            return start, []
        candidate, passed = self.next_teachable(start)
        return candidate, [start] + passed

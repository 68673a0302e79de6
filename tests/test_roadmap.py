"""Unit tests for roadmap parsing, importance cycling and section navigation."""

import json
import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lib.errors import RoadmapParseFailure
from lib.models import Importance, Roadmap, Section, SectionStatus, Unit
from lib.roadmap import (
    SectionNavigator,
    fallback_roadmap,
    next_importance,
    parse_roadmap,
    set_section_status,
    toggle_importance,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _roadmap(*section_counts: int) -> Roadmap:
    """Roadmap with one unit per count, sections titled "u.s"."""
    return Roadmap(
        goal="goal",
        units=[
            Unit(
                id=f"unit-{u}",
                title=f"Unit {u}",
                sections=[Section(id=f"section-{u}-{s}", title=f"{u}.{s}") for s in range(1, count + 1)],
            )
            for u, count in enumerate(section_counts, start=1)
        ],
    )


# ---------------------------------------------------------------------------
# parse_roadmap / fallback_roadmap
# ---------------------------------------------------------------------------

class TestParseRoadmap:

    def test_parses_dict_and_resets_progress(self):
        roadmap = parse_roadmap({
            "goal": "Learn limits",
            "currentLevel": "beginner",
            "units": [{"id": "u1", "title": "Limits", "sections": [
                {"id": "s1", "title": "Intuition", "status": "completed"},
            ]}],
        })
        assert roadmap.goal == "Learn limits"
        assert roadmap.current_level == "beginner"
        section = roadmap.units[0].sections[0]
        assert section.status == SectionStatus.PENDING
        assert section.importance == Importance.NORMAL

    def test_parses_fenced_json_text_and_fills_ids(self):
        payload = {"goal": "g", "units": [{"title": "A", "sections": [{"title": "a"}, {"title": "b"}]}]}
        roadmap = parse_roadmap("```json\n" + json.dumps(payload) + "\n```", current_level="lvl")
        assert roadmap.units[0].id == "unit-1"
        assert [s.id for s in roadmap.units[0].sections] == ["section-1-1", "section-1-2"]
        assert roadmap.current_level == "lvl"

    @pytest.mark.parametrize("raw", [
        "not json",
        "[]",
        42,
        {"units": [{"title": "A", "sections": [{"title": "a"}]}]},
        {"goal": "g", "units": []},
        {"goal": "g", "units": [{"title": "A", "sections": []}]},
        {"goal": "g", "units": [{"title": "A", "sections": [{"id": "x"}]}]},
    ])
    def test_rejects_unusable_output(self, raw):
        with pytest.raises(RoadmapParseFailure):
            parse_roadmap(raw)

    def test_fallback_keeps_goal_and_has_two_units(self):
        goal = "Learn calculus for physics"
        roadmap = fallback_roadmap(goal, "high school")
        assert roadmap.goal == goal
        assert roadmap.current_level == "high school"
        assert len(roadmap.units) == 2
        assert [len(u.sections) for u in roadmap.units] == [3, 2]
        assert roadmap.units[0].title == "Learn calculus: Fundamentals"
        assert all(s.status == SectionStatus.PENDING for u in roadmap.units for s in u.sections)


# ---------------------------------------------------------------------------
# importance / status
# ---------------------------------------------------------------------------

class TestImportance:

    def test_cycle(self):
        assert next_importance(Importance.NORMAL) == Importance.FOCUS
        assert next_importance(Importance.FOCUS) == Importance.SKIP
        assert next_importance(Importance.SKIP) == Importance.NORMAL

    def test_three_toggles_restore_original(self):
        roadmap = _roadmap(2)
        toggled = roadmap
        for _ in range(3):
            toggled = toggle_importance(toggled, 0, 1)
        assert toggled == roadmap

    def test_toggle_copies_and_keeps_status(self):
        roadmap = _roadmap(2)
        roadmap.units[0].sections[0].status = SectionStatus.IN_PROGRESS
        toggled = toggle_importance(roadmap, 0, 0)
        assert roadmap.units[0].sections[0].importance == Importance.NORMAL
        assert toggled.units[0].sections[0].importance == Importance.FOCUS
        assert toggled.units[0].sections[0].status == SectionStatus.IN_PROGRESS

    def test_toggle_out_of_range(self):
        with pytest.raises(IndexError):
            toggle_importance(_roadmap(1), 0, 5)

    def test_completed_never_regresses(self):
        roadmap = _roadmap(1)
        set_section_status(roadmap, (0, 0), SectionStatus.COMPLETED)
        set_section_status(roadmap, (0, 0), SectionStatus.IN_PROGRESS)
        assert roadmap.units[0].sections[0].status == SectionStatus.COMPLETED


# ---------------------------------------------------------------------------
# SectionNavigator
# ---------------------------------------------------------------------------

class TestSectionNavigator:

    def test_advance_visits_every_section_once(self):
        roadmap = _roadmap(2, 3, 1)
        navigator = SectionNavigator(roadmap)
        position = (0, 0)
        visited = [position]
        for _ in range(roadmap.total_sections() - 1):
            position = navigator.advance(position)
            visited.append(position)
        assert visited == [(0, 0), (0, 1), (1, 0), (1, 1), (1, 2), (2, 0)]
        assert navigator.advance(position) is None

    def test_advance_skips_empty_units(self):
        navigator = SectionNavigator(_roadmap(1, 0, 1))
        assert navigator.advance((0, 0)) == (2, 0)

    def test_rewind(self):
        navigator = SectionNavigator(_roadmap(2, 2))
        assert navigator.rewind((1, 0)) == (0, 1)
        assert navigator.rewind((1, 1)) == (1, 0)
        assert navigator.rewind((0, 0)) == (0, 0)

    def test_is_valid(self):
        navigator = SectionNavigator(_roadmap(2))
        assert navigator.is_valid((0, 1))
        assert not navigator.is_valid((0, 2))
        assert not navigator.is_valid((1, 0))

    def test_next_teachable_passes_skipped_sections(self):
        roadmap = _roadmap(2, 2)
        roadmap.units[0].sections[1].importance = Importance.SKIP
        roadmap.units[1].sections[0].importance = Importance.SKIP
        position, passed = SectionNavigator(roadmap).next_teachable((0, 0))
        assert position == (1, 1)
        assert passed == [(0, 1), (1, 0)]

    def test_next_teachable_at_end(self):
        roadmap = _roadmap(2)
        roadmap.units[0].sections[1].importance = Importance.SKIP
        assert SectionNavigator(roadmap).next_teachable((0, 0)) == (None, [(0, 1)])

    def test_first_teachable(self):
        roadmap = _roadmap(2)
        assert SectionNavigator(roadmap).first_teachable() == ((0, 0), [])
        roadmap.units[0].sections[0].importance = Importance.SKIP
        assert SectionNavigator(roadmap).first_teachable() == ((0, 1), [(0, 0)])
        assert SectionNavigator(Roadmap(goal="g")).first_teachable() == (None, [])

"""Tests for the guided-learning state machine, driven by a scripted generator."""

import asyncio
import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lib.errors import RoomAccessDenied, UpstreamGeneratorFailure
from lib.mock_responses import MockGenerator
from lib.models import Importance, NodeType, Phase, SectionStatus
from lib.phase_controller import (
    COMPLETED_MESSAGE,
    GENERATING_PLACEHOLDER,
    GENERATION_FAILED,
    GOAL_QUESTION,
    LENIENT_FEEDBACK,
    PhaseController,
    is_affirmative,
)
from lib.store import MemoryStore

ROOM = "room-1"
USER = "user-1"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _run(records) -> list[dict]:
    """Drain an async generator of wire records."""
    async def drain():
        return [r async for r in records]
    return asyncio.run(drain())


def _texts(records: list[dict]) -> list[str]:
    return [r["content"] for r in records if r["type"] == "text"]


def _tool(records: list[dict], name: str) -> list[dict]:
    return [r["args"] for r in records if r["type"] == "tool_call" and r["toolName"] == name]


def _room(store: MemoryStore):
    return asyncio.run(store.get_room(ROOM, USER))


def _setup(turns=None) -> tuple[PhaseController, MemoryStore, MockGenerator]:
    store = MemoryStore()
    generator = MockGenerator(turns=turns)
    return PhaseController(store, generator), store, generator


def _to_proposal(controller: PhaseController) -> None:
    _run(controller.handle_message(ROOM, USER, "I know algebra"))
    _run(controller.handle_message(ROOM, USER, "Differentiate polynomials"))


def _to_learning(controller: PhaseController) -> None:
    _to_proposal(controller)
    _run(controller.handle_message(ROOM, USER, "yes"))


# ---------------------------------------------------------------------------
# is_affirmative
# ---------------------------------------------------------------------------

class TestIsAffirmative:

    @pytest.mark.parametrize("text", [
        "yes",
        "OK!",
        "Sure, start",
        "はい、お願いします",
        "Yes, no changes needed",
        "OK, that's fine, nothing to change",
    ])
    def test_accepts(self, text):
        assert is_affirmative(text)

    @pytest.mark.parametrize("text", [
        "no",
        "No, but okay",
        "いいえ",
        "Don't start yet",
        "change unit 2",
        "add more about integrals",
        "I'd like to go deeper into unit 2 first",
        "Can we start with calculus instead?",
        "Sounds good",
    ])
    def test_rejects(self, text):
        assert not is_affirmative(text)



# ---------------------------------------------------------------------------
# hearing
# ---------------------------------------------------------------------------

class TestHearing:

    def test_level_moves_to_goal_and_asks_question(self):
        controller, store, generator = _setup()
        records = _run(controller.handle_message(ROOM, USER, "I know algebra"))

        room = _room(store)
        assert room.managed_state.phase == Phase.HEARING_GOAL
        assert room.managed_state.hearing_data.level == "I know algebra"
        assert _tool(records, "session_state")[0]["phase"] == "hearing_goal"
        assert len(_texts(records)) == 1
        assert [m.role.value for m in room.messages] == ["user", "assistant"]
        assert "I know algebra" in generator.calls[0]["system_instruction"]

    def test_goal_question_falls_back_on_failure(self):
        controller, store, _ = _setup(turns=[UpstreamGeneratorFailure("down")])
        records = _run(controller.handle_message(ROOM, USER, "beginner"))
        assert _texts(records) == [GOAL_QUESTION]
        assert _room(store).managed_state.phase == Phase.HEARING_GOAL

    def test_duplicate_message_id_is_not_reprocessed(self):
        controller, store, generator = _setup()
        first = _run(controller.handle_message(ROOM, USER, "I know algebra", message_id="m1"))
        second = _run(controller.handle_message(ROOM, USER, "I know algebra", message_id="m1"))

        assert second == [{"type": "text", "content": _texts(first)[-1]}]
        assert len(generator.calls) == 1
        room = _room(store)
        assert room.managed_state.phase == Phase.HEARING_GOAL
        assert len(room.messages) == 2


# ---------------------------------------------------------------------------
# roadmap generation
# ---------------------------------------------------------------------------

class TestRoadmapGeneration:

    def test_goal_produces_proposal(self):
        controller, store, generator = _setup()
        _run(controller.handle_message(ROOM, USER, "I know algebra"))
        records = _run(controller.handle_message(ROOM, USER, "Differentiate polynomials"))

        assert _texts(records)[0] == GENERATING_PLACEHOLDER
        phases = [s["phase"] for s in _tool(records, "session_state")]
        assert phases == ["generating_roadmap", "proposal"]

        state = _room(store).managed_state
        assert state.phase == Phase.PROPOSAL
        assert state.hearing_data.goal == "Differentiate polynomials"
        assert state.roadmap.total_sections() == 4
        assert generator.calls[-1]["tools"] == ["generate_roadmap"]

    def test_unparsable_roadmap_uses_fallback(self):
        controller, store, _ = _setup(turns=[
            [{"type": "text", "content": "What is your goal?"}],
            [{"type": "text", "content": "not json"}],
        ])
        _run(controller.handle_message(ROOM, USER, "beginner"))
        _run(controller.handle_message(ROOM, USER, "Understand statistics basics"))

        state = _room(store).managed_state
        assert state.phase == Phase.PROPOSAL
        assert len(state.roadmap.units) == 2
        assert state.roadmap.goal == "Understand statistics basics"

    def test_upstream_failure_returns_to_goal_hearing(self):
        controller, store, _ = _setup(turns=[
            [{"type": "text", "content": "What is your goal?"}],
            UpstreamGeneratorFailure("503"),
        ])
        _run(controller.handle_message(ROOM, USER, "beginner"))
        records = _run(controller.handle_message(ROOM, USER, "Learn Python"))

        assert _texts(records)[-1] == GENERATION_FAILED
        state = _room(store).managed_state
        assert state.phase == Phase.HEARING_GOAL
        assert state.roadmap is None

    def test_non_affirmative_reply_keeps_proposal(self):
        controller, store, _ = _setup()
        _to_proposal(controller)
        before = _room(store).managed_state.roadmap

        records = _run(controller.handle_message(ROOM, USER, "add more about integrals"))

        assert _tool(records, "modify_request") == [{"request": "add more about integrals"}]
        state = _room(store).managed_state
        assert state.phase == Phase.PROPOSAL
        assert state.roadmap == before

    def test_modify_roadmap_replaces_proposal(self):
        controller, store, _ = _setup()
        _to_proposal(controller)
        controller.generator.turns.append([{
            "type": "tool_call",
            "toolName": "generate_roadmap",
            "args": {"goal": "Differentiate polynomials", "units": [
                {"id": "unit-1", "title": "Derivatives only", "sections": [{"id": "s1", "title": "Power rule"}]},
            ]},
        }])

        records = _run(controller.modify_roadmap(ROOM, USER, "skip limits"))

        state = _room(store).managed_state
        assert state.phase == Phase.PROPOSAL
        assert [u.title for u in state.roadmap.units] == ["Derivatives only"]
        assert _tool(records, "session_state")[0]["roadmap"]["units"][0]["title"] == "Derivatives only"

    def test_modify_roadmap_outside_proposal_is_refused(self):
        controller, store, generator = _setup()
        records = _run(controller.modify_roadmap(ROOM, USER, "anything"))
        assert len(_texts(records)) == 1
        assert generator.calls == []
        assert _room(store).managed_state.phase == Phase.HEARING_LEVEL


# ---------------------------------------------------------------------------
# learning
# ---------------------------------------------------------------------------

class TestLearning:

    def test_accepting_starts_first_section(self):
        controller, store, _ = _setup()
        _to_proposal(controller)
        records = _run(controller.handle_message(ROOM, USER, "yes"))

        room = _room(store)
        state = room.managed_state
        assert state.phase == Phase.LEARNING
        assert (state.current_unit_index, state.current_section_index) == (0, 0)
        assert state.roadmap.units[0].sections[0].status == SectionStatus.IN_PROGRESS

        text_node, quiz_node = room.board.nodes
        assert text_node.content.startswith("# Intuition for limits\n\n")
        assert text_node.section_id == "section-1-1"
        assert quiz_node.type == NodeType.QUIZ
        assert quiz_node.quiz_data["correctAnswer"] == 2
        assert text_node.chat_turn_id == quiz_node.chat_turn_id

        ops = _tool(records, "generate_response")[0]["operations"]
        assert [op["node"]["id"] for op in ops] == [text_node.id, quiz_node.id]

    def test_advance_moves_through_roadmap_and_completes(self):
        controller, store, _ = _setup()
        _to_learning(controller)

        _run(controller.advance(ROOM, USER, True))
        state = _room(store).managed_state
        assert (state.current_unit_index, state.current_section_index) == (0, 1)
        assert state.roadmap.units[0].sections[0].status == SectionStatus.COMPLETED
        assert state.roadmap.units[0].sections[1].status == SectionStatus.IN_PROGRESS

        _run(controller.advance(ROOM, USER, False))
        _run(controller.advance(ROOM, USER, True))
        records = _run(controller.advance(ROOM, USER, True))

        state = _room(store).managed_state
        assert state.phase == Phase.COMPLETED
        assert _texts(records)[-1] == COMPLETED_MESSAGE
        statuses = [s.status for u in state.roadmap.units for s in u.sections]
        assert statuses == [SectionStatus.COMPLETED] * 4

    def test_skipped_sections_are_passed_over(self):
        controller, store, _ = _setup()
        _to_learning(controller)
        asyncio.run(controller.set_importance(ROOM, USER, 0, 1))
        roadmap = asyncio.run(controller.set_importance(ROOM, USER, 0, 1))
        assert roadmap.units[0].sections[1].importance == Importance.SKIP

        _run(controller.advance(ROOM, USER, True))

        state = _room(store).managed_state
        assert (state.current_unit_index, state.current_section_index) == (1, 0)
        assert state.roadmap.units[0].sections[1].status == SectionStatus.SKIPPED
        in_progress = [s for u in state.roadmap.units for s in u.sections if s.status == SectionStatus.IN_PROGRESS]
        assert len(in_progress) == 1

    def test_set_importance_bad_position(self):
        controller, _, _ = _setup()
        _to_proposal(controller)
        with pytest.raises(LookupError):
            asyncio.run(controller.set_importance(ROOM, USER, 5, 0))

    def test_question_during_learning_adds_answer_node(self):
        controller, store, _ = _setup()
        _to_learning(controller)
        controller.generator.turns.append([{"type": "text", "content": "A limit is the value approached."}])

        _run(controller.handle_message(ROOM, USER, "What is a limit?"))

        node = _room(store).board.nodes[-1]
        assert node.content == "## Q: What is a limit?\n\nA limit is the value approached."
        assert node.section_id == "section-1-1"
        assert _room(store).managed_state.phase == Phase.LEARNING

    def test_unparsable_lesson_uses_template(self):
        controller, store, _ = _setup()
        _to_proposal(controller)
        controller.generator.turns.append([{"type": "text", "content": "not json"}])

        _run(controller.handle_message(ROOM, USER, "ok"))

        text_node, quiz_node = _room(store).board.nodes
        assert text_node.content.startswith("# Intuition for limits")
        assert quiz_node.quiz_data["type"] == "freeform"

    def test_teaching_failure_can_be_retried(self):
        controller, store, _ = _setup()
        _to_proposal(controller)
        controller.generator.turns.append(UpstreamGeneratorFailure("timeout"))

        records = _run(controller.handle_message(ROOM, USER, "yes"))
        assert _texts(records)[-1] == GENERATION_FAILED
        assert _room(store).board.nodes == []
        assert _room(store).managed_state.phase == Phase.LEARNING

        _run(controller.teach_current(ROOM, USER))
        assert len(_room(store).board.nodes) == 2

    def test_advance_outside_learning_changes_nothing(self):
        controller, store, _ = _setup()
        records = _run(controller.advance(ROOM, USER, True))
        assert len(records) == 1
        assert _room(store).managed_state.phase == Phase.HEARING_LEVEL


# ---------------------------------------------------------------------------
# evaluation / access
# ---------------------------------------------------------------------------

class TestEvaluateAndAccess:

    def test_evaluation_uses_tool_result(self):
        controller, _, _ = _setup()
        result = asyncio.run(controller.evaluate_answer("2+2?", "4"))
        assert result.is_correct is True
        assert result.feedback == "Nice work, that's right!"

    def test_unparsable_evaluation_is_lenient(self):
        controller, _, _ = _setup(turns=[[{"type": "text", "content": "I think so"}]])
        result = asyncio.run(controller.evaluate_answer("2+2?", "5"))
        assert result.is_correct is True
        assert result.feedback == LENIENT_FEEDBACK
        assert result.should_repeat is False

    def test_other_users_room_is_denied(self):
        controller, _, _ = _setup()
        _run(controller.handle_message(ROOM, USER, "hello"))
        with pytest.raises(RoomAccessDenied):
            _run(controller.handle_message(ROOM, "intruder", "hello"))

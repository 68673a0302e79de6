"""Guided-learning state machine.

hearing_level -> hearing_goal -> generating_roadmap -> proposal -> learning -> completed

Every public operation is an async generator of wire records (the same
``text`` / ``tool_call`` shapes the Generator emits), so routes can stream
them as NDJSON. State transitions are saved as they happen; chat messages are
appended only once the operation has run to completion.
"""

import json
import logging
import re
import uuid
from typing import AsyncIterator, Optional

from pydantic import ValidationError

from lib.board_ops import BoardOperationApplier
from lib.concurrency import RoomGuard
from lib.errors import EvaluationParseFailure, RoadmapParseFailure, UpstreamGeneratorFailure
from lib.models import (
    ChatMessage,
    EvaluationResult,
    Importance,
    MessageRole,
    NodeType,
    Phase,
    PracticeQuestion,
    Roadmap,
    SectionStatus,
    TeachSectionResult,
    EVALUATE_ANSWER_TOOL,
    GENERATE_ROADMAP_TOOL,
    TEACH_SECTION_TOOL,
)
from lib.prompt_templates import (
    build_answer_question_prompt,
    build_evaluate_prompt,
    build_hearing_goal_prompt,
    build_modify_roadmap_prompt,
    build_roadmap_prompt,
    build_teach_section_prompt,
)
from lib.providers.base import Generator
from lib.roadmap import (
    Position,
    SectionNavigator,
    fallback_roadmap,
    parse_roadmap,
    set_section_status,
    toggle_importance,
)
from lib.store import RoomSession, SessionStore
from lib.stream_decoder import CollectedTurn, TextDelta, ToolCall, collect

logger = logging.getLogger(__name__)

GOAL_QUESTION = (
    "Thanks! What would you like to be able to understand or do once you've finished? "
    "Tell me your goal as concretely as you can."
)
GENERATING_PLACEHOLDER = "Creating your learning roadmap..."
GENERATION_FAILED = "Sorry, something went wrong while talking to the tutor model. Please try again."
MODIFY_HINT = (
    "Noted. You can adjust the roadmap (focus or skip sections, or describe a change), "
    "and reply \"yes\" when you're ready to start."
)
NOTHING_TO_ADVANCE = "There is no section in progress right now."
COMPLETED_MESSAGE = "Congratulations! You've completed every section of your roadmap!"
CORRECT_FEEDBACK = "Correct! Let's move on to the next section."
INCORRECT_FEEDBACK = "Moving on to the next section. You can come back and review this one later."
ANSWER_ADDED = "I've added the answer to the board. Try the practice question when you're ready."
CLARIFY = "Thanks for the question! Could you tell me a bit more about what you'd like to know?"
LENIENT_FEEDBACK = "Answer received!"

_AFFIRMATIVE_RE = re.compile(r"\b(?:yes|ok|okay|fine|sure)\b", re.IGNORECASE)
_AFFIRMATIVE_PHRASES = ("はい", "お願いします", "いいです", "大丈夫", "ＯＫ")
# Only a reply that opens with a refusal is vetoed.
_LEADING_NO_RE = re.compile(r"^\s*(?:(?:no|nope)\b|いいえ)", re.IGNORECASE)
_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def is_affirmative(text: str) -> bool:
    """True when a proposal reply accepts the roadmap."""
    if _LEADING_NO_RE.search(text):
        return False
    return bool(_AFFIRMATIVE_RE.search(text)) or any(p in text for p in _AFFIRMATIVE_PHRASES)


def _tool_args(turn: CollectedTurn, tool_name: str):
    """Arguments of the named tool call, else the turn's text (maybe JSON)."""
    call = turn.tool_call(tool_name)
    if call is not None:
        return call.args
    return turn.text


def _load_json_object(raw) -> dict:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        data = json.loads(_FENCE.sub("", raw.strip()))
        if isinstance(data, dict):
            return data
    raise ValueError("not a JSON object")


def _state_record(room: RoomSession) -> dict:
    return ToolCall(name="session_state", args=room.managed_state.to_wire()).to_record()


def fallback_teaching(section_title: str) -> TeachSectionResult:
    """Templated lesson used when the model's lesson cannot be parsed."""
    keyword = re.split(r"\s+|[のをにはが]", section_title.strip(), maxsplit=1)[0] or section_title
    return TeachSectionResult(
        explanation=f"In this section we will learn about {section_title}.",
        practice_question=PracticeQuestion(
            question=f"Check your understanding of {section_title}: what are its main points?",
            type="freeform",
            keywords=[keyword],
            explanation=f"Understanding the key points of {section_title} is what matters here.",
        ),
        chat_message=f"Let's learn about {section_title}!",
    )


class _Turn:
    """Messages and board changes produced while handling one request."""

    def __init__(self, room: RoomSession):
        self.room = room
        self.turn_id = str(uuid.uuid4())
        self.messages: list[ChatMessage] = []
        self.board_changed = False

    def user(self, content: str, message_id: Optional[str] = None) -> None:
        self.messages.append(ChatMessage(
            id=message_id or str(uuid.uuid4()),
            role=MessageRole.USER,
            content=content,
        ))

    def say(self, content: str, chat_turn_id: Optional[str] = None) -> dict:
        self.messages.append(ChatMessage(
            id=str(uuid.uuid4()),
            role=MessageRole.ASSISTANT,
            content=content,
            chat_turn_id=chat_turn_id,
        ))
        return TextDelta(content=content).to_record()

    def create_nodes(self, nodes: list[dict]) -> dict:
        """Create nodes on the board as one batch; returns the wire record."""
        applier = BoardOperationApplier(self.room.board, chat_turn_id=self.turn_id)
        result = applier.apply({"operations": [{"action": "create", "node": n} for n in nodes]})
        self.board_changed = self.board_changed or result.changed
        created = [self.room.board.find(node_id) for node_id in result.created]
        return ToolCall(name="generate_response", args={
            "comment": "",
            "operations": [{"action": "create", "node": node.to_wire()} for node in created],
        }).to_record()


class PhaseController:
    """Sequences a managed tutoring session for a room."""

    def __init__(self, store: SessionStore, generator: Generator, guard: Optional[RoomGuard] = None):
        self.store = store
        self.generator = generator
        self.guard = guard or RoomGuard()

    # -- public operations -------------------------------------------------

    async def handle_message(
        self,
        room_id: str,
        user_id: str,
        content: str,
        message_id: Optional[str] = None,
    ) -> AsyncIterator[dict]:
        """Route an inbound chat message according to the room's phase."""
        async with self.guard.lock(room_id):
            room = await self.store.get_room(room_id, user_id)
            state = room.managed_state

            if message_id and message_id == state.last_message_id:
                logger.info("Message %s already handled for room %s", message_id, room_id)
                last = next((m for m in reversed(room.messages) if m.role == MessageRole.ASSISTANT), None)
                if last is not None:
                    yield TextDelta(content=last.content).to_record()
                return

            turn = _Turn(room)
            turn.user(content, message_id)

            handlers = {
                Phase.HEARING_LEVEL: self._on_hearing_level,
                Phase.HEARING_GOAL: self._on_hearing_goal,
                # A room left in generating_roadmap retries with the new goal.
                Phase.GENERATING_ROADMAP: self._on_hearing_goal,
                Phase.PROPOSAL: self._on_proposal,
                Phase.LEARNING: self._on_learning,
                Phase.COMPLETED: self._on_completed,
            }
            async for record in handlers[state.phase](turn, content):
                yield record

            if message_id:
                state.last_message_id = message_id
                await self._save_state(room)
            await self._commit(turn)

    async def advance(self, room_id: str, user_id: str, is_correct: bool) -> AsyncIterator[dict]:
        """Close the current section after its quiz and move to the next one."""
        async with self.guard.lock(room_id):
            room = await self.store.get_room(room_id, user_id)
            state = room.managed_state
            if state.phase != Phase.LEARNING or state.current_section() is None:
                yield TextDelta(content=NOTHING_TO_ADVANCE).to_record()
                return

            turn = _Turn(room)
            yield turn.say(CORRECT_FEEDBACK if is_correct else INCORRECT_FEEDBACK)

            roadmap = state.roadmap
            position = (state.current_unit_index, state.current_section_index)
            set_section_status(roadmap, position, SectionStatus.COMPLETED)

            navigator = SectionNavigator(roadmap)
            next_position, passed = navigator.next_teachable(position)
            for skipped in passed:
                set_section_status(roadmap, skipped, SectionStatus.SKIPPED)

            if next_position is None:
                state.phase = Phase.COMPLETED
                await self._save_state(room)
                yield _state_record(room)
                yield turn.say(COMPLETED_MESSAGE)
            else:
                self._move_to(room, next_position)
                await self._save_state(room)
                yield _state_record(room)
                async for record in self._teach(turn, next_position):
                    yield record

            await self._commit(turn)

    async def teach_current(self, room_id: str, user_id: str) -> AsyncIterator[dict]:
        """Teach (again) the section in progress, e.g. after a failed model call."""
        async with self.guard.lock(room_id):
            room = await self.store.get_room(room_id, user_id)
            state = room.managed_state
            if state.phase != Phase.LEARNING or state.current_section() is None:
                yield TextDelta(content=NOTHING_TO_ADVANCE).to_record()
                return
            turn = _Turn(room)
            async for record in self._teach(turn, (state.current_unit_index, state.current_section_index)):
                yield record
            await self._commit(turn)

    async def modify_roadmap(self, room_id: str, user_id: str, request: str) -> AsyncIterator[dict]:
        """Regenerate the proposed roadmap from a change request."""
        async with self.guard.lock(room_id):
            room = await self.store.get_room(room_id, user_id)
            state = room.managed_state
            turn = _Turn(room)
            turn.user(request)

            if state.phase != Phase.PROPOSAL or state.roadmap is None:
                yield turn.say("The roadmap can only be changed before learning starts.")
                await self._commit(turn)
                return

            try:
                collected = await self._call(
                    [{"role": "user", "parts": [{"text": request}]}],
                    build_modify_roadmap_prompt(state.roadmap, request),
                    tools=[GENERATE_ROADMAP_TOOL],
                )
                state.roadmap = parse_roadmap(
                    _tool_args(collected, GENERATE_ROADMAP_TOOL["name"]),
                    current_level=state.roadmap.current_level,
                )
            except (UpstreamGeneratorFailure, RoadmapParseFailure) as e:
                logger.warning("Roadmap modification failed for room %s: %s", room_id, e)
                yield turn.say("I couldn't update the roadmap, so I kept the current one. " + MODIFY_HINT)
                await self._commit(turn)
                return

            await self._save_state(room)
            yield _state_record(room)
            yield turn.say(self._proposal_text(state.roadmap))
            await self._commit(turn)

    async def set_importance(self, room_id: str, user_id: str, unit_index: int, section_index: int) -> Roadmap:
        """Cycle one section's importance. Raises LookupError for a bad position."""
        async with self.guard.lock(room_id):
            room = await self.store.get_room(room_id, user_id)
            state = room.managed_state
            if state.roadmap is None:
                raise LookupError("room has no roadmap")
            try:
                state.roadmap = toggle_importance(state.roadmap, unit_index, section_index)
            except IndexError as e:
                raise LookupError(f"no section at ({unit_index}, {section_index})") from e
            await self._save_state(room)
            return state.roadmap

    async def evaluate_answer(
        self,
        question: str,
        user_answer: str,
        expected: Optional[str] = None,
    ) -> EvaluationResult:
        """Grade a freeform answer; anything unusable grades as correct."""
        try:
            collected = await self._call(
                [{"role": "user", "parts": [{"text": user_answer}]}],
                build_evaluate_prompt(question, user_answer, expected),
                tools=[EVALUATE_ANSWER_TOOL],
            )
            return self._parse_evaluation(_tool_args(collected, EVALUATE_ANSWER_TOOL["name"]))
        except (UpstreamGeneratorFailure, EvaluationParseFailure) as e:
            logger.warning("Grading leniently: %s", e)
            return EvaluationResult(is_correct=True, feedback=LENIENT_FEEDBACK)

    # -- phase handlers ----------------------------------------------------

    async def _on_hearing_level(self, turn: _Turn, content: str) -> AsyncIterator[dict]:
        room = turn.room
        state = room.managed_state
        state.hearing_data.level = content
        state.phase = Phase.HEARING_GOAL
        await self._save_state(room)
        yield _state_record(room)

        try:
            collected = await self._call(
                [{"role": "user", "parts": [{"text": content}]}],
                build_hearing_goal_prompt(content),
            )
            question = collected.text.strip() or GOAL_QUESTION
        except UpstreamGeneratorFailure as e:
            logger.warning("Using fixed goal question: %s", e)
            question = GOAL_QUESTION
        yield turn.say(question)

    async def _on_hearing_goal(self, turn: _Turn, content: str) -> AsyncIterator[dict]:
        room = turn.room
        state = room.managed_state
        level = state.hearing_data.level or ""
        state.hearing_data.goal = content
        state.phase = Phase.GENERATING_ROADMAP
        await self._save_state(room)
        yield _state_record(room)
        yield TextDelta(content=GENERATING_PLACEHOLDER).to_record()

        try:
            collected = await self._call(
                [{"role": "user", "parts": [{"text": content}]}],
                build_roadmap_prompt(level, content),
                tools=[GENERATE_ROADMAP_TOOL],
            )
        except UpstreamGeneratorFailure:
            state.phase = Phase.HEARING_GOAL
            await self._save_state(room)
            yield _state_record(room)
            yield turn.say(GENERATION_FAILED)
            return

        try:
            roadmap = parse_roadmap(_tool_args(collected, GENERATE_ROADMAP_TOOL["name"]), current_level=level)
        except RoadmapParseFailure as e:
            logger.warning("Roadmap output unusable for room %s (%s); using template", room.room_id, e)
            roadmap = fallback_roadmap(content, level)

        state.roadmap = roadmap
        state.current_unit_index = 0
        state.current_section_index = 0
        state.phase = Phase.PROPOSAL
        await self._save_state(room)
        yield _state_record(room)
        yield turn.say(self._proposal_text(roadmap))

    async def _on_proposal(self, turn: _Turn, content: str) -> AsyncIterator[dict]:
        room = turn.room
        state = room.managed_state
        if state.roadmap is None or not is_affirmative(content):
            # Changes go through modify_roadmap; nothing is mutated here.
            yield ToolCall(name="modify_request", args={"request": content}).to_record()
            yield turn.say(MODIFY_HINT)
            return

        navigator = SectionNavigator(state.roadmap)
        position, passed = navigator.first_teachable()
        for skipped in passed:
            set_section_status(state.roadmap, skipped, SectionStatus.SKIPPED)

        if position is None:
            state.phase = Phase.COMPLETED
            await self._save_state(room)
            yield _state_record(room)
            yield turn.say(COMPLETED_MESSAGE)
            return

        self._move_to(room, position)
        state.phase = Phase.LEARNING
        await self._save_state(room)
        yield _state_record(room)
        section = state.current_section()
        yield turn.say(f"Great, let's begin with \"{section.title}\"!")
        async for record in self._teach(turn, position):
            yield record

    async def _on_learning(self, turn: _Turn, content: str) -> AsyncIterator[dict]:
        state = turn.room.managed_state
        section = state.current_section()
        if section is None:
            yield turn.say(NOTHING_TO_ADVANCE)
            return
        unit = state.roadmap.units[state.current_unit_index]
        explanation = next(
            (
                n.content for n in turn.room.board.nodes
                if n.section_id == section.id and n.type == NodeType.TEXT
            ),
            None,
        )

        try:
            collected = await self._call(
                [{"role": "user", "parts": [{"text": content}]}],
                build_answer_question_prompt(section.title, unit.title, explanation),
            )
        except UpstreamGeneratorFailure:
            yield turn.say(GENERATION_FAILED)
            return

        answer = collected.text.strip()
        if not answer:
            yield turn.say(CLARIFY)
            return

        yield turn.create_nodes([{
            "type": "text",
            "content": f"## Q: {content}\n\n{answer}",
            "sectionId": section.id,
        }])
        yield turn.say(ANSWER_ADDED, chat_turn_id=turn.turn_id)

    async def _on_completed(self, turn: _Turn, content: str) -> AsyncIterator[dict]:
        yield turn.say(COMPLETED_MESSAGE)

    # -- helpers -----------------------------------------------------------

    async def _teach(self, turn: _Turn, position: Position) -> AsyncIterator[dict]:
        state = turn.room.managed_state
        roadmap = state.roadmap
        unit = roadmap.units[position[0]]
        section = unit.sections[position[1]]

        try:
            collected = await self._call(
                [{"role": "user", "parts": [{"text": f"Teach the section \"{section.title}\"."}]}],
                build_teach_section_prompt(
                    unit.title,
                    section.title,
                    roadmap.goal,
                    roadmap.current_level,
                    focus=section.importance == Importance.FOCUS,
                ),
                tools=[TEACH_SECTION_TOOL],
            )
        except UpstreamGeneratorFailure:
            yield turn.say(GENERATION_FAILED)
            return

        try:
            lesson = TeachSectionResult.model_validate(
                _load_json_object(_tool_args(collected, TEACH_SECTION_TOOL["name"]))
            )
        except (ValueError, ValidationError) as e:
            logger.warning("Lesson output unusable for %s (%s); using template", section.id, e)
            lesson = fallback_teaching(section.title)

        question = lesson.practice_question
        yield turn.create_nodes([
            {
                "type": "text",
                "content": f"# {section.title}\n\n{lesson.explanation}",
                "sectionId": section.id,
            },
            {
                "type": "quiz",
                "content": question.question,
                "sectionId": section.id,
                "quizData": question.to_wire(),
            },
        ])
        yield turn.say(lesson.chat_message, chat_turn_id=turn.turn_id)

    async def _call(
        self,
        history: list[dict],
        system_instruction: str,
        tools: Optional[list[dict]] = None,
    ) -> CollectedTurn:
        """Run one Generator turn to completion."""
        try:
            return await collect(self.generator.stream(history, system_instruction, tools=tools))
        except UpstreamGeneratorFailure:
            logger.exception("Generator call failed")
            raise
        except Exception as e:
            logger.exception("Generator call failed")
            raise UpstreamGeneratorFailure(str(e)) from e

    def _parse_evaluation(self, raw) -> EvaluationResult:
        try:
            return EvaluationResult.model_validate(_load_json_object(raw))
        except (ValueError, ValidationError) as e:
            raise EvaluationParseFailure(str(e)) from e

    def _move_to(self, room: RoomSession, position: Position) -> None:
        state = room.managed_state
        state.current_unit_index, state.current_section_index = position
        set_section_status(state.roadmap, position, SectionStatus.IN_PROGRESS)

    @staticmethod
    def _proposal_text(roadmap: Roadmap) -> str:
        first = next((u.sections[0].title for u in roadmap.units if u.sections), "")
        return (
            f"I've created your learning roadmap!\n\n"
            f"Goal: {roadmap.goal}\n\n"
            f"It has {len(roadmap.units)} units with {roadmap.total_sections()} sections in total.\n\n"
            f"Reply \"yes\" to start with \"{first}\", or tell me what you'd like to change."
        )

    async def _save_state(self, room: RoomSession) -> None:
        await self.store.save_managed_state(room.room_id, room.managed_state)

    async def _commit(self, turn: _Turn) -> None:
        if turn.board_changed:
            await self.store.save_board(turn.room.room_id, turn.room.board)
        await self.store.append_messages(turn.room.room_id, turn.messages)

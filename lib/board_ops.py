"""Applies generate_response tool-call payloads to a room's board."""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError

from lib.errors import UnknownOperationTarget
from lib.models import Board, BoardNode, BoardOperation, NodeStyle, NodeType, now_ms

logger = logging.getLogger(__name__)

_NODE_TYPES = {t.value for t in NodeType}
# Fields the model may change on an existing node.
_UPDATABLE = {"type", "content", "style", "quizData", "quiz_data", "sectionId", "section_id"}


@dataclass
class ApplyResult:
    """Outcome of applying one tool call."""
    comment: Optional[str] = None
    suggested_questions: Optional[list[str]] = None
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    dropped: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.deleted)


def parse_operation(raw: Any) -> Optional[BoardOperation]:
    """Decode one loosely typed operation; None when it cannot be applied."""
    if not isinstance(raw, dict):
        return None
    node = raw.get("node")
    if node is None:
        node = {}
    if not isinstance(node, dict):
        return None
    try:
        op = BoardOperation(action=raw.get("action"), node=node)
    except ValidationError:
        return None
    if op.action in ("update", "delete") and not isinstance(op.node.get("id"), str):
        return None
    return op


def _coerce_type(value: Any) -> NodeType:
    if isinstance(value, str) and value in _NODE_TYPES:
        return NodeType(value)
    if value is not None:
        logger.warning("Unknown node type %r, using text", value)
    return NodeType.TEXT


def _coerce_style(value: Any) -> Optional[NodeStyle]:
    if not isinstance(value, dict):
        return None
    try:
        return NodeStyle.model_validate(value)
    except ValidationError:
        return None


def _coerce_content(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


# bool is an int subclass; a JSON true is not a timestamp.
def _is_timestamp(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class BoardOperationApplier:
    """Applies operations strictly in array order against one board.

    ``chat_turn_id`` tags every node created during the turn so the client can
    group them. The board's ``last_updated`` moves once per batch.
    """

    def __init__(self, board: Board, chat_turn_id: Optional[str] = None, created_by: str = "ai"):
        self.board = board
        self.chat_turn_id = chat_turn_id
        self.created_by = created_by

    def apply(self, args: Any) -> ApplyResult:
        """Apply a ``generate_response`` payload to the board.

        Args:
            args: Tool-call arguments, ``{comment, operations, suggestedQuestions}``.
                Anything that is not an object is ignored.

        Returns:
            ApplyResult with the comment, suggestions (None when the key was
            absent) and the ids created, updated and deleted.
        """
        result = ApplyResult()
        if not isinstance(args, dict):
            logger.warning("Ignoring tool call with non-object args: %r", type(args).__name__)
            return result

        comment = args.get("comment")
        if isinstance(comment, str):
            result.comment = comment

        operations = args.get("operations")
        if isinstance(operations, list):
            self.apply_operations(operations, result)

        suggestions = args.get("suggestedQuestions")
        if isinstance(suggestions, list):
            result.suggested_questions = [q for q in suggestions if isinstance(q, str)]

        return result

    def apply_operations(self, operations: list, result: Optional[ApplyResult] = None) -> ApplyResult:
        """Apply operations in array order, skipping malformed ones and unknown targets.

        Args:
            operations: Raw ``{action, node}`` items.
            result: Result to accumulate into; a fresh one when omitted.

        Returns:
            The accumulated ApplyResult. ``board.last_updated`` is bumped once
            when at least one operation changed the board.
        """
        result = result or ApplyResult()
        for raw in operations:
            op = parse_operation(raw)
            if op is None:
                result.dropped += 1
                logger.warning("Dropping malformed board operation: %r", raw)
                continue
            try:
                if op.action == "create":
                    node_id = self._create(op.node)
                    if node_id is None:
                        result.dropped += 1
                    else:
                        result.created.append(node_id)
                elif op.action == "update":
                    result.updated.append(self._update(op.node))
                else:
                    result.deleted.append(self._delete(op.node))
            except UnknownOperationTarget as e:
                result.dropped += 1
                logger.info("Board operation skipped: %s", e)

        if result.changed:
            self.board.last_updated = now_ms()
        return result

    def _create(self, raw: dict) -> Optional[str]:
        node_id = raw.get("id")
        if isinstance(node_id, str) and node_id:
            if self.board.find(node_id) is not None:
                logger.info("Create with existing id %s skipped", node_id)
                return None
        else:
            node_id = str(uuid.uuid4())

        created_at = raw.get("createdAt")
        quiz_data = raw.get("quizData", raw.get("quiz_data"))
        node = BoardNode(
            id=node_id,
            type=_coerce_type(raw.get("type")),
            content=_coerce_content(raw.get("content")),
            style=_coerce_style(raw.get("style")),
            chat_turn_id=self.chat_turn_id,
            created_by=self.created_by,
            created_at=created_at if _is_timestamp(created_at) else now_ms(),
            section_id=raw.get("sectionId", raw.get("section_id")),
            quiz_data=quiz_data if isinstance(quiz_data, dict) else None,
        )
        self.board.nodes.append(node)
        return node_id

    def _update(self, raw: dict) -> str:
        node_id = raw["id"]
        node = self.board.find(node_id)
        if node is None:
            raise UnknownOperationTarget("update", node_id)

        for key, value in raw.items():
            if key not in _UPDATABLE:
                continue
            if key == "type":
                node.type = _coerce_type(value)
            elif key == "content":
                node.content = _coerce_content(value)
            elif key == "style":
                node.style = _coerce_style(value)
            elif key in ("quizData", "quiz_data"):
                node.quiz_data = value if isinstance(value, dict) else None
            else:
                node.section_id = value if isinstance(value, str) else None
        return node_id

    def _delete(self, raw: dict) -> str:
        node_id = raw["id"]
        before = len(self.board.nodes)
        self.board.nodes = [n for n in self.board.nodes if n.id != node_id]
        if len(self.board.nodes) == before:
            raise UnknownOperationTarget("delete", node_id)
        return node_id

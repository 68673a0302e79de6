"""Normal (free-form) chat: one model turn streamed as NDJSON and applied to the board."""

import json
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, StreamingResponse

from api.deps import current_guard, current_store, current_user, mock_generator, resolve_generator
from lib.board_ops import BoardOperationApplier
from lib.concurrency import RoomGuard
from lib.errors import QuotaExceeded, RoomAccessDenied, UpstreamGeneratorFailure
from lib.logger import request_logger
from lib.models import Board, ChatMessage, ChatRequest, MessageRole, GENERATE_RESPONSE_TOOL
from lib.prompt_templates import build_chat_system_prompt
from lib.providers import Generator, build_history, history_chars
from lib.quota import QuotaGate, estimate_tokens
from lib.store import RoomSession, SessionStore
from lib.stream_decoder import StreamDecoder, TextDelta, encode_record

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

STREAM_FAILED = "Sorry, I couldn't generate a response. Please try again."


def summarize_board(board: Board) -> str:
    """One line per node: ``id: type: first line of content``."""
    lines = []
    for node in board.nodes:
        first_line = node.content.strip().split("\n", 1)[0][:80]
        lines.append(f"{node.id}: {node.type.value}: {first_line}")
    return "\n".join(lines)


def _build_prompt(room: RoomSession, user_message: ChatMessage) -> tuple[list[dict], str, int]:
    """History, system instruction and prompt size for a turn against ``room``."""
    history = build_history(room.messages + [user_message])
    system_instruction = build_chat_system_prompt(summarize_board(room.board))
    return history, system_instruction, history_chars(history, system_instruction)


def _user_message(body: ChatRequest) -> ChatMessage:
    parts = None
    if body.parts:
        parts = list(body.parts)
        if body.message and not any("text" in p for p in parts):
            parts.insert(0, {"text": body.message})
    return ChatMessage(
        id=body.message_id or str(uuid.uuid4()),
        role=MessageRole.USER,
        content=body.message,
        parts=parts,
    )


@router.post("/chat")
async def chat(
    body: ChatRequest,
    mode: str = Query(default="prod", pattern="^(mock|prod)$"),
    user_id: str = Depends(current_user),
    store: SessionStore = Depends(current_store),
    guard: RoomGuard = Depends(current_guard),
    mock: Generator = Depends(mock_generator),
):
    """
    Stream one tutoring turn for a room.

    Response is NDJSON: ``{"type": "text", "content"}`` deltas and
    ``{"type": "tool_call", "toolName", "args"}`` records, in model order.
    Board operations are applied server-side as they arrive.
    """
    if not body.message.strip() and not body.parts:
        raise HTTPException(status_code=422, detail="message or parts is required")

    log_id = request_logger.log_request("/api/chat", mode, body.room_id, body.message)

    try:
        generator = resolve_generator(mode, body.model, mock)
    except ValueError as e:
        request_logger.log_response(log_id, success=False, error=str(e))
        return JSONResponse(status_code=500, content={"error": str(e)})

    try:
        room = await store.get_room(body.room_id, user_id)
    except RoomAccessDenied:
        request_logger.log_response(log_id, success=False, error="room access denied")
        raise HTTPException(status_code=404, detail="Room not found")

    user_message = _user_message(body)
    # Pre-flight against the room as it is now; the prompt actually sent is
    # rebuilt under the room lock.
    _, _, estimated_chars = _build_prompt(room, user_message)

    gate = QuotaGate(store)
    check = await gate.can_consume(user_id, estimate_tokens(estimated_chars))
    if not check.allowed:
        request_logger.log_response(log_id, success=False, error=check.error)
        content = {"error": check.error}
        if check.remaining is not None:
            content["remaining"] = check.remaining
        return JSONResponse(status_code=403, content=content)

    room_id = body.room_id
    request_id = guard.begin(room_id)

    async def event_stream():
        completion_chars = 0
        try:
            async with guard.lock(room_id):
                # Reload under the lock; an earlier turn may have just committed.
                current = await store.get_room(room_id, user_id)
                history, system_instruction, prompt_chars = _build_prompt(current, user_message)
                turn_id = str(uuid.uuid4())
                applier = BoardOperationApplier(current.board, chat_turn_id=turn_id)
                text_parts: list[str] = []
                comment = None
                suggestions = None
                board_changed = False

                try:
                    async for event in StreamDecoder().decode(
                        generator.stream(history, system_instruction, tools=[GENERATE_RESPONSE_TOOL])
                    ):
                        if not guard.is_current(room_id, request_id):
                            logger.info("Chat stream for room %s superseded", room_id)
                            request_logger.log_response(log_id, success=False, status="superseded")
                            return

                        if isinstance(event, TextDelta):
                            text_parts.append(event.content)
                            completion_chars += len(event.content)
                        else:
                            completion_chars += len(json.dumps(event.args, ensure_ascii=False))
                            if event.name == GENERATE_RESPONSE_TOOL["name"]:
                                result = applier.apply(event.args)
                                board_changed = board_changed or result.changed
                                comment = result.comment or comment
                                if result.suggested_questions is not None:
                                    suggestions = result.suggested_questions
                        yield encode_record(event.to_record())
                except Exception as e:
                    if not isinstance(e, UpstreamGeneratorFailure):
                        logger.exception("Chat generation failed for room %s", room_id)
                    request_logger.log_response(log_id, success=False, error=str(e))
                    yield encode_record(TextDelta(content=STREAM_FAILED).to_record())
                    return

                # A tool-call comment is the chat reply; text deltas stand in without one.
                reply = comment if comment else "".join(text_parts)
                assistant = ChatMessage(
                    id=str(uuid.uuid4()),
                    role=MessageRole.ASSISTANT,
                    content=reply,
                    chat_turn_id=turn_id,
                )
                if board_changed:
                    await store.save_board(room_id, current.board)
                if suggestions is not None:
                    await store.save_suggestions(room_id, suggestions)
                await store.append_messages(room_id, [user_message, assistant])
        finally:
            guard.finish(room_id, request_id)

        tokens = estimate_tokens(prompt_chars, completion_chars)
        try:
            await gate.consume(user_id, tokens)
        except QuotaExceeded as e:
            # The turn already streamed; the overrun is only recorded in the log.
            logger.warning("Post-hoc consumption of %d tokens refused for %s: %s", tokens, user_id, e)
        request_logger.log_response(log_id, success=True, tokens=tokens)

    return StreamingResponse(event_stream(), media_type="application/x-ndjson")

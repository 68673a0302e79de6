"""Room snapshots and the managed (guided-learning) session endpoints."""

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, StreamingResponse

from api.deps import current_guard, current_store, current_user, mock_generator, resolve_generator
from lib.concurrency import RoomGuard
from lib.errors import RoomAccessDenied
from lib.logger import request_logger
from lib.models import (
    AdvanceRequest,
    EvaluateRequest,
    ImportanceRequest,
    ManagedMessageRequest,
    ModifyRoadmapRequest,
)
from lib.phase_controller import PhaseController
from lib.providers import Generator
from lib.store import SessionStore
from lib.stream_decoder import encode_record

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rooms", tags=["rooms"])


async def _load_room(store: SessionStore, room_id: str, user_id: str):
    try:
        return await store.get_room(room_id, user_id)
    except RoomAccessDenied:
        raise HTTPException(status_code=404, detail="Room not found")


def _expected_answer(quiz: dict) -> str | None:
    options = quiz.get("options")
    index = quiz.get("correctAnswer")
    if isinstance(options, list) and isinstance(index, int) and 0 <= index < len(options):
        return options[index]
    keywords = quiz.get("keywords")
    if keywords:
        return ", ".join(keywords)
    return quiz.get("explanation")


def _controller(
    mode: str,
    model: str | None,
    store: SessionStore,
    guard: RoomGuard,
    mock: Generator,
) -> PhaseController:
    return PhaseController(store, resolve_generator(mode, model, mock), guard=guard)


def _ndjson(records: AsyncIterator[dict], log_id: str) -> StreamingResponse:
    async def body():
        try:
            async for record in records:
                yield encode_record(record)
        except Exception as e:
            logger.exception("Managed stream failed")
            request_logger.log_response(log_id, success=False, error=str(e))
            raise
        request_logger.log_response(log_id, success=True)

    return StreamingResponse(body(), media_type="application/x-ndjson")


@router.get("/{room_id}")
async def get_room(
    room_id: str,
    user_id: str = Depends(current_user),
    store: SessionStore = Depends(current_store),
):
    """Board nodes, messages, suggestions and managed state of a room."""
    room = await _load_room(store, room_id, user_id)
    return room.snapshot()


@router.post("/{room_id}/managed/message")
async def managed_message(
    room_id: str,
    body: ManagedMessageRequest,
    mode: str = Query(default="prod", pattern="^(mock|prod)$"),
    user_id: str = Depends(current_user),
    store: SessionStore = Depends(current_store),
    guard: RoomGuard = Depends(current_guard),
    mock: Generator = Depends(mock_generator),
):
    """Feed a chat message to the room's guided session."""
    await _load_room(store, room_id, user_id)
    log_id = request_logger.log_request("/managed/message", mode, room_id, body.message)
    try:
        controller = _controller(mode, body.model, store, guard, mock)
    except ValueError as e:
        request_logger.log_response(log_id, success=False, error=str(e))
        return JSONResponse(status_code=500, content={"error": str(e)})
    return _ndjson(controller.handle_message(room_id, user_id, body.message, body.message_id), log_id)


@router.post("/{room_id}/managed/advance")
async def managed_advance(
    room_id: str,
    body: AdvanceRequest,
    mode: str = Query(default="prod", pattern="^(mock|prod)$"),
    user_id: str = Depends(current_user),
    store: SessionStore = Depends(current_store),
    guard: RoomGuard = Depends(current_guard),
    mock: Generator = Depends(mock_generator),
):
    """Report the practice-question outcome and move to the next section."""
    await _load_room(store, room_id, user_id)
    log_id = request_logger.log_request("/managed/advance", mode, room_id)
    try:
        controller = _controller(mode, body.model, store, guard, mock)
    except ValueError as e:
        request_logger.log_response(log_id, success=False, error=str(e))
        return JSONResponse(status_code=500, content={"error": str(e)})
    return _ndjson(controller.advance(room_id, user_id, body.is_correct), log_id)


@router.post("/{room_id}/managed/teach")
async def managed_teach(
    room_id: str,
    mode: str = Query(default="prod", pattern="^(mock|prod)$"),
    model: str | None = Query(default=None),
    user_id: str = Depends(current_user),
    store: SessionStore = Depends(current_store),
    guard: RoomGuard = Depends(current_guard),
    mock: Generator = Depends(mock_generator),
):
    """Teach the current section again (e.g. after a failed generation)."""
    await _load_room(store, room_id, user_id)
    log_id = request_logger.log_request("/managed/teach", mode, room_id)
    try:
        controller = _controller(mode, model, store, guard, mock)
    except ValueError as e:
        request_logger.log_response(log_id, success=False, error=str(e))
        return JSONResponse(status_code=500, content={"error": str(e)})
    return _ndjson(controller.teach_current(room_id, user_id), log_id)


@router.post("/{room_id}/managed/modify")
async def managed_modify(
    room_id: str,
    body: ModifyRoadmapRequest,
    mode: str = Query(default="prod", pattern="^(mock|prod)$"),
    user_id: str = Depends(current_user),
    store: SessionStore = Depends(current_store),
    guard: RoomGuard = Depends(current_guard),
    mock: Generator = Depends(mock_generator),
):
    """Ask for changes to the proposed roadmap."""
    await _load_room(store, room_id, user_id)
    log_id = request_logger.log_request("/managed/modify", mode, room_id, body.request)
    try:
        controller = _controller(mode, body.model, store, guard, mock)
    except ValueError as e:
        request_logger.log_response(log_id, success=False, error=str(e))
        return JSONResponse(status_code=500, content={"error": str(e)})
    return _ndjson(controller.modify_roadmap(room_id, user_id, body.request), log_id)


@router.post("/{room_id}/managed/importance")
async def managed_importance(
    room_id: str,
    body: ImportanceRequest,
    user_id: str = Depends(current_user),
    store: SessionStore = Depends(current_store),
    guard: RoomGuard = Depends(current_guard),
    mock: Generator = Depends(mock_generator),
):
    """Cycle a section's importance: normal -> focus -> skip -> normal."""
    await _load_room(store, room_id, user_id)
    # No model call; any generator will do.
    controller = PhaseController(store, mock, guard=guard)
    try:
        roadmap = await controller.set_importance(room_id, user_id, body.unit_index, body.section_index)
    except LookupError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return {"roadmap": roadmap.to_wire()}


@router.post("/{room_id}/managed/evaluate")
async def managed_evaluate(
    room_id: str,
    body: EvaluateRequest,
    mode: str = Query(default="prod", pattern="^(mock|prod)$"),
    user_id: str = Depends(current_user),
    store: SessionStore = Depends(current_store),
    guard: RoomGuard = Depends(current_guard),
    mock: Generator = Depends(mock_generator),
):
    """Grade a freeform practice answer."""
    await _load_room(store, room_id, user_id)
    log_id = request_logger.log_request("/managed/evaluate", mode, room_id, body.user_answer)
    try:
        controller = _controller(mode, body.model, store, guard, mock)
    except ValueError as e:
        request_logger.log_response(log_id, success=False, error=str(e))
        return JSONResponse(status_code=500, content={"error": str(e)})
    room = await store.get_room(room_id, user_id)
    section = room.managed_state.current_section()
    expected = None
    if section is not None:
        quiz = next(
            (n.quiz_data for n in reversed(room.board.nodes) if n.section_id == section.id and n.quiz_data),
            None,
        )
        if quiz:
            expected = _expected_answer(quiz)
    result = await controller.evaluate_answer(body.question, body.user_answer, expected)
    request_logger.log_response(log_id, success=True)
    return result.to_wire()

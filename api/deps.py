"""Shared request dependencies: caller identity, store and generator selection."""

from fastapi import Depends, Header, HTTPException

from lib.concurrency import RoomGuard, get_room_guard
from lib.mock_responses import MockGenerator
from lib.providers import Generator, get_router
from lib.store import SessionStore, get_store


def _get_user_id(authorization: str) -> str:
    """Extract the user id from a 'Bearer <user id>' header."""
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    user_id = authorization[7:].strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing user identifier")
    return user_id


def current_store() -> SessionStore:
    return get_store()


def current_guard() -> RoomGuard:
    return get_room_guard()


def mock_generator() -> Generator:
    """Generator used for mode=mock (overridden in tests with a scripted one)."""
    return MockGenerator()


async def current_user(
    authorization: str = Header(default=""),
    store: SessionStore = Depends(current_store),
) -> str:
    """Authenticated user id; first-time users get a free-plan ledger."""
    user_id = _get_user_id(authorization)
    await store.ensure_ledger(user_id)
    return user_id


def resolve_generator(mode: str, model: str | None, mock: Generator) -> Generator:
    """Pick the Generator for a request. Raises ValueError when unconfigured."""
    if mode == "mock":
        return mock
    return get_router().get_provider(model)

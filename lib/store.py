"""Keyed persistence surface for rooms, managed state and user ledgers.

The engine only needs "get by id" and "set by id". Rooms are loaded as a
RoomSession aggregate, mutated in memory for the duration of a request and
written back with explicit awaited saves.
"""

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from lib.errors import RoomAccessDenied
from lib.models import Board, ChatMessage, ManagedSessionState, PlanConfig, UserLedger

DEFAULT_PLANS = {"free": 100_000, "pro": 2_000_000, "unlimited": -1}
DEFAULT_ROOM_TITLE = "Tutoring Room"


@dataclass
class RoomSession:
    """Everything one room owns."""
    room_id: str
    user_id: str
    title: str = DEFAULT_ROOM_TITLE
    board: Board = field(default_factory=Board)
    messages: list[ChatMessage] = field(default_factory=list)
    suggested_questions: list[str] = field(default_factory=list)
    managed_state: ManagedSessionState = field(default_factory=ManagedSessionState)

    def snapshot(self) -> dict:
        return {
            "id": self.room_id,
            "title": self.title,
            "board": self.board.to_wire(),
            "messages": [m.to_wire() for m in self.messages],
            "suggestedQuestions": list(self.suggested_questions),
            "managedState": self.managed_state.to_wire(),
        }


class SessionStore(ABC):
    """Abstract get/set-by-id store."""

    @abstractmethod
    async def get_room(self, room_id: str, user_id: str) -> RoomSession:
        """Load a room, creating it on first access. Raises RoomAccessDenied."""

    @abstractmethod
    async def save_board(self, room_id: str, board: Board) -> None: ...

    @abstractmethod
    async def append_messages(self, room_id: str, messages: list[ChatMessage]) -> None: ...

    @abstractmethod
    async def save_suggestions(self, room_id: str, questions: list[str]) -> None: ...

    @abstractmethod
    async def save_managed_state(self, room_id: str, state: ManagedSessionState) -> None: ...

    @abstractmethod
    async def get_ledger(self, user_id: str) -> Optional[UserLedger]: ...

    @abstractmethod
    async def save_ledger(self, ledger: UserLedger) -> None: ...

    @abstractmethod
    async def get_plan(self, plan: str) -> Optional[PlanConfig]: ...

    async def ensure_ledger(self, user_id: str, plan: str = "free") -> UserLedger:
        """Return the user's ledger, provisioning one on first sight."""
        ledger = await self.get_ledger(user_id)
        if ledger is None:
            ledger = UserLedger(user_id=user_id, plan=plan)
            await self.save_ledger(ledger)
        return ledger

    async def close(self) -> None:
        pass


class MemoryStore(SessionStore):
    """Dict-backed store used when no database is configured.

    Values are copied on every read and write so that in-memory mutations
    only become durable through an explicit save.
    """

    def __init__(self, plans: Optional[dict[str, int]] = None):
        self._rooms: dict[str, RoomSession] = {}
        self._ledgers: dict[str, UserLedger] = {}
        self._plans = {
            name: PlanConfig(plan=name, monthly_limit=limit)
            for name, limit in (plans or DEFAULT_PLANS).items()
        }

    async def get_room(self, room_id: str, user_id: str) -> RoomSession:
        room = self._rooms.get(room_id)
        if room is None:
            room = RoomSession(room_id=room_id, user_id=user_id)
            self._rooms[room_id] = room
        elif room.user_id != user_id:
            raise RoomAccessDenied(room_id)
        return copy.deepcopy(room)

    def _room(self, room_id: str) -> RoomSession:
        return self._rooms[room_id]

    async def save_board(self, room_id: str, board: Board) -> None:
        self._room(room_id).board = board.model_copy(deep=True)

    async def append_messages(self, room_id: str, messages: list[ChatMessage]) -> None:
        self._room(room_id).messages.extend(m.model_copy(deep=True) for m in messages)

    async def save_suggestions(self, room_id: str, questions: list[str]) -> None:
        self._room(room_id).suggested_questions = list(questions)

    async def save_managed_state(self, room_id: str, state: ManagedSessionState) -> None:
        self._room(room_id).managed_state = state.model_copy(deep=True)

    async def get_ledger(self, user_id: str) -> Optional[UserLedger]:
        ledger = self._ledgers.get(user_id)
        return ledger.model_copy() if ledger else None

    async def save_ledger(self, ledger: UserLedger) -> None:
        self._ledgers[ledger.user_id] = ledger.model_copy()

    async def get_plan(self, plan: str) -> Optional[PlanConfig]:
        return self._plans.get(plan)


_store: Optional[SessionStore] = None


def get_store() -> SessionStore:
    """Return the store singleton: Postgres when a pool exists, else memory."""
    global _store
    if _store is None:
        from lib.database import PostgresStore, get_pool

        pool = get_pool()
        _store = PostgresStore(pool) if pool is not None else MemoryStore()
    return _store


def set_store(store: Optional[SessionStore]) -> None:
    global _store
    _store = store

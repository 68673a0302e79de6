"""Per-room serialisation and stale-request detection."""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional


class RoomGuard:
    """One lock per room, plus the id of the newest request for that room.

    Holding the lock serialises board and session mutations within a room.
    A request registered with ``begin`` is superseded as soon as a newer one
    registers, which lets a long-running stream notice it should stop.

    Locks only exist while some request holds or waits on them, so the maps
    stay bounded by the number of rooms with work in flight.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}
        self._latest: dict[str, str] = {}

    @asynccontextmanager
    async def lock(self, room_id: str) -> AsyncIterator[None]:
        """Hold the room's lock for the duration of the ``async with`` block."""
        lock = self._locks.get(room_id)
        if lock is None:
            lock = self._locks[room_id] = asyncio.Lock()
        self._users[room_id] = self._users.get(room_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[room_id] -= 1
            if self._users[room_id] == 0:
                del self._users[room_id]
                del self._locks[room_id]

    def active(self, room_id: str) -> bool:
        """True while a request holds or waits on the room's lock."""
        return room_id in self._locks

    def begin(self, room_id: str) -> str:
        request_id = str(uuid.uuid4())
        self._latest[room_id] = request_id
        return request_id

    def is_current(self, room_id: str, request_id: str) -> bool:
        return self._latest.get(room_id) == request_id

    def finish(self, room_id: str, request_id: str) -> None:
        if self._latest.get(room_id) == request_id:
            del self._latest[room_id]


_guard: Optional[RoomGuard] = None


def get_room_guard() -> RoomGuard:
    global _guard
    if _guard is None:
        _guard = RoomGuard()
    return _guard

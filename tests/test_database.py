"""
Tests for the PostgreSQL store using a recording stand-in for the asyncpg pool.

Run with: pytest tests/test_database.py -v
"""

import asyncio
import os
import sys
from contextlib import asynccontextmanager

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import lib.database as database
from lib.database import PostgresStore
from lib.errors import RoomAccessDenied
from lib.models import ChatMessage, MessageRole


class FakeConnection:
    """Records every statement; answers queries from canned rows."""

    def __init__(self, room_row=None, message_rows=None):
        self.statements: list[str] = []
        self.batches: list[tuple[str, list]] = []
        self.room_row = room_row
        self.message_rows = message_rows or []

    async def execute(self, sql, *args):
        self.statements.append(" ".join(sql.split()))

    async def executemany(self, sql, rows):
        self.batches.append((" ".join(sql.split()), list(rows)))

    async def fetchrow(self, sql, *args):
        self.statements.append(" ".join(sql.split()))
        if "FROM rooms" in sql:
            return self.room_row
        return None

    async def fetch(self, sql, *args):
        self.statements.append(" ".join(sql.split()))
        return self.message_rows

    @asynccontextmanager
    async def transaction(self):
        yield


class FakePool:

    def __init__(self, conn):
        self.conn = conn
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        yield self.conn

    async def close(self):
        self.closed = True


def _message_row(message_id, created_at):
    return {
        "id": message_id,
        "role": "user",
        "content": message_id,
        "parts": None,
        "chat_turn_id": None,
        "created_at": created_at,
    }


# ---------------------------------------------------------------------------
# schema
# ---------------------------------------------------------------------------

class TestInitDb:

    def test_messages_table_has_insertion_sequence(self, monkeypatch):
        conn = FakeConnection()
        pool = FakePool(conn)

        async def create_pool(*args, **kwargs):
            return pool

        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/tutor")
        monkeypatch.setattr(database.asyncpg, "create_pool", create_pool)

        async def scenario():
            await database.init_db()
            assert database.get_pool() is pool
            await database.close_db()

        asyncio.run(scenario())

        ddl = "\n".join(conn.statements)
        assert "seq BIGSERIAL" in ddl
        assert "ALTER TABLE messages ADD COLUMN IF NOT EXISTS seq BIGSERIAL" in ddl
        assert "ON messages(room_id, seq)" in ddl
        assert pool.closed
        assert database.get_pool() is None

    def test_without_database_url_no_pool(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        asyncio.run(database.init_db())
        assert database.get_pool() is None


# ---------------------------------------------------------------------------
# message ordering
# ---------------------------------------------------------------------------

class TestMessageOrdering:

    def test_history_is_read_in_insertion_order(self):
        # Same millisecond for the user message and the reply.
        rows = [_message_row("user-msg", 1_700_000_000_000), _message_row("assistant-msg", 1_700_000_000_000)]
        conn = FakeConnection(
            room_row={"id": "room-1", "user_id": "user-1", "title": "Room", "suggested_questions": "[]"},
            message_rows=rows,
        )
        room = asyncio.run(PostgresStore(FakePool(conn)).get_room("room-1", "user-1"))

        message_query = next(s for s in conn.statements if "FROM messages" in s)
        assert "ORDER BY seq ASC" in message_query
        assert "ORDER BY created_at" not in message_query
        assert [m.id for m in room.messages] == ["user-msg", "assistant-msg"]

    def test_append_inserts_in_list_order(self):
        conn = FakeConnection()
        messages = [
            ChatMessage(id="u", role=MessageRole.USER, content="hi", created_at=5),
            ChatMessage(id="a", role=MessageRole.ASSISTANT, content="hello", created_at=5),
        ]
        asyncio.run(PostgresStore(FakePool(conn)).append_messages("room-1", messages))

        sql, rows = conn.batches[0]
        assert sql.startswith("INSERT INTO messages")
        assert [r[0] for r in rows] == ["u", "a"]

    def test_other_users_room_is_denied(self):
        conn = FakeConnection(
            room_row={"id": "room-1", "user_id": "owner", "title": "Room", "suggested_questions": "[]"},
        )
        with pytest.raises(RoomAccessDenied):
            asyncio.run(PostgresStore(FakePool(conn)).get_room("room-1", "intruder"))

"""PostgreSQL connection pool and store for rooms, managed state and ledgers."""

import json
import os
from datetime import datetime
from typing import Optional

import asyncpg

from lib.errors import RoomAccessDenied
from lib.models import Board, BoardNode, ChatMessage, ManagedSessionState, PlanConfig, UserLedger
from lib.store import DEFAULT_PLANS, DEFAULT_ROOM_TITLE, RoomSession, SessionStore

_pool: asyncpg.Pool | None = None


async def init_db():
    """Create asyncpg connection pool and ensure the tutoring tables exist."""
    global _pool

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("[DB] DATABASE_URL not set, using in-memory store")
        return

    _pool = await asyncpg.create_pool(database_url, min_size=1, max_size=5)
    async with _pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS rooms (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL DEFAULT '',
                suggested_questions JSONB NOT NULL DEFAULT '[]'::jsonb,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_rooms_user
            ON rooms(user_id, updated_at DESC)
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS boards (
                room_id TEXT PRIMARY KEY REFERENCES rooms(id) ON DELETE CASCADE,
                nodes JSONB NOT NULL DEFAULT '[]'::jsonb,
                last_updated BIGINT NOT NULL DEFAULT 0
            )
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                room_id TEXT NOT NULL REFERENCES rooms(id) ON DELETE CASCADE,
                role TEXT NOT NULL,
                content TEXT NOT NULL DEFAULT '',
                parts JSONB,
                chat_turn_id TEXT,
                created_at BIGINT NOT NULL,
                seq BIGSERIAL
            )
        """)
        # Tables created before seq existed.
        await conn.execute("ALTER TABLE messages ADD COLUMN IF NOT EXISTS seq BIGSERIAL")
        await conn.execute("DROP INDEX IF EXISTS idx_messages_room")
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_messages_room
            ON messages(room_id, seq)
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS managed_states (
                room_id TEXT PRIMARY KEY REFERENCES rooms(id) ON DELETE CASCADE,
                state JSONB NOT NULL,
                updated_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS plan_configs (
                plan TEXT PRIMARY KEY,
                monthly_limit BIGINT NOT NULL
            )
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                plan TEXT NOT NULL DEFAULT 'free',
                token_usage BIGINT NOT NULL DEFAULT 0,
                last_reset_date TEXT,
                created_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)
        for plan, limit in DEFAULT_PLANS.items():
            await conn.execute(
                "INSERT INTO plan_configs (plan, monthly_limit) VALUES ($1, $2) ON CONFLICT (plan) DO NOTHING",
                plan, limit,
            )
    print("[DB] Connected and tables ready")


async def close_db():
    """Close the connection pool on shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        print("[DB] Connection pool closed")


def get_pool() -> asyncpg.Pool | None:
    """Return the pool singleton (None if DB not configured)."""
    return _pool


def _load_json(value, default):
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


class PostgresStore(SessionStore):
    """SessionStore over the asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_room(self, room_id: str, user_id: str) -> RoomSession:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, user_id, title, suggested_questions FROM rooms WHERE id = $1",
                room_id,
            )
            if row is None:
                async with conn.transaction():
                    await conn.execute(
                        "INSERT INTO rooms (id, user_id, title) VALUES ($1, $2, $3) ON CONFLICT (id) DO NOTHING",
                        room_id, user_id, DEFAULT_ROOM_TITLE,
                    )
                    await conn.execute(
                        "INSERT INTO boards (room_id) VALUES ($1) ON CONFLICT (room_id) DO NOTHING",
                        room_id,
                    )
                return RoomSession(room_id=room_id, user_id=user_id)

            if row["user_id"] != user_id:
                raise RoomAccessDenied(room_id)

            board_row = await conn.fetchrow(
                "SELECT nodes, last_updated FROM boards WHERE room_id = $1", room_id
            )
            message_rows = await conn.fetch(
                """
                SELECT id, role, content, parts, chat_turn_id, created_at
                FROM messages WHERE room_id = $1 ORDER BY seq ASC
                """,
                room_id,
            )
            state_row = await conn.fetchrow(
                "SELECT state FROM managed_states WHERE room_id = $1", room_id
            )

        board = Board()
        if board_row is not None:
            board = Board(
                nodes=[BoardNode.model_validate(n) for n in _load_json(board_row["nodes"], [])],
                last_updated=board_row["last_updated"],
            )
        messages = [
            ChatMessage(
                id=r["id"],
                role=r["role"],
                content=r["content"],
                parts=_load_json(r["parts"], None),
                chat_turn_id=r["chat_turn_id"],
                created_at=r["created_at"],
            )
            for r in message_rows
        ]
        state = ManagedSessionState()
        if state_row is not None:
            state = ManagedSessionState.model_validate(_load_json(state_row["state"], {}))

        return RoomSession(
            room_id=room_id,
            user_id=row["user_id"],
            title=row["title"],
            board=board,
            messages=messages,
            suggested_questions=_load_json(row["suggested_questions"], []),
            managed_state=state,
        )

    async def save_board(self, room_id: str, board: Board) -> None:
        nodes = json.dumps([n.to_wire() for n in board.nodes], ensure_ascii=False)
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO boards (room_id, nodes, last_updated) VALUES ($1, $2::jsonb, $3)
                ON CONFLICT (room_id) DO UPDATE SET nodes = $2::jsonb, last_updated = $3
                """,
                room_id, nodes, board.last_updated,
            )
            await conn.execute("UPDATE rooms SET updated_at = NOW() WHERE id = $1", room_id)

    async def append_messages(self, room_id: str, messages: list[ChatMessage]) -> None:
        if not messages:
            return
        async with self.pool.acquire() as conn:
            await conn.executemany(
                """
                INSERT INTO messages (id, room_id, role, content, parts, chat_turn_id, created_at)
                VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7)
                ON CONFLICT (id) DO NOTHING
                """,
                [
                    (
                        m.id, room_id, m.role.value, m.content,
                        json.dumps(m.parts, ensure_ascii=False) if m.parts is not None else None,
                        m.chat_turn_id, m.created_at,
                    )
                    for m in messages
                ],
            )
            await conn.execute("UPDATE rooms SET updated_at = NOW() WHERE id = $1", room_id)

    async def save_suggestions(self, room_id: str, questions: list[str]) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE rooms SET suggested_questions = $2::jsonb WHERE id = $1",
                room_id, json.dumps(questions, ensure_ascii=False),
            )

    async def save_managed_state(self, room_id: str, state: ManagedSessionState) -> None:
        payload = json.dumps(state.to_wire(), ensure_ascii=False)
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO managed_states (room_id, state) VALUES ($1, $2::jsonb)
                ON CONFLICT (room_id) DO UPDATE SET state = $2::jsonb, updated_at = NOW()
                """,
                room_id, payload,
            )

    async def get_ledger(self, user_id: str) -> Optional[UserLedger]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, plan, token_usage, last_reset_date FROM users WHERE id = $1",
                user_id,
            )
        if row is None:
            return None
        return UserLedger(
            user_id=row["id"],
            plan=row["plan"],
            token_usage=row["token_usage"],
            last_reset_date=row["last_reset_date"],
        )

    async def save_ledger(self, ledger: UserLedger) -> None:
        reset = ledger.last_reset_date
        if isinstance(reset, datetime):
            reset = reset.isoformat()
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO users (id, plan, token_usage, last_reset_date) VALUES ($1, $2, $3, $4)
                ON CONFLICT (id) DO UPDATE SET
                    plan = $2, token_usage = $3, last_reset_date = $4
                """,
                ledger.user_id, ledger.plan, ledger.token_usage, reset,
            )

    async def get_plan(self, plan: str) -> Optional[PlanConfig]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT plan, monthly_limit FROM plan_configs WHERE plan = $1", plan
            )
        if row is None:
            return None
        return PlanConfig(plan=row["plan"], monthly_limit=row["monthly_limit"])

"""
Board Tutor Server - FastAPI application for whiteboard-based AI tutoring.

Provides:
- Normal chat turns streamed as NDJSON and applied to a room's board
- Managed sessions: level/goal hearing -> roadmap -> section-by-section teaching
- Per-user monthly token quotas

Run with:
    uvicorn api.index:app --reload
    python -m api.index
"""

from contextlib import asynccontextmanager
import os
import sys

import uvicorn
from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from api.chat import router as chat_router
from api.rooms import router as rooms_router
from api.users import router as users_router
from lib.database import close_db, init_db
from lib.logger import request_logger
from lib.providers import get_router
from lib.store import set_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool at startup and release clients at shutdown."""
    print("[Startup] Connecting storage...")
    await init_db()
    print("[Startup] Ready!")

    yield

    print("[Shutdown] Cleaning up...")
    await get_router().close_all()
    await close_db()
    set_store(None)


app = FastAPI(
    title="Board Tutor Server",
    description="Streaming tutoring engine for a shared whiteboard",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat_router)
app.include_router(rooms_router)
app.include_router(users_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "board-tutor-server",
        "version": "1.0.0"
    }


@app.get("/logs")
async def get_logs(limit: int = Query(default=100, ge=1, le=1000)):
    """Recent generation requests, most recent first."""
    return {"summary": request_logger.summary(), "logs": request_logger.get_logs(limit)}


def main():
    """Serve the app; HOST and PORT come from the environment."""
    uvicorn.run(
        "api.index:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    main()

"""
Request Logger - Keeps the most recent generation requests in memory.

Each chat or managed-session request gets one entry that is opened when the
request arrives and closed when its stream finishes, fails or is superseded.
"""

from collections import OrderedDict
from datetime import datetime, timezone
import time
from typing import Optional
import uuid


class RequestLogger:
    """Bounded, insertion-ordered log of generation requests."""

    def __init__(self, max_logs: int = 1000):
        self.max_logs = max_logs
        self._entries: "OrderedDict[str, dict]" = OrderedDict()
        self._started: dict[str, float] = {}

    def log_request(
        self,
        endpoint: str,
        mode: str,
        room_id: str = "",
        prompt_preview: str = "",
    ) -> str:
        """
        Open an entry for an incoming request.

        Args:
            endpoint: Route that received the request
            mode: "mock" or "prod"
            room_id: Room the request acts on
            prompt_preview: The user's message (truncated to 100 chars)

        Returns:
            Short id used to close the entry with log_response
        """
        log_id = uuid.uuid4().hex[:8]
        self._entries[log_id] = {
            "id": log_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "endpoint": endpoint,
            "mode": mode,
            "room_id": room_id,
            "prompt_preview": prompt_preview[:100],
            "status": "pending",
            "response_time_ms": None,
            "tokens": None,
            "error": None,
        }
        self._started[log_id] = time.monotonic()

        while len(self._entries) > self.max_logs:
            evicted, _ = self._entries.popitem(last=False)
            self._started.pop(evicted, None)
        return log_id

    def log_response(
        self,
        log_id: str,
        success: bool,
        tokens: Optional[int] = None,
        error: Optional[str] = None,
        status: Optional[str] = None,
    ) -> None:
        """
        Close an entry. Unknown or evicted ids are ignored.

        ``status`` overrides the success/error outcome, e.g. "superseded" for a
        chat stream replaced by a newer request in the same room.
        """
        entry = self._entries.get(log_id)
        if entry is None:
            return
        started = self._started.pop(log_id, None)
        if started is not None:
            entry["response_time_ms"] = int((time.monotonic() - started) * 1000)
        entry["status"] = status or ("success" if success else "error")
        if tokens is not None:
            entry["tokens"] = tokens
        if error:
            entry["error"] = error

    def get_logs(self, limit: int = 100) -> list[dict]:
        """Most recent entries first."""
        return [dict(entry) for entry in reversed(self._entries.values())][:limit]

    def summary(self) -> dict:
        """Entry counts per status and the total estimated tokens."""
        counts: dict[str, int] = {}
        tokens = 0
        for entry in self._entries.values():
            counts[entry["status"]] = counts.get(entry["status"], 0) + 1
            tokens += entry["tokens"] or 0
        return {"total": len(self._entries), "by_status": counts, "tokens": tokens}

    def clear_logs(self) -> None:
        self._entries.clear()
        self._started.clear()


request_logger = RequestLogger()

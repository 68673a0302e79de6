"""Decoder for the newline-delimited JSON stream produced by a Generator.

Each record is either ``{"type": "text", "content": ...}`` or
``{"type": "tool_call", "toolName": ..., "args": {...}}``. Chunks may split a
record anywhere; lines are reassembled before parsing.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Union

from lib.errors import DecodeError

logger = logging.getLogger(__name__)


@dataclass
class TextDelta:
    content: str

    def to_record(self) -> dict:
        return {"type": "text", "content": self.content}


@dataclass
class ToolCall:
    name: str
    args: dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> dict:
        return {"type": "tool_call", "toolName": self.name, "args": self.args}


StreamEvent = Union[TextDelta, ToolCall]


def encode_record(record: dict) -> str:
    """Serialize one wire record as an NDJSON line."""
    return json.dumps(record, ensure_ascii=False) + "\n"


def decode_line(line: str) -> StreamEvent:
    """Parse one complete NDJSON line.

    Args:
        line: A single line without its trailing newline.

    Returns:
        TextDelta or ToolCall. A tool call with no ``args`` gets ``{}``.

    Raises:
        DecodeError: Invalid JSON, a non-object, an unknown ``type`` or a
            record missing its required fields.
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise DecodeError(line, f"invalid JSON ({e.msg})") from e

    if not isinstance(data, dict):
        raise DecodeError(line, "record is not an object")

    record_type = data.get("type")
    if record_type == "text":
        content = data.get("content")
        if not isinstance(content, str):
            raise DecodeError(line, "text record without string content")
        return TextDelta(content=content)

    if record_type == "tool_call":
        name = data.get("toolName")
        if not isinstance(name, str) or not name:
            raise DecodeError(line, "tool_call record without toolName")
        args = data.get("args")
        if args is None:
            args = {}
        if not isinstance(args, dict):
            raise DecodeError(line, "tool_call args is not an object")
        return ToolCall(name=name, args=args)

    raise DecodeError(line, f"unknown record type {record_type!r}")


class StreamDecoder:
    """Turns raw text chunks into typed events, one line at a time.

    A malformed line is logged and dropped; decoding always continues with
    the next line.
    """

    def __init__(self):
        self._buffer = ""
        self.dropped = 0

    def feed(self, chunk: str) -> list[StreamEvent]:
        """Consume a chunk and return the events of every line it completes.

        Args:
            chunk: Any slice of the stream; it may end mid-record.

        Returns:
            Events for the lines completed by this chunk, in order. A trailing
            partial line stays buffered until the next ``feed`` or ``flush``.
        """
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(lines)

    def flush(self) -> list[StreamEvent]:
        """Decode whatever is left once the producer is done."""
        rest, self._buffer = self._buffer, ""
        return self._decode_lines([rest])

    def _decode_lines(self, lines: Iterable[str]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                events.append(decode_line(line))
            except DecodeError as e:
                self.dropped += 1
                logger.warning("Dropping stream line: %s", e)
        return events

    async def decode(self, chunks: AsyncIterable[str]) -> AsyncIterator[StreamEvent]:
        """Lazily decode an async chunk source into events in arrival order."""
        async for chunk in chunks:
            for event in self.feed(chunk):
                yield event
        for event in self.flush():
            yield event

    def decode_all(self, chunks: Iterable[str]) -> list[StreamEvent]:
        """Decode a finite chunk sequence in one go.

        Args:
            chunks: Text chunks in arrival order.

        Returns:
            Every well-formed event, including one from an unterminated last line.
        """
        events: list[StreamEvent] = []
        for chunk in chunks:
            events.extend(self.feed(chunk))
        events.extend(self.flush())
        return events


@dataclass
class CollectedTurn:
    """Everything one model turn produced, gathered for non-streaming callers."""
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)

    def tool_call(self, name: str) -> ToolCall | None:
        for call in self.tool_calls:
            if call.name == name:
                return call
        return None


async def collect(chunks: AsyncIterable[str]) -> CollectedTurn:
    """Drain a chunk source, concatenating text deltas and keeping tool calls."""
    turn = CollectedTurn()
    text_parts: list[str] = []
    async for event in StreamDecoder().decode(chunks):
        if isinstance(event, TextDelta):
            text_parts.append(event.content)
        else:
            turn.tool_calls.append(event)
    turn.text = "".join(text_parts)
    return turn

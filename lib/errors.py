"""Error kinds raised by the tutoring engine.

Recoverable kinds (decode, unknown target, roadmap/evaluation parse) are absorbed
where they occur; QuotaExceeded and UpstreamGeneratorFailure reach the user.
"""


class TutorError(Exception):
    """Base class for engine errors."""


class DecodeError(TutorError):
    """A single stream line could not be decoded."""

    def __init__(self, line: str, reason: str):
        super().__init__(f"{reason}: {line[:120]!r}")
        self.line = line
        self.reason = reason


class UnknownOperationTarget(TutorError):
    """An update/delete referenced a node id that is not on the board."""

    def __init__(self, action: str, node_id: str):
        super().__init__(f"{action} references unknown node {node_id!r}")
        self.action = action
        self.node_id = node_id


class RoadmapParseFailure(TutorError):
    """Model output could not be turned into a Roadmap."""


class EvaluationParseFailure(TutorError):
    """Model output could not be turned into a grading result."""


class QuotaExceeded(TutorError):
    """The user's monthly token allowance does not cover the request."""

    def __init__(self, message: str = "Monthly token limit exceeded", remaining: int | None = None):
        super().__init__(message)
        self.remaining = remaining


class UpstreamGeneratorFailure(TutorError):
    """The language-model call failed or returned nothing usable."""


class RoomAccessDenied(TutorError):
    """The room exists but belongs to another user."""

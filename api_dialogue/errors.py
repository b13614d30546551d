"""
Error types raised and handled inside the dialogue pipeline.
"""

from typing import Optional


class ApiDialogueError(Exception):
    """Base class for all pipeline errors."""


class SpecLoadError(ApiDialogueError):
    """A specification document could not be read or parsed."""


class CompileError(ApiDialogueError):
    """A single operation could not be turned into a tool descriptor."""

    def __init__(self, method: str, path: str, reason: str):
        self.method = method
        self.path = path
        self.reason = reason
        super().__init__(f"{method} {path}: {reason}")


class RefResolutionError(ApiDialogueError):
    """A $ref pointer does not resolve inside the document."""

    def __init__(self, ref: str):
        self.ref = ref
        super().__init__(f"Unresolvable reference: {ref}")


class MatchNotFound(ApiDialogueError):
    """No candidate tools were available for a query."""


class ValidationError(ApiDialogueError):
    """A submitted value was rejected for a specific field."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class ExecutionError(ApiDialogueError):
    """The HTTP call failed at the transport or returned a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ConversationNotFound(ApiDialogueError):
    """No conversation exists for the given id."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} not found")


class EmbeddingUnavailable(ApiDialogueError):
    """The embedding provider could not produce a vector."""

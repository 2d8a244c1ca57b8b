from __future__ import annotations


class ChatEngineError(Exception):
    """Base class for errors raised by the conversation engine."""


class TransportError(ChatEngineError):
    """Non-success response status or a failed network exchange."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ConcurrencyViolation(ChatEngineError):
    """A mutating operation was attempted while the session is streaming."""


class EditTargetInvalid(ChatEngineError):
    """Edit requested on a message that is missing or not user-authored."""


class SessionNotFound(ChatEngineError):
    """No session with the requested id exists."""

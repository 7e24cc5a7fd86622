from __future__ import annotations

from typing import Optional


class EditorError(Exception):
    """Base class for failures surfaced to the package editor."""

    title = "Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EditorError):
    """Rejected on the client before any request is sent."""

    title = "Invalid input"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NetworkError(EditorError):
    title = "Network error"


class ServerError(EditorError):
    title = "Server error"

    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status


class AuthorizationError(ServerError):
    title = "Not authorized"


class NotFound(EditorError):
    title = "Not found"


__all__ = [
    "EditorError",
    "ValidationError",
    "NetworkError",
    "ServerError",
    "AuthorizationError",
    "NotFound",
]

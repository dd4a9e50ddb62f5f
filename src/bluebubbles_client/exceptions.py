"""Unified exception hierarchy for bluebubbles-client."""

from __future__ import annotations


class BlueBubblesError(Exception):
    """Base exception for all bluebubbles-client errors."""


class ConfigurationError(BlueBubblesError):
    """Missing or invalid client configuration."""


# Wire
class ApiError(BlueBubblesError):
    """Non-2xx response (or transport failure) from the BlueBubbles REST API.

    ``status`` is the HTTP status code, or 0 when no response was received.
    ``details`` is the parsed JSON error body, if the server sent one.
    """

    def __init__(self, message: str, status: int = 0, details: dict | None = None):
        super().__init__(message)
        self.status = status
        self.details = details


# Connection lifecycle
class ConnectionFailedError(BlueBubblesError):
    """The initial capability handshake failed."""


# Conversations
class ConversationResolutionError(BlueBubblesError):
    """An unlinked conversation target has no known server chat."""


# Messages
class MessageSendError(BlueBubblesError):
    """Failed to send a message or attachment.

    Carries the domain ``MessageError`` describing the failure.
    """

    def __init__(self, message: str, error=None):
        super().__init__(message)
        self.error = error


class AttachmentError(BlueBubblesError):
    """Failed to download or upload attachment data."""

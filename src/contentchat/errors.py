"""Exception taxonomy shared by every pillar of the content chat pipeline."""

from typing import Optional


class ContentChatError(Exception):
    """Base class for all errors raised by contentchat."""


class ConversionError(ContentChatError):
    """The external markup converter failed.

    Parameters
    ----------
    message : str
        Short description of what went wrong.
    diagnostic : str, optional
        The underlying tool output (stderr, exit code, exception text).
    """

    def __init__(self, message: str, diagnostic: Optional[str] = None):
        super().__init__(message)
        self.diagnostic = diagnostic or ""


class BackendUnavailable(ContentChatError):
    """No LLM backend can serve the request."""


class NoBackendError(BackendUnavailable):
    """No provider is configured, or its client could not be constructed."""


class StreamInterrupted(ContentChatError):
    """The backend failed while a reply was being streamed."""


class StaleResult(ContentChatError):
    """Work finished after a newer selection superseded it."""

    def __init__(self, generation: int, current: int):
        super().__init__(f"generation {generation} superseded by {current}")
        self.generation = generation
        self.current = current


class NotReady(ContentChatError):
    """User input arrived before any context was loaded."""


class TurnInProgress(ContentChatError):
    """Another turn is already in flight on this conversation."""


class CatalogError(ContentChatError):
    """The content catalog could not be read."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

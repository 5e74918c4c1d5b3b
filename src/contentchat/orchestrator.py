"""
The state machine that keeps the LLM conversation in sync with the selection.

A selection bumps the content generation. Every later step (conversion,
context reset, summary, streamed replies) re-checks that generation before
touching visible state, so results from a superseded selection are dropped
instead of mixed in.
"""

import logging
import threading
from typing import Callable, Optional, Union

from pydantic import BaseModel, ConfigDict

from .chat_log import ChatLog
from .config import Settings
from .conversation import SUMMARY_FALLBACK, SessionManager
from .convert import Converter, Pandoc
from .errors import (
    BackendUnavailable,
    ConversionError,
    NoBackendError,
    NotReady,
    StaleResult,
    StreamInterrupted,
    TurnInProgress,
)
from .llm import LLM
from .models import ASSISTANT_ROLE, USER_ROLE, ChatMessage, ContentRef, SessionState
from .session import ContentSession

logger = logging.getLogger(__name__)

NO_BACKEND_NOTICE = (
    "No LLM provider is configured. Set ANTHROPIC_API_KEY, OPENAI_API_KEY or "
    "GOOGLE_API_KEY and reload the app."
)
STREAM_ERROR_MESSAGE = "Sorry, I encountered an error. Please try again."


# --- Events ---
class SelectionChanged(BaseModel):
    model_config = ConfigDict(frozen=True)

    ref: ContentRef


class MarkupReady(BaseModel):
    """Rendered markup from the viewer, tagged with the generation it loaded."""

    model_config = ConfigDict(frozen=True)

    generation: int
    markup: str


class UserMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str


Event = Union[SelectionChanged, MarkupReady, UserMessage]


class Orchestrator:
    """Drives one user session from selection to streamed chat.

    This is the only writer of the content session, the conversation manager
    and the visible chat log.

    Parameters
    ----------
    settings : Settings
        Configuration probed at session start.
    converter : Converter, optional
        Markup converter. Defaults to :class:`contentchat.convert.Pandoc`
        with ``settings.conversion_timeout``.
    backend_factory : callable, optional
        Passed through to :class:`SessionManager`. When given, the session
        starts ``IDLE`` even if ``settings`` holds no provider key.
    """

    def __init__(
        self,
        settings: Settings,
        converter: Optional[Converter] = None,
        backend_factory: Optional[Callable[[Settings], LLM]] = None,
    ):
        self._settings = settings
        self._converter = converter or Pandoc(timeout=settings.conversion_timeout)
        self._session = ContentSession()
        self._log = ChatLog()
        self._manager = SessionManager(settings, self._session, backend_factory)
        self._lock = threading.RLock()
        self._claimed: Optional[int] = None

        if backend_factory is not None or settings.preferred_backend() is not None:
            self._state = SessionState.IDLE
        else:
            self._state = SessionState.NO_BACKEND

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def session(self) -> ContentSession:
        return self._session

    @property
    def log(self) -> ChatLog:
        return self._log

    @property
    def manager(self) -> SessionManager:
        return self._manager

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    def dispatch(self, event: Event):
        """Routes a typed UI event to its handler."""
        if isinstance(event, SelectionChanged):
            return self.select_content(event.ref)
        if isinstance(event, MarkupReady):
            return self.markup_ready(event.generation, event.markup)
        if isinstance(event, UserMessage):
            return self.user_message(event.text)
        raise TypeError(f"Unsupported event: {event!r}")

    def _ensure_current(self, generation: int) -> None:
        current = self._session.generation
        if generation != current:
            raise StaleResult(generation, current)

    def _claim_extraction(self, generation: int) -> None:
        # The viewer reports markup on every load; only the first report for
        # a pending selection is extracted.
        with self._lock:
            self._ensure_current(generation)
            if self._state != SessionState.EXTRACTING or self._claimed == generation:
                raise StaleResult(generation, self._session.generation)
            self._claimed = generation

    def select_content(self, ref: ContentRef) -> int:
        """Makes ``ref`` active and returns the generation the viewer must echo."""
        with self._lock:
            if self._state == SessionState.NO_BACKEND:
                raise BackendUnavailable(NO_BACKEND_NOTICE)
            generation = self._session.begin_selection(ref)
            self._state = SessionState.EXTRACTING
            self._claimed = None
        logger.info("Selected content %s as generation %d", ref.guid, generation)
        return generation

    def markup_ready(self, generation: int, markup: str) -> bool:
        """Extracts, resets and summarizes; returns whether anything was emitted."""
        try:
            self._claim_extraction(generation)

            summarize = True
            try:
                text = self._converter.convert(markup)
            except ConversionError as e:
                logger.warning(
                    "Falling back to raw markup for generation %d: %s (%s)",
                    generation,
                    e,
                    e.diagnostic,
                )
                text = markup
                summarize = False

            if not self._session.complete_extraction(generation, text):
                raise StaleResult(generation, self._session.generation)

            try:
                handle = self._manager.reset_context(generation, text)
            except NoBackendError as e:
                logger.warning("No backend for generation %d: %s", generation, e)
                with self._lock:
                    self._ensure_current(generation)
                    self._state = SessionState.NO_BACKEND
                    self._log.append(
                        ChatMessage(
                            role=ASSISTANT_ROLE,
                            content=NO_BACKEND_NOTICE,
                            generation=generation,
                        )
                    )
                return True

            summary = (
                self._manager.request_summary(handle) if summarize else SUMMARY_FALLBACK
            )

            with self._lock:
                self._ensure_current(generation)
                self._log.append(
                    ChatMessage(role=ASSISTANT_ROLE, content=summary, generation=generation)
                )
                self._state = SessionState.CONTEXT_LOADED
            return True

        except StaleResult as e:
            logger.debug("Discarding stale markup: %s", e)
            return False

    def user_message(self, text: str) -> None:
        """Relays the streamed reply to ``text`` into the chat log.

        Raises
        ------
        BackendUnavailable
            If no provider is configured; the log is left unchanged.
        TurnInProgress
            If another reply is still streaming.
        NotReady
            If no content context has been loaded yet.
        """
        text = text.strip()
        if not text:
            return

        with self._lock:
            if self._state == SessionState.NO_BACKEND:
                raise BackendUnavailable(NO_BACKEND_NOTICE)
            if self._state == SessionState.STREAMING:
                raise TurnInProgress("A reply is still streaming")
            if self._state != SessionState.CONTEXT_LOADED:
                raise NotReady("Select content before asking questions")
            handle = self._manager.current
            generation = handle.bound_generation
            self._log.append(ChatMessage(role=USER_ROLE, content=text, generation=generation))
            self._state = SessionState.STREAMING

        entry = None
        replies = self._manager.send_message(handle, text)
        try:
            for chunk in replies:
                with self._lock:
                    if not self._session.is_current(generation):
                        break
                    if entry is None:
                        entry = self._log.start_stream(generation, chunk)
                    else:
                        self._log.extend(entry, chunk)
        except StreamInterrupted as e:
            logger.warning("Stream for generation %d interrupted: %s", generation, e)
            with self._lock:
                if entry is not None:
                    self._log.finalize(entry)
                if self._session.is_current(generation):
                    self._log.append(
                        ChatMessage(
                            role=ASSISTANT_ROLE,
                            content=STREAM_ERROR_MESSAGE,
                            generation=generation,
                        )
                    )
        finally:
            replies.close()
            with self._lock:
                if entry is not None:
                    self._log.finalize(entry)
                if (
                    self._session.is_current(generation)
                    and self._state == SessionState.STREAMING
                ):
                    self._state = SessionState.CONTEXT_LOADED

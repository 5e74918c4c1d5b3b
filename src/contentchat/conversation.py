"""Owns the live LLM conversation bound to the current content generation."""

import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from .config import SYSTEM_PROMPT, Settings
from .errors import StaleResult, StreamInterrupted, TurnInProgress
from .llm import LLM, create_backend
from .models import ASSISTANT_ROLE, USER_ROLE, BackendKind
from .session import ContentSession

logger = logging.getLogger(__name__)

CONTEXT_TEMPLATE = "<context>{}</context>"
SUMMARY_INSTRUCTION = "Write a brief '### Summary' of the content."
SUMMARY_FALLBACK = "Content loaded. Please ask me questions about it!"


class ConversationHandle:
    """One backend conversation bound to a single content generation.

    The message history lives here and is never shown directly; the visible
    log is owned by the orchestrator.
    """

    def __init__(self, backend: LLM, bound_generation: int, system_prompt: str):
        self.id = str(uuid.uuid4())
        self.backend = backend
        self.bound_generation = bound_generation
        self.system_prompt = system_prompt
        self.seeded = False
        self._history: List[Dict[str, Any]] = []
        self._busy = threading.Lock()

    @property
    def backend_kind(self) -> Optional[BackendKind]:
        return self.backend.kind

    @property
    def history(self) -> List[Dict[str, Any]]:
        return list(self._history)

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    @contextmanager
    def turn(self):
        """Claims the handle for one request; a second claim fails fast."""
        if not self._busy.acquire(blocking=False):
            raise TurnInProgress(f"conversation {self.id} already has a turn in flight")
        try:
            yield
        finally:
            self._busy.release()

    def record(self, user_content: str, assistant_content: Optional[str] = None):
        self._history.append({"role": USER_ROLE, "content": user_content})
        if assistant_content is not None:
            self._history.append({"role": ASSISTANT_ROLE, "content": assistant_content})

    def __repr__(self):
        return (
            f"ConversationHandle(generation={self.bound_generation}, "
            f"backend={self.backend_kind}, turns={len(self._history)})"
        )


class SessionManager:
    """Keeps at most one current conversation per content session.

    Parameters
    ----------
    settings : Settings
        Configuration probed at session start. The backend is built from it
        on the first reset and reused afterwards.
    session : ContentSession
        Read for the current generation; never mutated here.
    backend_factory : callable, optional
        Builds an :class:`LLM` from settings. Defaults to
        :func:`contentchat.llm.create_backend`.
    """

    def __init__(
        self,
        settings: Settings,
        session: ContentSession,
        backend_factory: Optional[Callable[[Settings], LLM]] = None,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self.settings = settings
        self.session = session
        self.system_prompt = system_prompt
        self._backend_factory = backend_factory or create_backend
        self._backend: Optional[LLM] = None
        self._current: Optional[ConversationHandle] = None
        self._lock = threading.Lock()

    @property
    def current(self) -> Optional[ConversationHandle]:
        with self._lock:
            return self._current

    def backend(self) -> LLM:
        """Returns the session's backend, building it on first use.

        Raises
        ------
        NoBackendError
            If no provider can be constructed.
        """
        if self._backend is None:
            self._backend = self._backend_factory(self.settings)
        return self._backend

    def is_current(self, handle: ConversationHandle) -> bool:
        with self._lock:
            return handle is self._current and self.session.is_current(
                handle.bound_generation
            )

    def reset_context(self, generation: int, context_text: str) -> ConversationHandle:
        """Replaces the current conversation with one seeded by ``context_text``.

        The seed exchange stays in the handle's history and is never returned.
        A failed seed call is logged and the handle is still returned, since
        the context turn is already part of its history.
        """
        backend = self.backend()
        handle = ConversationHandle(backend, generation, self.system_prompt)

        with self._lock:
            current = self.session.generation
            if generation != current:
                raise StaleResult(generation, current)
            self._current = handle

        logger.info(
            "Reset conversation for generation %d on %s", generation, handle.backend_kind
        )
        seed = CONTEXT_TEMPLATE.format(context_text)
        with handle.turn():
            try:
                response = backend.generate_response(
                    [{"role": USER_ROLE, "content": seed}], handle.system_prompt
                )
                handle.record(seed, backend.extract_content(response))
                handle.seeded = True
            except Exception:
                logger.warning(
                    "Seeding context for generation %d failed", generation, exc_info=True
                )
                handle.record(seed)
        return handle

    def request_summary(self, handle: ConversationHandle) -> str:
        """Asks for a one-shot summary; never raises on backend failure."""
        with handle.turn():
            messages = handle.history + [{"role": USER_ROLE, "content": SUMMARY_INSTRUCTION}]
            try:
                response = handle.backend.generate_response(messages, handle.system_prompt)
                summary = handle.backend.extract_content(response)
            except Exception:
                logger.warning(
                    "Summary for generation %d failed", handle.bound_generation, exc_info=True
                )
                return SUMMARY_FALLBACK
            if not summary.strip():
                return SUMMARY_FALLBACK
            handle.record(SUMMARY_INSTRUCTION, summary)
            return summary

    def send_message(self, handle: ConversationHandle, user_text: str) -> Iterator[str]:
        """Streams the reply to ``user_text`` as text chunks.

        The generator stops silently as soon as ``handle`` is no longer
        current. A backend failure mid-stream raises
        :class:`StreamInterrupted`.
        """
        if not self.is_current(handle):
            return

        with handle.turn():
            messages = handle.history + [{"role": USER_ROLE, "content": user_text}]
            chunks: List[str] = []
            stream = handle.backend.stream_content(messages, handle.system_prompt)
            try:
                for chunk in stream:
                    if not self.is_current(handle):
                        logger.debug(
                            "Dropping stream for superseded generation %d",
                            handle.bound_generation,
                        )
                        return
                    chunks.append(chunk)
                    yield chunk
            except Exception as e:
                raise StreamInterrupted(str(e)) from e
            finally:
                close = getattr(stream, "close", None)
                if close is not None:
                    close()
            handle.record(user_text, "".join(chunks))

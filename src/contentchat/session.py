"""Holds the active content binding and the generation counter."""

import threading
from typing import Optional

from .models import ContentRef, SessionSnapshot


class ContentSession:
    """The single active binding between a content item and its text.

    ``generation`` advances on every selection. Work started under an older
    generation is discarded by comparing against it, which is the only
    cancellation mechanism in the pipeline.

    Only the orchestrator calls :meth:`begin_selection` and
    :meth:`complete_extraction`.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._active_ref: Optional[ContentRef] = None
        self._normalized_text = ""
        self._generation = 0

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def begin_selection(self, ref: ContentRef) -> int:
        """Makes ``ref`` active and returns the new generation token."""
        with self._lock:
            self._active_ref = ref
            self._normalized_text = ""
            self._generation += 1
            return self._generation

    def complete_extraction(self, generation: int, text: str) -> bool:
        """Stores ``text`` only if ``generation`` is still current."""
        with self._lock:
            if generation != self._generation:
                return False
            self._normalized_text = text
            return True

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def current(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                ref=self._active_ref,
                text=self._normalized_text,
                generation=self._generation,
            )

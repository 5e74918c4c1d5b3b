"""Per-browser-session isolation for the Dash app."""

import logging
import threading
import uuid
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from typing import List, Optional

from .catalog import Catalog
from .orchestrator import Orchestrator

logger = logging.getLogger(__name__)


@dataclass
class UserSession:
    orchestrator: Orchestrator
    catalog: Optional[Catalog] = None
    pending: Optional[Future] = None
    owns_catalog: bool = False

    @property
    def relaying(self) -> bool:
        """True while a submitted message is still being relayed."""
        return self.pending is not None and not self.pending.done()

    def close(self) -> None:
        """Releases the catalog if it was built for this session alone."""
        if self.owns_catalog and self.catalog is not None:
            self.catalog.close()


class SessionRegistry:
    """Maps session ids to their isolated pipelines, least recently used first out."""

    def __init__(self, max_sessions: int = 100):
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[str, UserSession]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def add(self, user_session: UserSession) -> str:
        session_id = str(uuid.uuid4())
        evicted: List[UserSession] = []
        with self._lock:
            self._sessions[session_id] = user_session
            while len(self._sessions) > self.max_sessions:
                evicted_id, old = self._sessions.popitem(last=False)
                logger.info("Evicted idle session %s", evicted_id)
                evicted.append(old)
        for old in evicted:
            old.close()
        return session_id

    def get(self, session_id: Optional[str]) -> Optional[UserSession]:
        if not session_id:
            return None
        with self._lock:
            user_session = self._sessions.get(session_id)
            if user_session is not None:
                self._sessions.move_to_end(session_id)
            return user_session

    def close(self) -> None:
        """Drops every session and releases the catalogs they own."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for user_session in sessions:
            user_session.close()

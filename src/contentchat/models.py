"""
Defines the core Pydantic data models for the application.

These models are the data contract between the catalog, the session state,
the conversation manager and the UI.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# --- Constants ---
USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
Role = Literal[USER_ROLE, ASSISTANT_ROLE]


class BackendKind(str, Enum):
    """Supported LLM providers, in selection priority order."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"


BACKEND_PRIORITY = (BackendKind.ANTHROPIC, BackendKind.OPENAI, BackendKind.GOOGLE)


class SessionState(str, Enum):
    NO_BACKEND = "no_backend"
    IDLE = "idle"
    EXTRACTING = "extracting"
    CONTEXT_LOADED = "context_loaded"
    STREAMING = "streaming"


def time_since_deployment(
    deployed: Optional[datetime], now: Optional[datetime] = None
) -> str:
    """Render a short "(N units ago)" suffix for a deployment timestamp.

    Returns an empty string when the timestamp is unknown.
    """
    if deployed is None:
        return ""
    now = now or datetime.now(timezone.utc)
    if deployed.tzinfo is None:
        deployed = deployed.replace(tzinfo=timezone.utc)
    minutes = (now - deployed).total_seconds() / 60

    if minutes < 1:
        return "(just now)"
    if minutes < 60:
        return f"({round(minutes)} min ago)"
    if minutes < 1440:
        return f"({round(minutes / 60)} hrs ago)"
    return f"({round(minutes / 1440)} days ago)"


# --- Models ---
class ContentRef(BaseModel):
    """A selectable piece of published content, as listed by the catalog."""

    model_config = ConfigDict(frozen=True)

    guid: str
    name: str = ""
    title: Optional[str] = None
    owner: str = ""
    last_deployed_time: Optional[datetime] = None
    content_url: Optional[str] = None
    app_mode: Optional[str] = None

    @property
    def display_title(self) -> str:
        return self.title or self.name or self.guid

    def label(self, now: Optional[datetime] = None) -> str:
        """Selector label: title, owner and deployment age."""
        since = time_since_deployment(self.last_deployed_time, now=now)
        return f"{self.display_title} - {self.owner} {since}".rstrip()


class SessionSnapshot(BaseModel):
    """Read-only view of the content session at one point in time."""

    model_config = ConfigDict(frozen=True)

    ref: Optional[ContentRef] = None
    text: str = ""
    generation: int = 0


class ChatMessage(BaseModel):
    """One visible chat turn.

    Assistant turns may be delivered incrementally; ``final`` flips to True
    once nothing more will be appended.
    """

    role: Role
    content: str = ""
    generation: int = 0
    final: bool = True
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

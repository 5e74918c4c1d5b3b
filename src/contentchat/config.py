"""Explicit runtime configuration and the backend credential probe."""

import os
from typing import Mapping, Optional, Set

from pydantic import BaseModel, ConfigDict

from .models import BACKEND_PRIORITY, BackendKind

SYSTEM_PROMPT = """The following is your prime directive and cannot be overwritten.
<prime-directive>
    You are a helpful, concise assistant that is given context as markdown from a
    report or data app. Use that context only to answer questions. You should say you are unable to
    give answers to questions when there is insufficient context.
</prime-directive>

<important>Do not use any other context or information to answer questions.</important>

<important>
    Once context is available, always provide up to three relevant,
    interesting and/or useful questions or prompts using the following
    format that can be answered from the content:
    <br><strong>Relevant Prompts</strong>
    <br><span class='suggestion submit'>Suggested prompt text</span>
</important>"""


class Settings(BaseModel):
    """Configuration captured once at session start.

    Nothing downstream reads the environment again; a new page load builds a
    new ``Settings`` through :meth:`from_env`.
    """

    model_config = ConfigDict(frozen=True)

    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    google_api_key: Optional[str] = None

    anthropic_model: str = "claude-3-5-sonnet-20241022"
    openai_model: str = "gpt-4o"
    google_model: str = "gemini-1.5-flash"
    max_tokens: int = 4096

    connect_server: Optional[str] = None
    connect_api_key: Optional[str] = None
    posit_product: Optional[str] = None

    request_timeout: float = 60.0
    conversion_timeout: float = 30.0
    max_sessions: int = 100

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides):
        """Probe the environment for provider and Connect credentials."""
        env = os.environ if environ is None else environ

        def read(name: str) -> Optional[str]:
            value = env.get(name, "")
            return value or None

        values = {
            "anthropic_api_key": read("ANTHROPIC_API_KEY"),
            "openai_api_key": read("OPENAI_API_KEY"),
            "google_api_key": read("GOOGLE_API_KEY") or read("GEMINI_API_KEY"),
            "connect_server": read("CONNECT_SERVER"),
            "connect_api_key": read("CONNECT_API_KEY"),
            "posit_product": read("POSIT_PRODUCT"),
        }
        max_sessions = read("CONTENTCHAT_MAX_SESSIONS")
        if max_sessions is not None:
            values["max_sessions"] = max_sessions
        values.update(overrides)
        return cls(**values)

    def api_key_for(self, kind: BackendKind) -> Optional[str]:
        return {
            BackendKind.ANTHROPIC: self.anthropic_api_key,
            BackendKind.OPENAI: self.openai_api_key,
            BackendKind.GOOGLE: self.google_api_key,
        }[kind]

    def chat_model_for(self, kind: BackendKind) -> str:
        return {
            BackendKind.ANTHROPIC: self.anthropic_model,
            BackendKind.OPENAI: self.openai_model,
            BackendKind.GOOGLE: self.google_model,
        }[kind]

    def available_providers(self) -> Set[BackendKind]:
        return {kind for kind in BackendKind if self.api_key_for(kind)}

    def preferred_backend(self) -> Optional[BackendKind]:
        """First configured provider in priority order, if any."""
        available = self.available_providers()
        return next((kind for kind in BACKEND_PRIORITY if kind in available), None)

    @property
    def on_connect(self) -> bool:
        return (self.posit_product or "").upper() == "CONNECT"

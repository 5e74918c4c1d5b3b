"""
Core pytest configuration and fixtures for contentchat testing.

This module provides shared test fixtures and a scripted LLM backend so the
pipeline can be exercised without network access.
"""

from datetime import datetime, timezone
from typing import List, Optional
from unittest.mock import MagicMock

import pytest
from contentchat.config import Settings
from contentchat.convert import Passthrough
from contentchat.llm import LLM
from contentchat.models import BackendKind, ContentRef
from contentchat.orchestrator import Orchestrator

# ===== SCRIPTED BACKEND =====


class ScriptedLLM(LLM):
    """Backend whose replies are queued up front.

    ``replies`` feeds ``generate_response`` in order; an Exception instance in
    the queue is raised instead of returned. ``stream_chunks`` feeds every
    streamed reply and ``stream_fail_after`` raises after that many chunks.
    """

    kind = BackendKind.ANTHROPIC

    def __init__(
        self,
        replies: Optional[List] = None,
        stream_chunks: Optional[List[str]] = None,
        stream_fail_after: Optional[int] = None,
    ):
        self.replies = list(replies or [])
        self.stream_chunks = list(stream_chunks or ["Hello", " there", "!"])
        self.stream_fail_after = stream_fail_after
        self.calls: List[List[dict]] = []
        self.on_chunk = None

    @classmethod
    def from_settings(cls, settings):
        return cls()

    def generate_response(self, messages, system, model=None, **kwargs):
        self.calls.append(list(messages))
        reply = self.replies.pop(0) if self.replies else "OK"
        if isinstance(reply, Exception):
            raise reply
        return {"content": reply}

    def extract_content(self, response):
        return response["content"]

    def stream_content(self, messages, system, model=None, **kwargs):
        self.calls.append(list(messages))
        for i, chunk in enumerate(self.stream_chunks):
            if self.stream_fail_after is not None and i == self.stream_fail_after:
                raise ConnectionError("connection reset by peer")
            if self.on_chunk is not None:
                self.on_chunk(i)
            yield chunk


# ===== TEST DATA FIXTURES =====


@pytest.fixture
def settings() -> Settings:
    """Settings with a single (fake) Anthropic key."""
    return Settings(anthropic_api_key="test-key")


@pytest.fixture
def empty_settings() -> Settings:
    """Settings with no provider credentials at all."""
    return Settings()


@pytest.fixture
def content_x() -> ContentRef:
    return ContentRef(
        guid="guid-x",
        name="sales-report",
        title="Sales Report",
        owner="alice",
        last_deployed_time=datetime(2024, 5, 1, tzinfo=timezone.utc),
        content_url="https://connect.example.com/content/guid-x/",
        app_mode="quarto-static",
    )


@pytest.fixture
def content_y() -> ContentRef:
    return ContentRef(
        guid="guid-y",
        name="churn-analysis",
        title=None,
        owner="bob",
        content_url="https://connect.example.com/content/guid-y/",
        app_mode="rmd-static",
    )


# ===== MOCK FIXTURES =====


@pytest.fixture
def scripted_llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def mock_converter():
    """Converter mock that returns a fixed markdown rendering."""
    mock = MagicMock()
    mock.convert.return_value = "# Sales\n\nUp 10%"
    return mock


@pytest.fixture
def make_orchestrator(settings, scripted_llm):
    """Builds an orchestrator wired to the scripted backend."""

    def _make(converter=None, llm=None, settings_override=None):
        backend = llm or scripted_llm
        return Orchestrator(
            settings_override or settings,
            converter=converter or Passthrough(),
            backend_factory=lambda _settings: backend,
        )

    return _make


# ===== CONFIGURATION =====


def pytest_configure(config):
    """Pytest configuration."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)

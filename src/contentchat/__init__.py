"""
The main entrypoint for the contentchat package.

This module contains the ContentChat Dash application, which wires the
content catalog, the markup converter and the LLM backends into one isolated
pipeline per browser session.
"""

import atexit
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Tuple

from dash import Dash
from flask import has_request_context, request

from .catalog import Catalog, Connect
from .config import Settings
from .convert import Converter
from .errors import CatalogError
from .layout import Bootstrap, Layout
from .llm import LLM
from .orchestrator import Orchestrator
from .sessions import SessionRegistry, UserSession

logger = logging.getLogger(__name__)

SESSION_TOKEN_HEADER = "Posit-Connect-User-Session-Token"


class ContentChat(Dash):
    """
    Dash application for chatting with published content.

    Every page load is a session start: settings are probed again, and a
    fresh orchestrator and catalog are registered under a new session id.
    """

    def __init__(
        self,
        layout: Optional[Layout] = None,
        catalog: Optional[Catalog] = None,
        converter: Optional[Converter] = None,
        llm_factory: Optional[Callable[[Settings], LLM]] = None,
        settings_factory: Optional[Callable[[], Settings]] = None,
        max_sessions: Optional[int] = None,
        **kwargs,
    ) -> None:
        """
        Initialize the application with configurable pillars.

        Parameters
        ----------
        layout : Layout, optional
            Layout builder. Defaults to :class:`contentchat.layout.Bootstrap`.
        catalog : Catalog, optional
            Shared content catalog. When omitted, each session builds a
            :class:`contentchat.catalog.Connect` from its settings, exchanging
            the visitor's session token when running on Posit Connect.
        converter : Converter, optional
            Markup converter. Defaults to pandoc per session.
        llm_factory : callable, optional
            Builds the LLM backend from settings. Defaults to the priority
            probe in :func:`contentchat.llm.create_backend`.
        settings_factory : callable, optional
            Produces the settings for a new session. Defaults to
            :meth:`Settings.from_env`.
        max_sessions : int, optional
            Sessions kept in memory before the least recently used is dropped.
            Defaults to ``max_sessions`` of the settings probed at construction.
        **kwargs
            Additional arguments passed to the Dash constructor.
        """
        self.layout_builder = layout or Bootstrap()

        if "external_stylesheets" not in kwargs:
            kwargs["external_stylesheets"] = []
        kwargs["external_stylesheets"].extend(
            self.layout_builder.get_external_stylesheets()
        )

        if "external_scripts" not in kwargs:
            kwargs["external_scripts"] = []
        kwargs["external_scripts"].extend(self.layout_builder.get_external_scripts())

        kwargs.setdefault("title", "Chat with Content")
        kwargs.setdefault("suppress_callback_exceptions", True)

        super().__init__(**kwargs)

        self.catalog = catalog
        self.converter = converter
        self.llm_factory = llm_factory
        self.settings_factory = settings_factory or Settings.from_env
        if max_sessions is None:
            max_sessions = self.settings_factory().max_sessions
        self.sessions = SessionRegistry(max_sessions=max_sessions)
        self.executor = ThreadPoolExecutor(thread_name_prefix="contentchat-relay")
        atexit.register(self.shutdown)

        self.layout = self.build_page
        self._register_callbacks()

    def _build_catalog(self, settings: Settings) -> Tuple[Optional[Catalog], bool]:
        """Returns the session's catalog and whether Connect setup is missing."""
        if self.catalog is not None:
            return self.catalog, False
        try:
            if settings.on_connect:
                token = (
                    request.headers.get(SESSION_TOKEN_HEADER)
                    if has_request_context()
                    else None
                )
                if not token:
                    return None, True
                return Connect.for_visitor(settings, token), False
            return Connect.from_settings(settings), False
        except CatalogError as e:
            logger.warning("Connect catalog unavailable: %s", e)
            return None, True

    def start_session(
        self,
        settings: Settings,
        catalog: Optional[Catalog] = None,
        owns_catalog: bool = False,
    ) -> str:
        """Registers a new isolated pipeline and returns its session id."""
        orchestrator = Orchestrator(
            settings, converter=self.converter, backend_factory=self.llm_factory
        )
        return self.sessions.add(
            UserSession(
                orchestrator=orchestrator, catalog=catalog, owns_catalog=owns_catalog
            )
        )

    def shutdown(self) -> None:
        """Stops the relay threads and releases every session catalog."""
        self.executor.shutdown(wait=False, cancel_futures=True)
        self.sessions.close()

    def build_page(self):
        """Builds the page for one browser session, or the setup screen."""
        settings = self.settings_factory()
        missing_llm = self.llm_factory is None and settings.preferred_backend() is None
        catalog, missing_connect = self._build_catalog(settings)
        if missing_llm or missing_connect:
            if catalog is not None and self.catalog is None:
                catalog.close()
            return self.layout_builder.build_setup(missing_llm, missing_connect)
        session_id = self.start_session(
            settings, catalog, owns_catalog=self.catalog is None
        )
        return self.layout_builder.build_layout(session_id)

    def _register_callbacks(self) -> None:
        """Registers all the callbacks that drive the orchestrators."""
        from .callbacks import register_callbacks

        register_callbacks(self)

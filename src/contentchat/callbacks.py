"""Callbacks that translate Dash inputs into orchestrator events.

The server-side handlers are plain functions of the app so they can be called
without a running Dash server; :func:`register_callbacks` only wires them to
component ids.
"""

import logging

import httpx
from dash import Input, Output, State, no_update

from .errors import BackendUnavailable, CatalogError, ContentChatError
from .models import SessionState
from .orchestrator import (
    NO_BACKEND_NOTICE,
    MarkupReady,
    SelectionChanged,
    UserMessage,
)

logger = logging.getLogger(__name__)

SESSION_EXPIRED = "Your session has expired. Please reload the page."
NOT_READY = "Select content before asking questions."
STILL_STREAMING = "Please wait for the current reply to finish."
LOAD_FAILED = "Could not load that content."
LOADING = "Loading content..."

GENERATION_PARAM = "contentchat_generation"


def viewer_url(url, generation):
    """Tags ``url`` with ``generation`` so every selection reloads the viewer."""
    return str(httpx.URL(url).copy_merge_params({GENERATION_PARAM: str(generation)}))


def relay_message(orchestrator, text):
    """Runs one user turn on a worker thread."""
    try:
        orchestrator.dispatch(UserMessage(text=text))
    except ContentChatError as e:
        logger.warning("Message rejected: %s", e)
    except Exception:
        logger.exception("Unexpected failure while relaying a message")


def render_messages(app, user_session):
    return app.layout_builder.build_messages(user_session.orchestrator.log.messages())


def populate_catalog(app, session_id):
    user_session = app.sessions.get(session_id)
    if user_session is None or user_session.catalog is None:
        return []
    try:
        refs = user_session.catalog.list_content()
    except CatalogError as e:
        logger.warning("Could not list content: %s", e)
        return []
    return [{"label": ref.label(), "value": ref.guid} for ref in refs]


def select_content(app, guid, session_id):
    """Returns the viewer URL, the generation it loads and a status line."""
    if not guid:
        return no_update, no_update, no_update

    user_session = app.sessions.get(session_id)
    if user_session is None or user_session.catalog is None:
        return no_update, no_update, SESSION_EXPIRED

    try:
        ref = user_session.catalog.get_content(guid)
        url = user_session.catalog.resolve_url(ref)
        generation = user_session.orchestrator.dispatch(SelectionChanged(ref=ref))
    except CatalogError as e:
        logger.warning("Error fetching content %s: %s", guid, e)
        return no_update, no_update, LOAD_FAILED
    except BackendUnavailable as e:
        return no_update, no_update, str(e)

    return viewer_url(url, generation), generation, LOADING


def process_markup(app, payload, session_id):
    if not payload:
        return no_update, no_update

    user_session = app.sessions.get(session_id)
    if user_session is None:
        return no_update, SESSION_EXPIRED

    emitted = user_session.orchestrator.dispatch(
        MarkupReady(
            generation=payload.get("generation") or 0,
            markup=payload.get("markup") or "",
        )
    )
    if not emitted:
        return no_update, no_update
    return render_messages(app, user_session), ""


def send_message(app, n_clicks, user_input, session_id):
    """Hands the message to a relay thread and starts polling for the reply."""
    if not n_clicks or not user_input or not user_input.strip():
        return no_update, no_update, no_update

    user_session = app.sessions.get(session_id)
    if user_session is None:
        return no_update, SESSION_EXPIRED, True

    state = user_session.orchestrator.state
    if state == SessionState.NO_BACKEND:
        return no_update, NO_BACKEND_NOTICE, True
    if state == SessionState.STREAMING or user_session.relaying:
        return no_update, STILL_STREAMING, no_update
    if state != SessionState.CONTEXT_LOADED:
        return no_update, NOT_READY, True

    user_session.pending = app.executor.submit(
        relay_message, user_session.orchestrator, user_input
    )
    return "", "", False


def refresh_messages(app, session_id):
    user_session = app.sessions.get(session_id)
    if user_session is None:
        return no_update, True
    return render_messages(app, user_session), not user_session.relaying


def register_callbacks(app):
    @app.callback(
        Output("content_selection", "options"),
        Input("session_id", "data"),
    )
    def on_session_start(session_id):
        return populate_catalog(app, session_id)

    @app.callback(
        [
            Output("content_frame", "src"),
            Output("frame_generation", "data"),
            Output("chat_status", "children", allow_duplicate=True),
        ],
        Input("content_selection", "value"),
        State("session_id", "data"),
        prevent_initial_call=True,
    )
    def on_select(guid, session_id):
        return select_content(app, guid, session_id)

    @app.callback(
        [
            Output("messages_container", "children", allow_duplicate=True),
            Output("chat_status", "children", allow_duplicate=True),
        ],
        Input("iframe_markup", "data"),
        State("session_id", "data"),
        prevent_initial_call=True,
        running=[(Output("submit_button", "disabled"), True, False)],
    )
    def on_markup(payload, session_id):
        return process_markup(app, payload, session_id)

    @app.callback(
        [
            Output("input_textarea", "value"),
            Output("chat_status", "children", allow_duplicate=True),
            Output("stream_poll", "disabled", allow_duplicate=True),
        ],
        Input("submit_button", "n_clicks"),
        [State("input_textarea", "value"), State("session_id", "data")],
        prevent_initial_call=True,
    )
    def on_submit(n_clicks, user_input, session_id):
        return send_message(app, n_clicks, user_input, session_id)

    @app.callback(
        [
            Output("messages_container", "children", allow_duplicate=True),
            Output("stream_poll", "disabled", allow_duplicate=True),
        ],
        Input("stream_poll", "n_intervals"),
        State("session_id", "data"),
        prevent_initial_call=True,
    )
    def on_poll(n_intervals, session_id):
        return refresh_messages(app, session_id)

    _register_clientside_callbacks(app)


def _register_clientside_callbacks(app):
    # Report the rendered markup once, when the viewer finishes loading the
    # URL for this generation. Navigation inside the frame is not reported.
    app.clientside_callback(
        """
        function(src, generation) {
            const iframe = document.getElementById('content_frame');
            if (!iframe || !src || src === 'about:blank') {
                return window.dash_clientside.no_update;
            }
            iframe.onload = function() {
                iframe.onload = null;
                let markup = '';
                try {
                    markup = iframe.contentWindow.document.documentElement.outerHTML;
                } catch (e) {
                    console.warn('Could not read content frame', e);
                }
                window.dash_clientside.set_props('iframe_markup', {
                    data: {generation: generation, markup: markup}
                });
            };
            return window.dash_clientside.no_update;
        }
        """,
        Output("content_frame", "className", allow_duplicate=True),
        Input("content_frame", "src"),
        State("frame_generation", "data"),
        prevent_initial_call=True,
    )

    app.clientside_callback(
        """
        function(pathname) {
            setTimeout(function() {
                const textarea = document.getElementById('input_textarea');
                const submitButton = document.getElementById('submit_button');

                if (textarea && submitButton && !window.enterListenerSetup) {
                    window.enterListenerSetup = true;
                    textarea.addEventListener('keydown', function(e) {
                        if (e.key === 'Enter' && !e.shiftKey) {
                            e.preventDefault();
                            if (textarea.value.trim()) {
                                submitButton.click();
                            }
                        }
                    });
                }
            }, 100);

            return window.dash_clientside.no_update;
        }
        """,
        Output("submit_button", "n_clicks", allow_duplicate=True),
        Input("session_id", "data"),
        prevent_initial_call="initial_duplicate",
    )

    # Clicking a suggested prompt in a reply sends it as the next message
    app.clientside_callback(
        """
        function(session_id) {
            setTimeout(function() {
                const container = document.getElementById('messages_container');
                if (!container || window.suggestionListenerSetup) {
                    return;
                }
                window.suggestionListenerSetup = true;
                container.addEventListener('click', function(e) {
                    const suggestion = e.target.closest('.suggestion');
                    const submitButton = document.getElementById('submit_button');
                    if (!suggestion || !submitButton) {
                        return;
                    }
                    const text = suggestion.textContent.trim();
                    if (!text) {
                        return;
                    }
                    window.dash_clientside.set_props('input_textarea', {value: text});
                    if (suggestion.classList.contains('submit')) {
                        setTimeout(function() { submitButton.click(); }, 50);
                    }
                });
            }, 100);

            return window.dash_clientside.no_update;
        }
        """,
        Output("messages_container", "data-suggestion-listener", allow_duplicate=True),
        Input("session_id", "data"),
        prevent_initial_call="initial_duplicate",
    )

    # Auto-scroll to bottom
    app.clientside_callback(
        """
        function(messages_content) {
            if (messages_content && messages_content.length > 0) {
                setTimeout(function() {
                    const messagesContainer = document.getElementById('messages_container');
                    if (messagesContainer) {
                        messagesContainer.scrollTop = messagesContainer.scrollHeight;
                    }
                }, 100);
            }
            return window.dash_clientside.no_update;
        }
        """,
        Output("messages_container", "data-scroll-trigger", allow_duplicate=True),
        Input("messages_container", "children"),
        prevent_initial_call=True,
    )

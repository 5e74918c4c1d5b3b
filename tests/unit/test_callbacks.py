"""Unit tests for the server-side callback handlers."""

from concurrent.futures import Future
from unittest.mock import Mock

import pytest
from contentchat import ContentChat
from contentchat.callbacks import (
    GENERATION_PARAM,
    LOAD_FAILED,
    LOADING,
    NOT_READY,
    SESSION_EXPIRED,
    STILL_STREAMING,
    populate_catalog,
    process_markup,
    refresh_messages,
    select_content,
    send_message,
    viewer_url,
)
from contentchat.config import Settings
from contentchat.convert import Passthrough
from contentchat.errors import CatalogError
from contentchat.models import ASSISTANT_ROLE, USER_ROLE, SessionState
from contentchat.orchestrator import NO_BACKEND_NOTICE
from dash import no_update


@pytest.fixture
def catalog(content_x):
    mock = Mock()
    mock.list_content.return_value = [content_x]
    mock.get_content.return_value = content_x
    mock.resolve_url.return_value = content_x.content_url
    return mock


@pytest.fixture
def app(catalog, scripted_llm):
    return ContentChat(
        catalog=catalog,
        converter=Passthrough(),
        llm_factory=lambda settings: scripted_llm,
        settings_factory=Settings,
    )


@pytest.fixture
def session_id(app, catalog):
    return app.start_session(Settings(), catalog)


@pytest.fixture
def loaded_session_id(app, session_id, scripted_llm):
    """A session whose content has been selected and summarized."""
    scripted_llm.replies = ["OK", "### Summary"]
    _, generation, _ = select_content(app, "guid-x", session_id)
    process_markup(app, {"generation": generation, "markup": "<p>x</p>"}, session_id)
    return session_id


class TestViewerUrl:
    def test_generation_is_added_as_query_parameter(self):
        url = viewer_url("https://connect.example.com/content/guid-x/", 3)
        assert url == (
            f"https://connect.example.com/content/guid-x/?{GENERATION_PARAM}=3"
        )

    def test_existing_parameters_are_kept(self):
        url = viewer_url("https://connect.example.com/content/guid-x/?page=2", 1)
        assert "page=2" in url
        assert f"{GENERATION_PARAM}=1" in url

    def test_reselecting_same_content_changes_the_url(self):
        url = "https://connect.example.com/content/guid-x/"
        assert viewer_url(url, 1) != viewer_url(url, 2)


class TestPopulateCatalog:
    def test_lists_labels_and_guids(self, app, session_id, content_x):
        options = populate_catalog(app, session_id)
        assert options == [{"label": content_x.label(), "value": "guid-x"}]

    def test_expired_session_gets_no_options(self, app):
        assert populate_catalog(app, "expired") == []

    def test_catalog_error_gives_no_options(self, app, session_id, catalog):
        catalog.list_content.side_effect = CatalogError("boom", status_code=500)
        assert populate_catalog(app, session_id) == []


class TestSelectContent:
    def test_selection_loads_tagged_url(self, app, session_id, content_x):
        src, generation, status = select_content(app, "guid-x", session_id)

        assert src == viewer_url(content_x.content_url, generation)
        assert status == LOADING
        assert app.sessions.get(session_id).orchestrator.state == SessionState.EXTRACTING

    def test_reselecting_same_content_reloads_viewer(self, app, session_id):
        first_src, first, _ = select_content(app, "guid-x", session_id)
        second_src, second, _ = select_content(app, "guid-x", session_id)

        assert second == first + 1
        assert first_src != second_src

    def test_cleared_dropdown_is_ignored(self, app, session_id):
        assert select_content(app, None, session_id) == (no_update,) * 3

    def test_expired_session(self, app):
        assert select_content(app, "guid-x", "expired") == (
            no_update,
            no_update,
            SESSION_EXPIRED,
        )

    def test_catalog_error(self, app, session_id, catalog):
        catalog.get_content.side_effect = CatalogError("not found", status_code=404)
        assert select_content(app, "guid-x", session_id)[2] == LOAD_FAILED

    def test_backend_unavailable_is_reported(self, catalog):
        app = ContentChat(catalog=catalog, settings_factory=Settings)
        session_id = app.start_session(Settings(), catalog)

        src, generation, status = select_content(app, "guid-x", session_id)

        assert (src, generation) == (no_update, no_update)
        assert status == NO_BACKEND_NOTICE


class TestProcessMarkup:
    def test_summary_is_rendered(self, app, loaded_session_id):
        user_session = app.sessions.get(loaded_session_id)
        assert user_session.orchestrator.state == SessionState.CONTEXT_LOADED
        assert len(user_session.orchestrator.log) == 1

    def test_repeated_report_is_not_rendered(self, app, loaded_session_id):
        generation = app.sessions.get(loaded_session_id).orchestrator.session.generation

        result = process_markup(
            app, {"generation": generation, "markup": "<p>page 2</p>"}, loaded_session_id
        )

        assert result == (no_update, no_update)
        assert len(app.sessions.get(loaded_session_id).orchestrator.log) == 1

    def test_returns_rendered_messages(self, app, session_id, scripted_llm):
        scripted_llm.replies = ["OK", "### Summary"]
        _, generation, _ = select_content(app, "guid-x", session_id)

        children, status = process_markup(
            app, {"generation": generation, "markup": "<p>x</p>"}, session_id
        )

        assert len(children) == 1
        assert status == ""

    def test_empty_payload(self, app, session_id):
        assert process_markup(app, None, session_id) == (no_update, no_update)

    def test_expired_session(self, app):
        payload = {"generation": 1, "markup": "<p>x</p>"}
        assert process_markup(app, payload, "expired") == (no_update, SESSION_EXPIRED)


class TestSendMessage:
    def test_relays_and_stops_polling_when_done(self, app, loaded_session_id):
        value, status, poll_disabled = send_message(
            app, 1, "What changed?", loaded_session_id
        )

        assert (value, status, poll_disabled) == ("", "", False)
        user_session = app.sessions.get(loaded_session_id)
        user_session.pending.result(timeout=5)

        children, poll_disabled = refresh_messages(app, loaded_session_id)

        assert poll_disabled is True
        assert len(children) == 3
        roles = [m.role for m in user_session.orchestrator.log.messages()]
        assert roles == [ASSISTANT_ROLE, USER_ROLE, ASSISTANT_ROLE]

    def test_polling_continues_while_relaying(self, app, loaded_session_id):
        app.sessions.get(loaded_session_id).pending = Future()

        _, poll_disabled = refresh_messages(app, loaded_session_id)

        assert poll_disabled is False

    def test_blank_input_is_ignored(self, app, loaded_session_id):
        assert send_message(app, 1, "   ", loaded_session_id) == (no_update,) * 3

    def test_expired_session(self, app):
        assert send_message(app, 1, "hi", "expired") == (
            no_update,
            SESSION_EXPIRED,
            True,
        )

    def test_not_ready_before_content_loads(self, app, session_id):
        assert send_message(app, 1, "hi", session_id) == (no_update, NOT_READY, True)

    def test_still_streaming(self, app, loaded_session_id):
        user_session = app.sessions.get(loaded_session_id)
        user_session.pending = Future()

        assert send_message(app, 1, "again", loaded_session_id) == (
            no_update,
            STILL_STREAMING,
            no_update,
        )
        assert len(user_session.orchestrator.log) == 1

    def test_no_backend(self, catalog):
        app = ContentChat(catalog=catalog, settings_factory=Settings)
        session_id = app.start_session(Settings(), catalog)

        assert send_message(app, 1, "hi", session_id) == (
            no_update,
            NO_BACKEND_NOTICE,
            True,
        )


class TestRefreshMessages:
    def test_expired_session_stops_polling(self, app):
        assert refresh_messages(app, "expired") == (no_update, True)

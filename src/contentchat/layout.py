"""Layout builders for the content chat UI."""

from abc import ABC, abstractmethod
from typing import List

import dash_bootstrap_components as dbc
from dash import dcc, html
from dash.development.base_component import Component as DashComponent

from .models import USER_ROLE, ChatMessage

# Component ids the callbacks depend on
REQUIRED_IDS = (
    "session_id",
    "content_selection",
    "content_frame",
    "frame_generation",
    "iframe_markup",
    "messages_container",
    "input_textarea",
    "submit_button",
    "chat_status",
    "stream_poll",
)


class Layout(ABC):
    """Interface for building the Dash component layout."""

    @abstractmethod
    def build_layout(self, session_id: str) -> DashComponent:
        """Constructs the main chat screen for one session."""
        pass

    @abstractmethod
    def build_setup(self, missing_llm: bool, missing_connect: bool) -> DashComponent:
        """Constructs the screen shown when credentials are missing."""
        pass

    @abstractmethod
    def build_messages(self, messages: List[ChatMessage]) -> List[DashComponent]:
        """Converts chat messages into renderable components."""
        pass

    def get_external_stylesheets(self) -> List[str]:
        return []

    def get_external_scripts(self) -> List[str]:
        return []


class Bootstrap(Layout):
    """Sidebar with selector and chat on the left, content viewer on the right."""

    def get_external_stylesheets(self) -> List[str]:
        return [dbc.themes.BOOTSTRAP]

    def build_layout(self, session_id: str) -> DashComponent:
        return html.Div(
            className="d-flex vh-100",
            children=[
                dcc.Store(id="session_id", data=session_id),
                dcc.Store(id="frame_generation"),
                dcc.Store(id="iframe_markup"),
                dcc.Interval(id="stream_poll", interval=250, disabled=True),
                self.build_sidebar(),
                self.build_viewer(),
            ],
        )

    def build_sidebar(self) -> DashComponent:
        return html.Aside(
            className="d-flex flex-column p-3 border-end bg-light",
            style={"width": "33%", "height": "100vh", "overflowY": "auto"},
            children=[
                html.H4("Chat with content"),
                html.P(
                    "Use this app to select content and ask questions about it. "
                    "It currently supports static/rendered content."
                ),
                dcc.Dropdown(
                    id="content_selection",
                    options=[],
                    placeholder="Select content",
                    className="mb-3",
                ),
                html.Div(
                    id="messages_container",
                    className="flex-grow-1 mb-2",
                    style={"overflowY": "auto"},
                ),
                html.Small(id="chat_status", className="text-muted mb-1"),
                dbc.InputGroup(
                    [
                        dbc.Textarea(
                            id="input_textarea",
                            placeholder="Type your question here...",
                            rows=2,
                        ),
                        dbc.Button("Send", id="submit_button", color="primary"),
                    ]
                ),
            ],
        )

    def build_viewer(self) -> DashComponent:
        return html.Iframe(
            id="content_frame",
            src="about:blank",
            style={"border": "none", "flexGrow": 1, "height": "100vh"},
        )

    def build_setup(self, missing_llm: bool, missing_connect: bool) -> DashComponent:
        sections = [html.H1("Setup", className="text-center mb-4")]
        if missing_llm:
            sections += [
                html.H2("LLM API", className="h4 mt-4"),
                html.P(
                    "This app requires an LLM API key. Configure one of the "
                    "supported providers (Anthropic, OpenAI or Google) before "
                    "running the app."
                ),
                html.H3("Example for Anthropic API", className="h5"),
                html.Pre('ANTHROPIC_API_KEY = "<your-key>"', className="bg-light p-3"),
                html.H3("Example for OpenAI API", className="h5"),
                html.Pre('OPENAI_API_KEY = "<your-key>"', className="bg-light p-3"),
            ]
        if missing_connect:
            sections += [
                html.H2("Connect Visitor API Key", className="h4 mt-4"),
                html.P(
                    "Before you are able to use this app, you need to add a "
                    "Connect Visitor API Key integration in the access panel."
                ),
            ]
        return dbc.Container(
            dbc.Card(dbc.CardBody(sections), className="shadow p-4 my-5"),
            style={"maxWidth": "800px"},
        )

    def build_messages(self, messages: List[ChatMessage]) -> List[DashComponent]:
        if not messages:
            return []
        return [self.build_message(msg) for msg in messages]

    def build_message(self, message: ChatMessage) -> DashComponent:
        style = {
            "padding": "10px",
            "borderRadius": "15px",
            "marginBottom": "10px",
            "maxWidth": "90%",
            "width": "fit-content",
        }
        if message.role == USER_ROLE:
            style["marginLeft"] = "auto"
            style["backgroundColor"] = "#dcf8c6"
        else:
            style["marginRight"] = "auto"
            style["backgroundColor"] = "#ffffff"
            style["border"] = "1px solid #eee"

        return html.Div(
            dcc.Markdown(message.content, dangerously_allow_html=True),
            id={"type": "chat-message", "id": message.id},
            style=style,
        )

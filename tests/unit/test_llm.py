"""Unit tests for LLM providers and backend selection."""

from types import SimpleNamespace
from unittest.mock import MagicMock, Mock, patch

import pytest
from contentchat.config import Settings
from contentchat.errors import NoBackendError
from contentchat.llm import LLM, Anthropic, Echo, Gemini, OpenAI, create_backend
from contentchat.models import BackendKind


def bare(cls):
    """Instantiate a provider without touching its SDK."""
    instance = cls.__new__(cls)
    instance.client = MagicMock()
    instance.model = "test-model"
    return instance


class TestLLMBase:
    def test_llm_is_abstract(self):
        with pytest.raises(TypeError, match="Can't instantiate abstract class"):
            LLM()

    def test_kinds(self):
        assert Anthropic.kind == BackendKind.ANTHROPIC
        assert OpenAI.kind == BackendKind.OPENAI
        assert Gemini.kind == BackendKind.GOOGLE
        assert Echo.kind is None


class TestCreateBackend:
    """Backend selection follows the fixed priority order."""

    def test_no_credentials_raises(self):
        with pytest.raises(NoBackendError, match="No LLM provider configured"):
            create_backend(Settings())

    def test_anthropic_preferred(self):
        settings = Settings(anthropic_api_key="a", openai_api_key="o")
        sentinel = Mock()
        with patch.object(Anthropic, "from_settings", return_value=sentinel) as build:
            with patch.object(OpenAI, "from_settings") as openai_build:
                assert create_backend(settings) is sentinel

        build.assert_called_once_with(settings)
        openai_build.assert_not_called()

    def test_openai_when_no_anthropic(self):
        settings = Settings(openai_api_key="o", google_api_key="g")
        with patch.object(OpenAI, "from_settings", return_value="openai") as build:
            assert create_backend(settings) == "openai"
        build.assert_called_once_with(settings)

    def test_google_last(self):
        settings = Settings(google_api_key="g")
        with patch.object(Gemini, "from_settings", return_value="gemini"):
            assert create_backend(settings) == "gemini"

    def test_missing_sdk_is_no_backend(self):
        settings = Settings(anthropic_api_key="a")
        with patch.object(Anthropic, "from_settings", side_effect=ImportError):
            with pytest.raises(NoBackendError, match="anthropic"):
                create_backend(settings)


class TestAnthropic:
    def test_constructs_client_with_key_and_timeout(self):
        with patch("anthropic.Anthropic") as client_cls:
            llm = Anthropic.from_settings(
                Settings(anthropic_api_key="a", request_timeout=12.0)
            )
        client_cls.assert_called_once_with(api_key="a", timeout=12.0)
        assert llm.max_tokens == 4096

    def test_generate_sends_system_and_max_tokens(self):
        llm = bare(Anthropic)
        llm.max_tokens = 100
        messages = [{"role": "user", "content": "hi"}]

        llm.generate_response(messages, "be brief")

        llm.client.messages.create.assert_called_once_with(
            model="test-model", system="be brief", messages=messages, max_tokens=100
        )

    def test_extract_content_joins_text_blocks(self):
        llm = bare(Anthropic)
        response = SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="Hello "),
                SimpleNamespace(type="tool_use", text=None),
                SimpleNamespace(type="text", text="world"),
            ]
        )
        assert llm.extract_content(response) == "Hello world"

    def test_stream_yields_text_deltas(self):
        llm = bare(Anthropic)
        llm.max_tokens = 100
        stream = MagicMock()
        stream.text_stream = iter(["Hel", "", "lo"])
        llm.client.messages.stream.return_value.__enter__.return_value = stream

        chunks = list(llm.stream_content([{"role": "user", "content": "hi"}], "sys"))

        assert chunks == ["Hel", "lo"]


class TestOpenAI:
    def test_system_prompt_is_first_message(self):
        llm = bare(OpenAI)
        llm.generate_response([{"role": "user", "content": "hi"}], "sys")

        kwargs = llm.client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}
        assert kwargs["messages"][1] == {"role": "user", "content": "hi"}
        assert kwargs["model"] == "test-model"

    def test_extract_content(self):
        llm = bare(OpenAI)
        response = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="answer"))]
        )
        assert llm.extract_content(response) == "answer"

    def test_stream_skips_empty_deltas(self):
        llm = bare(OpenAI)

        def chunk(content):
            return SimpleNamespace(
                choices=[SimpleNamespace(delta=SimpleNamespace(content=content))]
            )

        llm.client.chat.completions.create.return_value = iter(
            [chunk("Up"), chunk(None), SimpleNamespace(choices=[]), chunk(" 10%")]
        )

        chunks = list(llm.stream_content([{"role": "user", "content": "q"}], "sys"))

        assert chunks == ["Up", " 10%"]
        assert llm.client.chat.completions.create.call_args.kwargs["stream"] is True


class TestGemini:
    def test_contents_map_assistant_to_model(self):
        llm = bare(Gemini)
        contents = llm._contents(
            [
                {"role": "user", "content": "<context>x</context>"},
                {"role": "assistant", "content": "OK"},
            ]
        )
        assert [c["role"] for c in contents] == ["user", "model"]
        assert contents[1]["parts"] == [{"text": "OK"}]

    def test_stream_yields_chunk_text(self):
        llm = bare(Gemini)
        llm._types = MagicMock()
        llm.client.models.generate_content_stream.return_value = iter(
            [SimpleNamespace(text="A"), SimpleNamespace(text=None), SimpleNamespace(text="B")]
        )
        assert list(llm.stream_content([{"role": "user", "content": "q"}], "s")) == [
            "A",
            "B",
        ]

    def test_extract_content_handles_empty(self):
        llm = bare(Gemini)
        assert llm.extract_content(SimpleNamespace(text=None)) == ""


class TestEcho:
    def test_echoes_last_message(self):
        llm = Echo()
        response = llm.generate_response([{"role": "user", "content": "Ping"}], "sys")
        assert "Ping" in llm.extract_content(response)

    def test_stream_concatenates_to_full_reply(self):
        llm = Echo()
        messages = [{"role": "user", "content": "What changed this quarter?"}]
        full = llm.extract_content(llm.generate_response(messages, "sys"))

        chunks = list(llm.stream_content(messages, "sys"))

        assert len(chunks) > 1
        assert "".join(chunks) == full

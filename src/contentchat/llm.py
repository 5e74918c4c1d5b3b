"""Concrete implementations for LLM providers."""

import re
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional

from .config import Settings
from .errors import NoBackendError
from .models import ASSISTANT_ROLE, BackendKind


class LLM(ABC):
    """Abstract Base Class for all LLM providers.

    Each subclass is one arm of the tagged variant over :class:`BackendKind`
    and exposes the same conversation capability: a one-shot response and a
    streamed response over an explicit message history.
    """

    kind: Optional[BackendKind] = None

    @abstractmethod
    def generate_response(
        self,
        messages: List[Dict[str, Any]],
        system: str,
        model: Optional[str] = None,
        **kwargs: Any,
    ) -> Any:
        """Generates a response from the LLM provider.

        This method should return the provider's native, rich response object
        directly from their SDK.

        Parameters
        ----------
        messages : List[Dict[str, Any]]
            The conversation so far as ``{"role", "content"}`` dictionaries,
            alternating user and assistant turns.
        system : str
            The system prompt for the conversation.
        model : str, optional
            Overrides the provider's default model.
        **kwargs : Any
            Provider-specific parameters passed directly to the SDK.

        Returns
        -------
        Any
            The provider's native, rich response object.
        """
        pass

    @abstractmethod
    def extract_content(self, response: Any) -> str:
        """Extracts the text content from the provider's native response object."""
        pass

    @abstractmethod
    def stream_content(
        self,
        messages: List[Dict[str, Any]],
        system: str,
        model: Optional[str] = None,
        **kwargs: Any,
    ) -> Iterator[str]:
        """Streams the response as text deltas, in arrival order.

        Concatenating every yielded chunk gives the full response text.
        """
        pass

    @classmethod
    @abstractmethod
    def from_settings(cls, settings: Settings) -> "LLM":
        """Builds the provider from the session's settings."""
        pass


class Anthropic(LLM):
    kind = BackendKind.ANTHROPIC

    def __init__(
        self,
        api_key: str,
        default_model: str = "claude-3-5-sonnet-20241022",
        max_tokens: int = 4096,
        timeout: float = 60.0,
    ):
        from anthropic import Anthropic

        self.client = Anthropic(api_key=api_key, timeout=timeout)
        self.model = default_model
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings):
        return cls(
            api_key=settings.anthropic_api_key,
            default_model=settings.anthropic_model,
            max_tokens=settings.max_tokens,
            timeout=settings.request_timeout,
        )

    def generate_response(self, messages, system, model=None, **kwargs):
        kwargs.setdefault("max_tokens", self.max_tokens)
        return self.client.messages.create(
            model=model or self.model, system=system, messages=messages, **kwargs
        )

    def extract_content(self, response: Any) -> str:
        return "".join(
            block.text for block in response.content if block.type == "text"
        )

    def stream_content(self, messages, system, model=None, **kwargs):
        kwargs.setdefault("max_tokens", self.max_tokens)
        with self.client.messages.stream(
            model=model or self.model, system=system, messages=messages, **kwargs
        ) as stream:
            for text in stream.text_stream:
                if text:
                    yield text


class OpenAI(LLM):
    kind = BackendKind.OPENAI

    def __init__(self, api_key: str, default_model: str = "gpt-4o", timeout=60.0):
        from openai import OpenAI

        self.client = OpenAI(api_key=api_key, timeout=timeout)
        self.model = default_model

    @classmethod
    def from_settings(cls, settings):
        return cls(
            api_key=settings.openai_api_key,
            default_model=settings.openai_model,
            timeout=settings.request_timeout,
        )

    def _with_system(self, messages, system):
        return [{"role": "system", "content": system}, *messages]

    def generate_response(self, messages, system, model=None, **kwargs):
        return self.client.chat.completions.create(
            messages=self._with_system(messages, system),
            model=model or self.model,
            **kwargs,
        )

    def extract_content(self, response: Any) -> str:
        return response.choices[0].message.content or ""

    def stream_content(self, messages, system, model=None, **kwargs):
        stream = self.client.chat.completions.create(
            messages=self._with_system(messages, system),
            model=model or self.model,
            stream=True,
            **kwargs,
        )
        for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                yield delta


class Gemini(LLM):
    kind = BackendKind.GOOGLE

    def __init__(
        self, api_key: str, default_model: str = "gemini-1.5-flash", timeout=60.0
    ):
        from google import genai
        from google.genai import types

        self._types = types
        self.client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout * 1000)),
        )
        self.model = default_model

    @classmethod
    def from_settings(cls, settings):
        return cls(
            api_key=settings.google_api_key,
            default_model=settings.google_model,
            timeout=settings.request_timeout,
        )

    def _contents(self, messages):
        # Gemini names the assistant role "model"
        return [
            {
                "role": "model" if msg["role"] == ASSISTANT_ROLE else "user",
                "parts": [{"text": msg["content"]}],
            }
            for msg in messages
        ]

    def generate_response(self, messages, system, model=None, **kwargs):
        return self.client.models.generate_content(
            model=model or self.model,
            contents=self._contents(messages),
            config=self._types.GenerateContentConfig(
                system_instruction=system, **kwargs
            ),
        )

    def extract_content(self, response: Any) -> str:
        return response.text or ""

    def stream_content(self, messages, system, model=None, **kwargs):
        for chunk in self.client.models.generate_content_stream(
            model=model or self.model,
            contents=self._contents(messages),
            config=self._types.GenerateContentConfig(
                system_instruction=system, **kwargs
            ),
        ):
            if chunk.text:
                yield chunk.text


class Echo(LLM):
    """Credential-free backend that echoes the last user turn."""

    def __init__(self, default_model: str = "echo-v1", delay: float = 0.0):
        self.model = default_model
        self.delay = delay

    @classmethod
    def from_settings(cls, settings):
        return cls()

    def _reply(self, messages) -> str:
        user_prompt = messages[-1]["content"] if messages else "No message provided"
        return f"**Echo LLM - static response for testing**\n\n_Your prompt:_\n\n{user_prompt}"

    def generate_response(self, messages, system, model=None, **kwargs):
        time.sleep(self.delay)
        return {
            "content": self._reply(messages),
            "raw_response": "Echo LLM - static response for testing",
        }

    def extract_content(self, response: Any) -> str:
        if isinstance(response, dict) and "content" in response:
            return response["content"]
        return str(response)

    def stream_content(self, messages, system, model=None, **kwargs):
        for word in re.findall(r"\s*\S+\s*", self._reply(messages)):
            time.sleep(self.delay)
            yield word


BACKENDS = {
    BackendKind.ANTHROPIC: Anthropic,
    BackendKind.OPENAI: OpenAI,
    BackendKind.GOOGLE: Gemini,
}


def create_backend(settings: Settings) -> LLM:
    """Builds the highest-priority configured provider.

    Raises
    ------
    NoBackendError
        If no provider key is configured or the provider SDK is missing.
    """
    kind = settings.preferred_backend()
    if kind is None:
        raise NoBackendError(
            "No LLM provider configured. Set ANTHROPIC_API_KEY, OPENAI_API_KEY "
            "or GOOGLE_API_KEY."
        )
    try:
        return BACKENDS[kind].from_settings(settings)
    except ImportError as e:
        raise NoBackendError(
            f"The {kind.value} provider is configured but its SDK is not installed"
        ) from e

"""The append-only chat log that the UI renders."""

import threading
from typing import List

from .models import ASSISTANT_ROLE, ChatMessage


class ChatLog:
    """Role-tagged visible messages.

    Entries are only ever appended. The last assistant entry may grow while
    it is streaming and is frozen by :meth:`finalize`. Readers get deep copies
    so a render never observes a half-applied write.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._messages: List[ChatMessage] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def append(self, message: ChatMessage) -> ChatMessage:
        with self._lock:
            self._messages.append(message)
        return message

    def start_stream(self, generation: int, first_chunk: str) -> ChatMessage:
        """Opens an assistant entry that subsequent chunks extend."""
        return self.append(
            ChatMessage(
                role=ASSISTANT_ROLE,
                content=first_chunk,
                generation=generation,
                final=False,
            )
        )

    def extend(self, message: ChatMessage, chunk: str) -> None:
        with self._lock:
            if message.final:
                raise ValueError(f"message {message.id} is already final")
            message.content += chunk

    def finalize(self, message: ChatMessage) -> None:
        with self._lock:
            message.final = True

    def messages(self) -> List[ChatMessage]:
        with self._lock:
            return [msg.model_copy(deep=True) for msg in self._messages]

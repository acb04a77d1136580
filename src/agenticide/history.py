"""Append-only conversation history."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

from .models import Message, Role


class ConversationHistory:
    """Ordered log of conversation turns.

    Nothing is ever removed or replaced; `append` returns the index of the new
    turn so assistant replies can point back at the user turn they answer.
    """

    def __init__(self, messages: Iterable[Message] = ()) -> None:
        self._messages: list[Message] = list(messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    def append(self, message: Message) -> int:
        self._messages.append(message)
        return len(self._messages) - 1

    def append_user(self, content: str) -> int:
        return self.append(Message(role=Role.USER, content=content))

    def append_assistant(
        self,
        content: str,
        *,
        agent: str,
        in_reply_to: int | None = None,
        cached: bool = False,
    ) -> int:
        return self.append(
            Message(
                role=Role.ASSISTANT,
                content=content,
                agent=agent,
                in_reply_to=in_reply_to,
                cached=cached,
            )
        )

    def recent(self, n: int) -> list[Message]:
        """The last n turns, oldest first."""
        if n <= 0:
            return []
        return self._messages[-n:]

    def snapshot(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def to_transcript(self) -> list[dict[str, Any]]:
        return [m.model_dump(mode="json") for m in self._messages]

    @classmethod
    def from_transcript(cls, transcript: Iterable[dict[str, Any]]) -> ConversationHistory:
        return cls(
            Message.model_validate(entry)
            for entry in transcript
            if entry.get("role") in (Role.USER.value, Role.ASSISTANT.value)
        )


__all__ = ["ConversationHistory"]

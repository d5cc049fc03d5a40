"""Conversation history store interface and an in-memory implementation."""

import logging
import uuid
from typing import Optional, Protocol

from .message import Message
from .window import estimate_tokens

logger = logging.getLogger(__name__)


class HistoryStore(Protocol):
    """What the maintenance routines need from persistent history."""

    def get_history(self) -> list[Message]:
        ...

    def compact(self, summarized_count: int, summary: str) -> None:
        """Replace the first `summarized_count` messages with one summary message."""
        ...


def history_tokens(history: list[Message]) -> int:
    return sum(estimate_tokens(m.content) for m in history)


class InMemoryHistory:
    """List-backed history store, used by the CLI and tests."""

    def __init__(self, messages: Optional[list[Message]] = None) -> None:
        self._messages: list[Message] = list(messages or [])

    def __len__(self) -> int:
        return len(self._messages)

    def get_history(self) -> list[Message]:
        return list(self._messages)

    def append(self, role: str, content: str, type: Optional[str] = None) -> Message:
        message = Message.create(role, content, type=type)
        self._messages.append(message)
        logger.debug(
            f"Added {role} message ({len(content)} chars), "
            f"history now {len(self._messages)} messages, "
            f"~{history_tokens(self._messages)} tokens"
        )
        return message

    def add(self, message: Message) -> None:
        self._messages.append(message)

    def compact(self, summarized_count: int, summary: str) -> None:
        count = min(summarized_count, len(self._messages))
        if count <= 0:
            return
        older = self._messages[:count]
        kept = self._messages[count:]
        # Stamped with the last summarized message so it sorts before the kept tail
        summary_msg = Message(
            id=uuid.uuid4().hex,
            role="system",
            content=summary,
            timestamp=older[-1].timestamp,
        )
        self._messages = [summary_msg] + kept
        logger.info(f"Compacted {len(older)} messages into one summary message")

    def clear(self) -> None:
        self._messages = []

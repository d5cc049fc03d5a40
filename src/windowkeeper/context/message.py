"""Conversation message types shared by the window builder and assembler."""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

VALID_ROLES = ("user", "assistant", "system")


@dataclass(frozen=True)
class Message:
    """A single entry of conversation history.

    Messages are owned by the history store and never mutated here;
    dropping one only means leaving it out of the admitted set.
    """

    id: str
    role: str  # "user", "assistant" or "system"
    content: str
    timestamp: float = field(default_factory=time.time)
    type: Optional[str] = None  # semantic tag, e.g. "analysis"

    @classmethod
    def create(cls, role: str, content: str, type: Optional[str] = None) -> "Message":
        """Build a message with a fresh id and the current time."""
        if role not in VALID_ROLES:
            raise ValueError(f"Invalid role: {role}")
        return cls(id=uuid.uuid4().hex, role=role, content=content, type=type)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            id=str(data["id"]),
            role=data["role"],
            content=data.get("content") or "",
            timestamp=float(data.get("timestamp", 0.0)),
            type=data.get("type"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.type:
            data["type"] = self.type
        return data


@dataclass
class ScoredMessage:
    """A message with its estimated size and importance for one build."""

    message: Message
    tokens: int
    importance: float  # 0.0 - 1.0
    pinned: bool = False


@dataclass(frozen=True)
class ContextWindow:
    """Result of a window build: the admitted messages in chronological order."""

    messages: list[Message]
    summary: Optional[str]
    total_tokens: int
    dropped_count: int
    # True when pinned + guaranteed messages alone exceed the budget
    pinned_overflow: bool = False

    @property
    def message_ids(self) -> list[str]:
        return [m.id for m in self.messages]

    def to_api_messages(self) -> list[dict[str, str]]:
        """Messages as role/content dicts for a chat completion API.

        A dropped-message summary goes first as a synthetic user/assistant
        pair; system-role history entries are sent as user messages.
        """
        messages: list[dict[str, str]] = []
        if self.summary:
            messages.append({"role": "user", "content": self.summary})
            messages.append({
                "role": "assistant",
                "content": "Understood. I'll keep that context in mind.",
            })
        for m in self.messages:
            role = m.role if m.role in ("user", "assistant") else "user"
            messages.append({"role": role, "content": m.content})
        return messages

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": [m.to_dict() for m in self.messages],
            "summary": self.summary,
            "total_tokens": self.total_tokens,
            "dropped_count": self.dropped_count,
            "pinned_overflow": self.pinned_overflow,
        }

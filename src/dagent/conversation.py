"""Conversation history records exchanged with the model backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Sequence


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    """Chat roles understood by the backend."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(slots=True)
class ToolCall:
    """Assistant tool invocation, correlated with the tool reply that follows it."""

    id: str = ""
    name: str = ""
    arguments: str = ""

    @property
    def on_record(self) -> bool:
        return bool(self.id)


@dataclass(slots=True)
class ChatMessage:
    """Single turn of the conversation."""

    role: MessageRole
    content: str = ""
    tool_call_id: str = ""
    name: str = ""
    timestamp: Optional[datetime] = None
    tool_calls: List[ToolCall] = field(default_factory=list)


def last_message_with_role(history: Sequence[ChatMessage], role: MessageRole) -> ChatMessage | None:
    """Return the most recent message with ``role``, if any."""
    for message in reversed(history):
        if message.role == role:
            return message
    return None


__all__ = [
    "ChatMessage",
    "MessageRole",
    "ToolCall",
    "last_message_with_role",
    "utc_now",
]

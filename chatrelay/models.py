"""
Data models for conversation threads.
These define the shape of data flowing between the store, the providers
and the dispatcher. Messages link to their predecessor through parent_id;
a message without a parent is the root of its thread.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum

from chatrelay.errors import SchemaError, UnsupportedModeError


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    FUNCTION = "function"

    @classmethod
    def parse(cls, value: str) -> "ChatRole":
        """Unknown roles are read as system."""
        if isinstance(value, ChatRole):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.SYSTEM


class ChatMode(str, Enum):
    """Selector naming which provider services a chat request."""
    OPENAI = "openai"
    COPILOT = "copilot"
    GEMINI = "gemini"
    CLAUDE = "claude"
    XH = "xh"
    QWEN = "qwen"
    GLM4 = "glm4"

    @classmethod
    def parse(cls, value: "str | ChatMode") -> "ChatMode":
        if isinstance(value, ChatMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnsupportedModeError(str(value)) from None


DEFAULT_MODE = ChatMode.OPENAI


@dataclass
class ChatMessage:
    """A single message in a thread."""
    content: str = ""
    role: ChatRole = ChatRole.USER
    message_id: str | None = None   # assigned when persisted
    parent_id: str | None = None    # None marks the thread root

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def to_openai_format(self) -> dict:
        """Export as an entry of the OpenAI messages array."""
        return {"role": self.role.value, "content": self.content}

    def to_json(self) -> str:
        return json.dumps({
            "content": self.content,
            "role": self.role.value,
            "message_id": self.message_id,
            "parent_id": self.parent_id,
        }, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> "ChatMessage":
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise SchemaError(f"Stored message is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise SchemaError("Stored message is not a JSON object")
        return cls(
            content=str(data.get("content") or ""),
            role=ChatRole.parse(data.get("role", "system")),
            message_id=data.get("message_id") or None,
            parent_id=data.get("parent_id") or None,
        )


@dataclass
class Conversation:
    """
    A thread: messages sharing a conversation_id.
    Messages are in chronological order, oldest first.
    """
    conversation_id: str
    messages: list[ChatMessage] = field(default_factory=list)

    def to_openai_format(self) -> list[dict]:
        return [m.to_openai_format() for m in self.messages]

    def __len__(self) -> int:
        return len(self.messages)


@dataclass
class ChatResponse:
    """Normalized reply from any provider."""
    message: str
    mode: ChatMode
    message_id: str
    conversation_id: str
    parent_id: str = ""
    raw: dict = field(default_factory=dict)  # provider payload, diagnostics only


@dataclass
class UserProgress:
    """Where a sender left off, so the next turn resumes the same thread."""
    conversation_id: str | None = None
    parent_id: str | None = None
    mode: ChatMode | None = None

    def to_json(self) -> str:
        return json.dumps({
            "conversation_id": self.conversation_id,
            "parent_id": self.parent_id,
            "mode": self.mode.value if self.mode else None,
        })

    @classmethod
    def from_json(cls, raw: str) -> "UserProgress":
        """Raises SchemaError when the record cannot be decoded."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise SchemaError(f"Progress record is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise SchemaError("Progress record is not a JSON object")
        mode = data.get("mode")
        try:
            mode = ChatMode.parse(mode) if mode else None
        except UnsupportedModeError as e:
            raise SchemaError(f"Progress record has an unknown mode: {e.mode!r}") from e
        return cls(
            conversation_id=data.get("conversation_id") or None,
            parent_id=data.get("parent_id") or None,
            mode=mode,
        )

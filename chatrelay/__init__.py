"""
chatrelay — multi-turn conversation threads over pluggable LLM chat backends.
"""

__version__ = "0.3.0"

from chatrelay.dispatcher import ChatService, Dispatcher
from chatrelay.errors import (
    ChatError,
    HistoryCycleError,
    HistoryDepthError,
    NotFoundError,
    SchemaError,
    StoreError,
    TransportError,
    UnsupportedModeError,
    UpstreamStatusError,
)
from chatrelay.models import ChatMessage, ChatMode, ChatResponse, ChatRole, Conversation, UserProgress

__all__ = [
    "ChatService",
    "Dispatcher",
    "ChatError",
    "HistoryCycleError",
    "HistoryDepthError",
    "NotFoundError",
    "SchemaError",
    "StoreError",
    "TransportError",
    "UnsupportedModeError",
    "UpstreamStatusError",
    "ChatMessage",
    "ChatMode",
    "ChatResponse",
    "ChatRole",
    "Conversation",
    "UserProgress",
]

"""
Error taxonomy for chatrelay.

Every failure a chat turn can hit maps to one of these. All of them are
recoverable by the caller; the host decides what the end user sees.

    ChatError
    ├── TransportError          network / HTTP failure reaching the provider
    │   └── UpstreamStatusError provider answered with a 4xx/5xx
    ├── SchemaError             provider or store payload has the wrong shape
    │   ├── HistoryCycleError   parent chain loops back on itself
    │   └── HistoryDepthError   parent chain longer than max_history_depth
    ├── NotFoundError           referenced message id missing from the store
    ├── UnsupportedModeError    no provider registered for the mode
    └── StoreError              key-value write/read failed
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for every chatrelay failure."""


class TransportError(ChatError):
    """Could not get a response out of the provider."""


class UpstreamStatusError(TransportError):
    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}: {body}")


class SchemaError(ChatError):
    """A payload did not match the expected shape."""


class HistoryCycleError(SchemaError):
    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Parent chain revisits message '{message_id}'")


class HistoryDepthError(SchemaError):
    def __init__(self, max_depth: int):
        self.max_depth = max_depth
        super().__init__(f"Parent chain exceeds {max_depth} messages")


class NotFoundError(ChatError):
    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Message not found: '{message_id}'")


class UnsupportedModeError(ChatError):
    def __init__(self, mode: str):
        self.mode = mode
        super().__init__(f"Chat mode '{mode}' is not implemented")


class StoreError(ChatError):
    """The key-value store rejected a read or write."""

"""
In-process key-value store.
Used by tests and by hosts that embed chatrelay without persistence.
"""

import logging

from .base import KVStore

logger = logging.getLogger(__name__)


class MemoryStore(KVStore):
    """Dict-backed store keyed by (namespace, key)."""

    def __init__(self):
        self._data: dict[tuple[str, str], str] = {}

    def get(self, key: str, namespace: str | None = None) -> str | None:
        return self._data.get((namespace or "", key))

    def set(self, key: str, value: str, namespace: str | None = None) -> None:
        self._data[(namespace or "", key)] = value
        logger.debug("Set %s (namespace=%s)", key, namespace)

    def __len__(self) -> int:
        return len(self._data)

"""
KVStore — abstract base for the namespaced key-value store.

Two primitives, nothing else:
  get  — read a value, None when the key is absent
  set  — write a value, raise StoreError when the write fails

Conversation logic lives in the providers (the caller), not here.
Stores are intentionally dumb: they only move strings around.
"""

from abc import ABC, abstractmethod


class KVStore(ABC):
    """Abstract namespaced key-value store."""

    @abstractmethod
    def get(self, key: str, namespace: str | None = None) -> str | None:
        """Return the value stored under key in namespace, or None."""
        ...

    @abstractmethod
    def set(self, key: str, value: str, namespace: str | None = None) -> None:
        """Store value under key in namespace. Raises StoreError on failure."""
        ...

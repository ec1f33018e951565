"""
Key-value store factory.

Usage:
    from chatrelay.storage import make_store
    store = make_store("sqlite", db_path="./data/chatrelay.db")

Adding a new store:
    1. Create chatrelay/storage/<name>.py implementing KVStore.
    2. Add an entry to _REGISTRY below.
    3. Set  storage.type: <name>  in config.yaml.
"""

from .base import KVStore
from .memory_store import MemoryStore
from .sqlite_store import SQLiteStore

_REGISTRY: dict[str, type[KVStore]] = {
    "memory": MemoryStore,
    "sqlite": SQLiteStore,
}


def make_store(store_type: str, **kwargs) -> KVStore:
    """
    Instantiate a store by name.

    Args:
        store_type: Registry key (e.g. "sqlite").
        **kwargs:   Passed directly to the store constructor.

    Raises:
        ValueError: If the store type is not registered.
    """
    cls = _REGISTRY.get(store_type)
    if cls is None:
        available = ", ".join(_REGISTRY.keys())
        raise ValueError(
            f"Unknown store type: '{store_type}'. "
            f"Available: {available}"
        )
    return cls(**kwargs)


__all__ = ["KVStore", "MemoryStore", "SQLiteStore", "make_store"]

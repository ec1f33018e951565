"""
Chat providers for chatrelay.
Every provider shares the thread bookkeeping in BaseProvider and is picked
by mode through the ProviderRegistry.
"""
from chatrelay.providers.base import BaseProvider, Completion
from chatrelay.providers.openai import OpenAIProvider
from chatrelay.providers.registry import ProviderRegistry, build_registry

__all__ = [
    "BaseProvider",
    "Completion",
    "OpenAIProvider",
    "ProviderRegistry",
    "build_registry",
]

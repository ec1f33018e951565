"""
Provider registry — maps a mode tag to the provider that serves it.

The dispatcher never branches on the mode itself; it asks the registry.
Adding a backend is a registration, not an edit:

    registry.register(ChatMode.CLAUDE, ClaudeProvider(...))

build_registry() wires up every provider that has a config section.
"""

from __future__ import annotations

import logging

from chatrelay.config import ChatConfig, OpenAIConfig
from chatrelay.errors import UnsupportedModeError
from chatrelay.models import ChatMode
from chatrelay.providers.base import BaseProvider
from chatrelay.providers.openai import OpenAIProvider
from chatrelay.storage.base import KVStore

logger = logging.getLogger(__name__)


def _make_openai(cfg: dict, store: KVStore, chat_config: ChatConfig) -> BaseProvider:
    return OpenAIProvider(OpenAIConfig.from_dict(cfg.get("openai")), store, chat_config)


# Mode → provider factory
PROVIDERS = {
    ChatMode.OPENAI: _make_openai,
}


class ProviderRegistry:
    """Mode tag → provider instance."""

    def __init__(self):
        self._providers: dict[ChatMode, BaseProvider] = {}

    def register(self, mode: ChatMode | str, provider: BaseProvider):
        mode = ChatMode.parse(mode)
        if mode in self._providers:
            logger.warning("Replacing provider for mode '%s'", mode.value)
        self._providers[mode] = provider

    def get(self, mode: ChatMode | str) -> BaseProvider:
        """Raises UnsupportedModeError when nothing serves the mode."""
        mode = ChatMode.parse(mode)
        provider = self._providers.get(mode)
        if provider is None:
            raise UnsupportedModeError(mode.value)
        return provider

    def modes(self) -> list[ChatMode]:
        return list(self._providers)

    def __contains__(self, mode) -> bool:
        try:
            return ChatMode.parse(mode) in self._providers
        except UnsupportedModeError:
            return False

    def __len__(self) -> int:
        return len(self._providers)


def build_registry(cfg: dict, store: KVStore) -> ProviderRegistry:
    """Instantiate every known provider against the shared store."""
    chat_config = ChatConfig.from_dict(cfg.get("chat"))
    registry = ProviderRegistry()
    for mode, factory in PROVIDERS.items():
        registry.register(mode, factory(cfg, store, chat_config))
    logger.info(
        "Provider registry initialized: %s",
        ", ".join(m.value for m in registry.modes()),
    )
    return registry

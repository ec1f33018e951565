"""
Dispatcher — picks a provider for each sender and keeps their place.

For every inbound prompt:
  1. Load the sender's progress record (conversation, tail message, mode).
  2. Resolve the mode: sender's own → namespace `use` key → configured
     default → openai.
  3. Hand the prompt to the provider registered for that mode.
  4. Write the progress record back so the next prompt continues the thread.

ChatService is the single entry point a host message loop calls:

    service = ChatService.from_config(get_config())
    reply = await service.handle("hello", sender_id="42")
"""

from __future__ import annotations

import logging

from chatrelay.config import ChatConfig, DEFAULT_NAMESPACE
from chatrelay.errors import SchemaError
from chatrelay.models import DEFAULT_MODE, ChatMode, ChatResponse, UserProgress
from chatrelay.providers.registry import ProviderRegistry, build_registry
from chatrelay.storage import KVStore, make_store

logger = logging.getLogger(__name__)

USE_KEY = "use"


def progress_key(sender_id: str) -> str:
    return f"user_progress:{sender_id}"


class Dispatcher:
    """Routes prompts to providers by mode and tracks per-sender threads."""

    def __init__(
        self,
        store: KVStore,
        registry: ProviderRegistry,
        namespace: str = DEFAULT_NAMESPACE,
        default_mode: ChatMode | str | None = None,
    ):
        self.store = store
        self.registry = registry
        self.namespace = namespace
        self.default_mode = ChatMode.parse(default_mode) if default_mode else None

    # ------------------------------------------------------------------
    # Progress records
    # ------------------------------------------------------------------

    def load_progress(self, sender_id: str) -> UserProgress:
        """A missing or unreadable record means a fresh start."""
        raw = self.store.get(progress_key(sender_id), self.namespace)
        if not raw:
            return UserProgress()
        try:
            return UserProgress.from_json(raw)
        except SchemaError as e:
            logger.warning("Discarding progress for sender %s: %s", sender_id, e)
            return UserProgress()

    def save_progress(self, sender_id: str, progress: UserProgress):
        self.store.set(progress_key(sender_id), progress.to_json(), self.namespace)

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    def resolve_mode(self, progress: UserProgress) -> ChatMode:
        if progress.mode is not None:
            return progress.mode
        use = self.store.get(USE_KEY, self.namespace)
        if use:
            return ChatMode.parse(use)
        if self.default_mode is not None:
            return self.default_mode
        return DEFAULT_MODE

    def set_default_mode(self, mode: ChatMode | str):
        """Set the namespace-wide mode (the `use` key)."""
        mode = ChatMode.parse(mode)
        self.store.set(USE_KEY, mode.value, self.namespace)
        logger.info("Default mode for namespace %s set to %s", self.namespace, mode.value)

    def set_user_mode(self, sender_id: str, mode: ChatMode | str):
        progress = self.load_progress(sender_id)
        progress.mode = ChatMode.parse(mode)
        self.save_progress(sender_id, progress)

    def reset(self, sender_id: str):
        """Forget the sender's thread; their mode choice survives."""
        progress = self.load_progress(sender_id)
        self.save_progress(sender_id, UserProgress(mode=progress.mode))
        logger.info("Progress reset for sender %s", sender_id)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, prompt: str, sender_id: str) -> ChatResponse:
        progress = self.load_progress(sender_id)
        mode = self.resolve_mode(progress)
        provider = self.registry.get(mode)

        logger.debug(
            "Dispatching for sender %s to %s (conversation=%s, parent=%s)",
            sender_id, mode.value, progress.conversation_id, progress.parent_id,
        )
        response = await provider.chat(
            prompt,
            conversation_id=progress.conversation_id,
            parent_id=progress.parent_id,
        )

        self.save_progress(sender_id, UserProgress(
            conversation_id=response.conversation_id,
            parent_id=response.message_id,
            mode=response.mode,
        ))
        return response


class ChatService:
    """Host-facing entry point: prompt + sender in, reply text out."""

    def __init__(self, dispatcher: Dispatcher):
        self.dispatcher = dispatcher

    @classmethod
    def from_config(cls, cfg: dict, store: KVStore | None = None) -> "ChatService":
        """Wire store, providers and dispatcher from a loaded config dict."""
        if store is None:
            s_cfg = cfg.get("storage", {}) or {}
            store_type = s_cfg.get("type", "sqlite")
            if store_type == "sqlite":
                store = make_store("sqlite", db_path=s_cfg.get("path", "./data/chatrelay.db"))
            else:
                store = make_store(store_type)

        chat_config = ChatConfig.from_dict(cfg.get("chat"))
        dispatcher = Dispatcher(
            store,
            build_registry(cfg, store),
            namespace=chat_config.namespace,
            default_mode=chat_config.default_mode,
        )
        return cls(dispatcher)

    async def handle(self, prompt: str, sender_id: str) -> str:
        """
        Answer one inbound prompt from sender_id.
        ChatError subclasses propagate; the host decides what the user sees.
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt is empty")
        logger.info("[chat] sender=%s prompt=%d chars", sender_id, len(prompt))
        response = await self.dispatcher.dispatch(prompt, sender_id)
        return response.message

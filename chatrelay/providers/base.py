"""
Base provider abstraction.
All providers implement this interface so the dispatcher can treat them
uniformly. The base class owns everything that is about the thread rather
than the backend: walking parent pointers out of the store, persisting new
messages, and serializing turns on the same conversation. A concrete
provider only has to turn a list of messages into a completion.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass, field

from chatrelay.config import DEFAULT_MAX_HISTORY_DEPTH, DEFAULT_NAMESPACE
from chatrelay.errors import HistoryCycleError, HistoryDepthError, NotFoundError
from chatrelay.models import ChatMessage, ChatMode, ChatResponse, ChatRole, Conversation
from chatrelay.storage.base import KVStore

logger = logging.getLogger(__name__)


def message_key(message_id: str) -> str:
    return f"message:{message_id}"


def thread_key(conversation_id: str) -> str:
    return f"conversation:{conversation_id}:messages"


@dataclass
class Completion:
    """What a backend hands back for one request."""
    content: str
    message_id: str | None = None
    raw: dict = field(default_factory=dict)


class BaseProvider(abc.ABC):
    """
    Abstract base for chat providers.
    Subclasses set `mode` and implement complete().
    """

    mode: ChatMode

    def __init__(
        self,
        store: KVStore,
        namespace: str = DEFAULT_NAMESPACE,
        system: str | None = None,
        max_history_depth: int = DEFAULT_MAX_HISTORY_DEPTH,
        store_replies: bool = False,
    ):
        self.store = store
        self.namespace = namespace
        self.system = system
        self.max_history_depth = max_history_depth
        self.store_replies = store_replies
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @abc.abstractmethod
    async def complete(self, messages: list[ChatMessage]) -> Completion:
        """
        Send the full message list to the backend and return its reply.
        Raises TransportError or SchemaError; never returns an empty
        completion in place of a failure.
        """
        ...

    # ------------------------------------------------------------------
    # Chat turn
    # ------------------------------------------------------------------

    async def chat(
        self,
        prompt: str,
        conversation_id: str | None = None,
        parent_id: str | None = None,
    ) -> ChatResponse:
        """
        Run one turn: rebuild history, ask the backend, persist, respond.
        Turns on the same conversation_id are serialized.
        """
        if not conversation_id:
            return await self._turn(prompt, None, parent_id or None)

        lock = self._conversation_lock(conversation_id)
        async with lock:
            return await self._turn(prompt, conversation_id, parent_id or None)

    async def _turn(
        self,
        prompt: str,
        conversation_id: str | None,
        parent_id: str | None,
    ) -> ChatResponse:
        history: list[ChatMessage] = []
        if conversation_id:
            if parent_id is None:
                parent_id = self.last_message_id(conversation_id)
            history = (await self.get_conversation(conversation_id, parent_id)).messages

        messages: list[ChatMessage] = []
        if self.system:
            messages.append(ChatMessage(content=self.system, role=ChatRole.SYSTEM))
        messages.extend(history)
        user_message = ChatMessage(content=prompt, role=ChatRole.USER, parent_id=parent_id)
        messages.append(user_message)

        completion = await self.complete(messages)

        conversation_id = conversation_id or str(uuid.uuid4())
        tail_id = self._fresh_message_id(completion.message_id)
        if self.store_replies:
            user_message.message_id = self._fresh_message_id(None)
            reply = ChatMessage(
                content=completion.content,
                role=ChatRole.ASSISTANT,
                message_id=tail_id,
                parent_id=user_message.message_id,
            )
            await self.set_messages([user_message, reply], conversation_id)
        else:
            user_message.message_id = tail_id
            await self.set_message(user_message, conversation_id)

        logger.info(
            "%s turn stored in conversation %s (history=%d, tail=%s)",
            self.mode.value, conversation_id, len(history), tail_id,
        )
        return ChatResponse(
            message=completion.content,
            mode=self.mode,
            message_id=tail_id,
            conversation_id=conversation_id,
            parent_id=parent_id or "",
            raw=completion.raw,
        )

    def _fresh_message_id(self, candidate: str | None) -> str:
        """Use candidate unless it is missing or already taken in the store."""
        if candidate and self.store.get(message_key(candidate), self.namespace) is None:
            return candidate
        if candidate:
            logger.warning("Message id '%s' already stored, assigning a new one", candidate)
        return uuid.uuid4().hex

    def _conversation_lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Thread storage
    # ------------------------------------------------------------------

    def message_ids(self, conversation_id: str) -> list[str]:
        """Ids appended to a conversation, oldest first."""
        raw = self.store.get(thread_key(conversation_id), self.namespace)
        if not raw:
            return []
        return [i for i in raw.split(",") if i]

    def last_message_id(self, conversation_id: str) -> str | None:
        ids = self.message_ids(conversation_id)
        return ids[-1] if ids else None

    async def get_history(
        self,
        conversation_id: str,
        parent_id: str | None = None,
    ) -> Conversation:
        """
        Rebuild a thread by walking parent pointers back from parent_id
        (or from the conversation's newest message when none is given).

        Returns messages oldest first. An unknown conversation yields an
        empty Conversation. A dangling parent pointer raises NotFoundError;
        a loop or an over-long chain raises a SchemaError subclass.
        """
        if not parent_id:
            parent_id = self.last_message_id(conversation_id)
        if parent_id is None:
            return Conversation(conversation_id=conversation_id)

        messages: list[ChatMessage] = []
        seen: set[str] = set()
        next_id: str | None = parent_id
        while next_id is not None:
            if next_id in seen:
                raise HistoryCycleError(next_id)
            if len(messages) >= self.max_history_depth:
                raise HistoryDepthError(self.max_history_depth)
            seen.add(next_id)
            message = await self.get_message(next_id)
            messages.append(message)
            next_id = message.parent_id

        messages.reverse()
        logger.debug("Rebuilt %d messages for conversation %s", len(messages), conversation_id)
        return Conversation(conversation_id=conversation_id, messages=messages)

    async def get_conversation(
        self,
        conversation_id: str,
        parent_id: str | None = None,
    ) -> Conversation:
        """Providers with server-side threads may override this."""
        return await self.get_history(conversation_id, parent_id)

    async def get_message(self, message_id: str) -> ChatMessage:
        raw = self.store.get(message_key(message_id), self.namespace)
        if raw is None:
            raise NotFoundError(message_id)
        message = ChatMessage.from_json(raw)
        if message.message_id is None:
            message.message_id = message_id
        return message

    async def set_message(self, message: ChatMessage, conversation_id: str) -> None:
        """Store the message body, then append its id to the conversation."""
        await self.set_messages([message], conversation_id)

    async def set_messages(self, messages: list[ChatMessage], conversation_id: str) -> None:
        """
        Store every body first, then append all ids in one write.
        A body that fails to store leaves the conversation list untouched.
        """
        for message in messages:
            if not message.message_id:
                raise ValueError("Cannot store a message without a message_id")
        for message in messages:
            self.store.set(message_key(message.message_id), message.to_json(), self.namespace)
        ids = self.message_ids(conversation_id)
        ids.extend(m.message_id for m in messages)
        self.store.set(thread_key(conversation_id), ",".join(ids), self.namespace)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} mode={self.mode.value!r} namespace={self.namespace!r}>"

"""
Tests for thread reconstruction and persistence in BaseProvider.

Covers:
  - Root detection and chain walk A→B→C, oldest first
  - Fallback to the conversation's newest message
  - Dangling parent pointers, cycles, depth limit
  - chat(): history, system preamble, append-list growth, store_replies
  - Nothing persisted when the backend fails
"""

import asyncio

import pytest

from chatrelay.errors import (
    HistoryCycleError,
    HistoryDepthError,
    NotFoundError,
    SchemaError,
    StoreError,
    TransportError,
)
from chatrelay.models import ChatMessage, ChatMode, ChatRole
from chatrelay.providers.base import BaseProvider, Completion, message_key, thread_key
from chatrelay.storage import MemoryStore

NS = "chatgpt"


class ScriptedProvider(BaseProvider):
    """Replies from a list and records what it was sent."""

    mode = ChatMode.OPENAI

    def __init__(self, store, replies=None, **kwargs):
        super().__init__(store, namespace=NS, **kwargs)
        self.replies = list(replies or [])
        self.sent: list[list[ChatMessage]] = []

    async def complete(self, messages):
        self.sent.append(list(messages))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def _put(store, message_id, content, parent_id=None, role="user"):
    msg = ChatMessage(content=content, role=ChatRole(role), message_id=message_id, parent_id=parent_id)
    store.set(message_key(message_id), msg.to_json(), NS)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def chain(store):
    """A ← B ← C stored in conversation c1."""
    _put(store, "A", "first")
    _put(store, "B", "second", parent_id="A", role="assistant")
    _put(store, "C", "third", parent_id="B")
    store.set(thread_key("c1"), "A,B,C", NS)
    return store


# ── get_history ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_root_terminates_immediately(store):
    _put(store, "root", "only")
    provider = ScriptedProvider(store)
    conv = await provider.get_history("c1", "root")
    assert [m.message_id for m in conv.messages] == ["root"]


@pytest.mark.asyncio
async def test_chain_oldest_first(chain):
    provider = ScriptedProvider(chain)
    conv = await provider.get_history("c1", "C")
    assert conv.conversation_id == "c1"
    assert [m.message_id for m in conv.messages] == ["A", "B", "C"]
    assert [m.content for m in conv.messages] == ["first", "second", "third"]
    assert conv.messages[1].role is ChatRole.ASSISTANT


@pytest.mark.asyncio
async def test_partial_chain_from_middle(chain):
    provider = ScriptedProvider(chain)
    conv = await provider.get_history("c1", "B")
    assert [m.message_id for m in conv.messages] == ["A", "B"]


@pytest.mark.asyncio
async def test_no_parent_uses_last_appended(chain):
    provider = ScriptedProvider(chain)
    conv = await provider.get_history("c1")
    assert [m.message_id for m in conv.messages] == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_unknown_conversation_is_empty(store):
    provider = ScriptedProvider(store)
    conv = await provider.get_history("never-seen")
    assert conv.conversation_id == "never-seen"
    assert conv.messages == []


@pytest.mark.asyncio
async def test_empty_id_list_is_empty(store):
    store.set(thread_key("c1"), "", NS)
    provider = ScriptedProvider(store)
    assert (await provider.get_history("c1")).messages == []


def test_id_list_tolerates_leading_comma(store):
    store.set(thread_key("c1"), ",A,B", NS)
    provider = ScriptedProvider(store)
    assert provider.message_ids("c1") == ["A", "B"]
    assert provider.last_message_id("c1") == "B"


@pytest.mark.asyncio
async def test_missing_parent_is_not_found(store):
    provider = ScriptedProvider(store)
    with pytest.raises(NotFoundError) as exc:
        await provider.get_history("c1", "ghost")
    assert exc.value.message_id == "ghost"


@pytest.mark.asyncio
async def test_dangling_pointer_mid_chain(store):
    _put(store, "B", "orphan", parent_id="A")
    provider = ScriptedProvider(store)
    with pytest.raises(NotFoundError):
        await provider.get_history("c1", "B")


@pytest.mark.asyncio
async def test_self_cycle(store):
    _put(store, "X", "loop", parent_id="X")
    provider = ScriptedProvider(store)
    with pytest.raises(HistoryCycleError):
        await provider.get_history("c1", "X")


@pytest.mark.asyncio
async def test_ancestor_cycle(store):
    _put(store, "A", "a", parent_id="C")
    _put(store, "B", "b", parent_id="A")
    _put(store, "C", "c", parent_id="B")
    provider = ScriptedProvider(store)
    with pytest.raises(SchemaError):
        await provider.get_history("c1", "C")


@pytest.mark.asyncio
async def test_depth_limit(chain):
    provider = ScriptedProvider(chain, max_history_depth=2)
    with pytest.raises(HistoryDepthError):
        await provider.get_history("c1", "C")


@pytest.mark.asyncio
async def test_get_message_missing(store):
    provider = ScriptedProvider(store)
    with pytest.raises(NotFoundError):
        await provider.get_message("nope")


@pytest.mark.asyncio
async def test_get_message_corrupt(store):
    store.set(message_key("bad"), "{{{", NS)
    provider = ScriptedProvider(store)
    with pytest.raises(SchemaError):
        await provider.get_message("bad")


@pytest.mark.asyncio
async def test_set_message_appends(store):
    provider = ScriptedProvider(store)
    await provider.set_message(ChatMessage(content="one", message_id="m1"), "c1")
    await provider.set_message(ChatMessage(content="two", message_id="m2", parent_id="m1"), "c1")

    assert store.get(thread_key("c1"), NS) == "m1,m2"
    assert (await provider.get_message("m2")).content == "two"


@pytest.mark.asyncio
async def test_set_message_requires_id(store):
    provider = ScriptedProvider(store)
    with pytest.raises(ValueError):
        await provider.set_message(ChatMessage(content="x"), "c1")


# ── chat ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_first_turn(store):
    provider = ScriptedProvider(store, [Completion(content="hi there", message_id="r1")])
    resp = await provider.chat("hello")

    assert resp.message == "hi there"
    assert resp.mode is ChatMode.OPENAI
    assert resp.message_id == "r1"
    assert resp.parent_id == ""
    assert resp.conversation_id

    assert [(m.role, m.content) for m in provider.sent[0]] == [(ChatRole.USER, "hello")]
    stored = await provider.get_message("r1")
    assert stored.content == "hello"
    assert stored.role is ChatRole.USER
    assert stored.parent_id is None
    assert provider.message_ids(resp.conversation_id) == ["r1"]


@pytest.mark.asyncio
async def test_follow_up_reconstructs_prior_turn(store):
    provider = ScriptedProvider(store, [
        Completion(content="hi there", message_id="r1"),
        Completion(content="fine", message_id="r2"),
    ])
    first = await provider.chat("hello")
    second = await provider.chat("how are you?", conversation_id=first.conversation_id)

    sent = provider.sent[1]
    assert [m.content for m in sent] == ["hello", "how are you?"]
    assert second.conversation_id == first.conversation_id
    assert second.parent_id == "r1"
    assert (await provider.get_message("r2")).parent_id == "r1"


@pytest.mark.asyncio
async def test_two_turns_append_in_order(store):
    provider = ScriptedProvider(store, [
        Completion(content="a", message_id="r1"),
        Completion(content="b", message_id="r2"),
    ])
    await provider.chat("one", conversation_id="c9")
    await provider.chat("two", conversation_id="c9")

    assert provider.message_ids("c9") == ["r1", "r2"]
    assert (await provider.get_message("r1")).content == "one"
    assert (await provider.get_message("r2")).content == "two"


@pytest.mark.asyncio
async def test_system_preamble_first_and_not_stored(store):
    provider = ScriptedProvider(
        store,
        [Completion(content="a", message_id="r1"), Completion(content="b", message_id="r2")],
        system="Be brief.",
    )
    first = await provider.chat("one")
    await provider.chat("two", conversation_id=first.conversation_id)

    sent = provider.sent[1]
    assert sent[0] == ChatMessage(content="Be brief.", role=ChatRole.SYSTEM)
    assert [m.content for m in sent[1:]] == ["one", "two"]
    assert provider.message_ids(first.conversation_id) == ["r1", "r2"]


@pytest.mark.asyncio
async def test_explicit_parent_branches(chain):
    provider = ScriptedProvider(chain, [Completion(content="ok", message_id="D")])
    resp = await provider.chat("branch", conversation_id="c1", parent_id="A")

    assert [m.content for m in provider.sent[0]] == ["first", "branch"]
    assert resp.parent_id == "A"
    assert (await provider.get_message("D")).parent_id == "A"


@pytest.mark.asyncio
async def test_missing_reply_id_is_generated(store):
    provider = ScriptedProvider(store, [Completion(content="x", message_id=None)])
    resp = await provider.chat("hello")
    assert resp.message_id
    assert provider.message_ids(resp.conversation_id) == [resp.message_id]


@pytest.mark.asyncio
async def test_reused_reply_id_gets_replaced(store):
    """A backend that repeats ids must not overwrite an earlier message."""
    provider = ScriptedProvider(store, [
        Completion(content="a", message_id="same"),
        Completion(content="b", message_id="same"),
    ])
    first = await provider.chat("one")
    second = await provider.chat("two", conversation_id=first.conversation_id)

    assert second.message_id != "same"
    assert (await provider.get_message("same")).content == "one"
    conv = await provider.get_history(first.conversation_id)
    assert [m.content for m in conv.messages] == ["one", "two"]


@pytest.mark.asyncio
async def test_store_replies_chains_assistant(store):
    provider = ScriptedProvider(
        store,
        [Completion(content="hi there", message_id="r1"), Completion(content="good", message_id="r2")],
        store_replies=True,
    )
    first = await provider.chat("hello")
    assert first.message_id == "r1"

    ids = provider.message_ids(first.conversation_id)
    assert len(ids) == 2 and ids[1] == "r1"
    reply = await provider.get_message("r1")
    assert reply.role is ChatRole.ASSISTANT
    assert reply.parent_id == ids[0]

    await provider.chat("how are you?", conversation_id=first.conversation_id)
    assert [m.content for m in provider.sent[1]] == ["hello", "hi there", "how are you?"]


class FailingReplyStore(MemoryStore):
    """Rejects writes to one message key."""

    def __init__(self, bad_key):
        super().__init__()
        self.bad_key = bad_key

    def set(self, key, value, namespace=None):
        if key == self.bad_key:
            raise StoreError(f"write refused: {key}")
        super().set(key, value, namespace)


@pytest.mark.asyncio
async def test_store_replies_failed_reply_write_leaves_thread_untouched():
    store = FailingReplyStore(message_key("r1"))
    provider = ScriptedProvider(store, [Completion(content="hi there", message_id="r1")], store_replies=True)
    with pytest.raises(StoreError):
        await provider.chat("hello", conversation_id="c1")
    assert provider.message_ids("c1") == []
    assert store.get(thread_key("c1"), NS) is None


@pytest.mark.asyncio
async def test_backend_failure_persists_nothing(store):
    provider = ScriptedProvider(store, [TransportError("down")])
    with pytest.raises(TransportError):
        await provider.chat("hello", conversation_id="c1")
    assert provider.message_ids("c1") == []
    assert len(store) == 0


@pytest.mark.asyncio
async def test_history_failure_skips_backend(store):
    provider = ScriptedProvider(store, [Completion(content="x", message_id="r1")])
    with pytest.raises(NotFoundError):
        await provider.chat("hello", conversation_id="c1", parent_id="ghost")
    assert provider.sent == []


@pytest.mark.asyncio
async def test_same_conversation_turns_are_serialized(store):
    """Concurrent turns on one conversation each see the other's write."""

    class SlowProvider(ScriptedProvider):
        async def complete(self, messages):
            await asyncio.sleep(0.01)
            return await super().complete(messages)

    provider = SlowProvider(store, [
        Completion(content="a", message_id="r1"),
        Completion(content="b", message_id="r2"),
    ])
    await asyncio.gather(
        provider.chat("one", conversation_id="c1"),
        provider.chat("two", conversation_id="c1"),
    )
    assert provider.message_ids("c1") == ["r1", "r2"]
    assert (await provider.get_message("r2")).parent_id == "r1"

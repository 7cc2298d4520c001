from datetime import UTC, datetime

import pytest

from src.chatrelay.core.lifecycle import MessageState
from src.chatrelay.domain.errors import MessageFinalizedError
from src.chatrelay.domain.model_catalog import DEFAULT_MODEL
from src.chatrelay.infrastructure import chat_store


@pytest.fixture
def store():
    return chat_store.InMemoryChatStore()


def test_create_conversation_defaults(store):
    conv = store.create_conversation()
    assert conv.title == "New Chat"
    assert conv.model == DEFAULT_MODEL
    assert store.get_conversation(conv.conversation_id) == conv
    assert store.get_conversation("missing") is None


def test_list_conversations_newest_first(store):
    first = store.create_conversation(title="one")
    second = store.create_conversation(title="two")
    ids = [c.conversation_id for c in store.list_conversations()]
    assert ids == [second.conversation_id, first.conversation_id]


def test_update_conversation_title_and_model(store):
    conv = store.create_conversation(title="old", model="a/b")
    updated = store.update_conversation(conv.conversation_id, model="c/d")
    assert updated.title == "old"
    assert updated.model == "c/d"
    updated = store.update_conversation(conv.conversation_id, title="new")
    assert updated.title == "new"
    with pytest.raises(KeyError):
        store.update_conversation("missing", title="x")


def test_delete_conversation_removes_messages(store):
    conv = store.create_conversation()
    msg = store.create_user_message(conv.conversation_id, "hi")
    store.delete_conversation(conv.conversation_id)
    assert store.get_conversation(conv.conversation_id) is None
    assert store.get_message(msg.message_id) is None
    assert store.list_messages(conv.conversation_id) == []
    with pytest.raises(KeyError):
        store.delete_conversation(conv.conversation_id)


def test_messages_require_existing_conversation(store):
    with pytest.raises(KeyError):
        store.create_user_message("missing", "hi")
    with pytest.raises(KeyError):
        store.create_assistant_message("missing", "m")


def test_user_and_placeholder_initial_state(store):
    cid = store.create_conversation().conversation_id
    user = store.create_user_message(cid, "Hello")
    placeholder = store.create_assistant_message(cid, "openai/gpt-4o")
    assert (user.role, user.is_streaming, user.state) == ("user", False, MessageState.CREATED)
    assert user.model is None
    assert placeholder.role == "assistant"
    assert placeholder.content == ""
    assert placeholder.model == "openai/gpt-4o"
    assert placeholder.is_streaming is True
    assert placeholder.state == MessageState.PENDING


def test_list_messages_in_insertion_order(store):
    cid = store.create_conversation().conversation_id
    for i in range(5):
        store.create_user_message(cid, f"m{i}")
    assert [m.content for m in store.list_messages(cid)] == [f"m{i}" for i in range(5)]


def test_streaming_latch_is_one_way(store):
    cid = store.create_conversation().conversation_id
    msg = store.create_assistant_message(cid, "m")
    assert store.update_streaming(msg.message_id, "par").state == MessageState.STREAMING
    final = store.finish_streaming(msg.message_id, "partial done")
    assert final.is_streaming is False
    assert final.state == MessageState.FINALIZED
    with pytest.raises(MessageFinalizedError):
        store.update_streaming(msg.message_id, "partial done more")
    with pytest.raises(MessageFinalizedError):
        store.finish_streaming(msg.message_id, "again")
    assert store.get_message(msg.message_id).content == "partial done"


def test_pending_placeholder_can_finalize_directly(store):
    cid = store.create_conversation().conversation_id
    msg = store.create_assistant_message(cid, "m")
    assert store.finish_streaming(msg.message_id, "Error: boom").state == MessageState.FINALIZED


def test_user_message_cannot_be_patched(store):
    cid = store.create_conversation().conversation_id
    user = store.create_user_message(cid, "hi")
    with pytest.raises(MessageFinalizedError):
        store.update_streaming(user.message_id, "hi there")


def test_streaming_patch_must_extend_content(store):
    cid = store.create_conversation().conversation_id
    msg = store.create_assistant_message(cid, "m")
    store.update_streaming(msg.message_id, "Hello")
    with pytest.raises(ValueError):
        store.update_streaming(msg.message_id, "Help")


def test_unknown_message_raises_key_error(store):
    with pytest.raises(KeyError):
        store.update_streaming("missing", "x")
    with pytest.raises(KeyError):
        store.finish_streaming("missing", "x")


def test_message_subscribers_see_every_write(store):
    cid = store.create_conversation().conversation_id
    snapshots = []
    with store.subscribe_messages(cid, snapshots.append):
        store.create_user_message(cid, "Hello")
        msg = store.create_assistant_message(cid, "m")
        store.update_streaming(msg.message_id, "Hi")
        store.finish_streaming(msg.message_id, "Hi there")
    store.create_user_message(cid, "after close")

    assert len(snapshots) == 4
    assert [m.content for m in snapshots[-1]] == ["Hello", "Hi there"]
    assert snapshots[-1][-1].is_streaming is False


def test_conversation_subscribers_see_list_changes(store):
    seen = []
    sub = store.subscribe_conversations(seen.append)
    conv = store.create_conversation(title="a")
    store.update_conversation(conv.conversation_id, title="b")
    store.delete_conversation(conv.conversation_id)
    sub.close()
    assert [[c.title for c in snap] for snap in seen] == [["a"], ["b"], []]


def test_get_chat_store_is_singleton(monkeypatch):
    monkeypatch.setattr(chat_store, "_store", None)
    first = chat_store.get_chat_store()
    assert chat_store.get_chat_store() is first
    assert isinstance(first, chat_store.InMemoryChatStore)


def test_ordering_holds_across_whole_second_timestamps(store, monkeypatch):
    ticks = iter(
        [
            datetime(2024, 1, 1, 12, 0, 0, 0, tzinfo=UTC),
            datetime(2024, 1, 1, 12, 0, 0, 0, tzinfo=UTC),
            datetime(2024, 1, 1, 12, 0, 0, 500, tzinfo=UTC),
            datetime(2024, 1, 1, 12, 0, 0, 900, tzinfo=UTC),
        ]
    )

    class FrozenDatetime:
        @staticmethod
        def now(tz=None):
            return next(ticks)

    monkeypatch.setattr(chat_store, "datetime", FrozenDatetime)
    first = store.create_conversation(title="first")
    user = store.create_user_message(first.conversation_id, "Hello")
    store.create_assistant_message(first.conversation_id, "m")
    second = store.create_conversation(title="second")

    assert user.created_at == "2024-01-01T12:00:00.000000Z"
    assert [m.role for m in store.list_messages(first.conversation_id)] == ["user", "assistant"]
    assert [c.title for c in store.list_conversations()] == ["second", "first"]

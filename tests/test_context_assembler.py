from src.chatrelay.infrastructure.chat_store import InMemoryChatStore
from src.chatrelay.services.context_assembler import assemble_context


def test_context_drops_streaming_messages_and_keeps_order():
    store = InMemoryChatStore()
    conv = store.create_conversation()
    cid = conv.conversation_id
    store.create_user_message(cid, "first")
    reply = store.create_assistant_message(cid, "m")
    store.finish_streaming(reply.message_id, "answer")
    store.create_user_message(cid, "second")
    store.create_assistant_message(cid, "m")

    assert assemble_context(store.list_messages(cid)) == [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "answer"},
        {"role": "user", "content": "second"},
    ]


def test_context_for_new_conversation_is_just_the_user_turn():
    store = InMemoryChatStore()
    cid = store.create_conversation().conversation_id
    store.create_user_message(cid, "Hello")
    store.create_assistant_message(cid, "m")
    assert assemble_context(store.list_messages(cid)) == [{"role": "user", "content": "Hello"}]


def test_context_of_empty_history_is_empty():
    assert assemble_context([]) == []

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from itertools import count
from threading import RLock
from typing import Callable, Dict, List, Optional, Protocol
import uuid

from ..core.lifecycle import MessageState, is_streaming_state, is_valid_transition
from ..domain.chat_models import ChatMessage, Conversation
from ..domain.errors import MessageFinalizedError
from ..domain.model_catalog import DEFAULT_MODEL
from ..observability.metrics import STORE_WRITES
from .events import CONVERSATIONS_TOPIC, Subscription, SubscriptionHub, messages_topic


class ChatStore(Protocol):
    def create_conversation(self, title: Optional[str] = None, model: Optional[str] = None) -> Conversation: ...

    def list_conversations(self) -> List[Conversation]: ...

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]: ...

    def update_conversation(self, conversation_id: str, title: Optional[str] = None, model: Optional[str] = None) -> Conversation: ...

    def delete_conversation(self, conversation_id: str) -> None: ...

    def create_user_message(self, conversation_id: str, content: str) -> ChatMessage: ...

    def create_assistant_message(self, conversation_id: str, model: str) -> ChatMessage: ...

    def update_streaming(self, message_id: str, content: str) -> ChatMessage: ...

    def finish_streaming(self, message_id: str, content: str) -> ChatMessage: ...

    def get_message(self, message_id: str) -> Optional[ChatMessage]: ...

    def list_messages(self, conversation_id: str) -> List[ChatMessage]: ...

    def subscribe_messages(self, conversation_id: str, on_update: Callable[[List[ChatMessage]], None]) -> Subscription: ...

    def subscribe_conversations(self, on_update: Callable[[List[Conversation]], None]) -> Subscription: ...


@dataclass
class _Conversation:
    conversation_id: str
    title: str
    model: str
    created_at: str
    seq: int


@dataclass
class _Message:
    message_id: str
    conversation_id: str
    role: str
    content: str
    model: Optional[str]
    is_streaming: bool
    state: MessageState
    created_at: str
    seq: int


class InMemoryChatStore:
    """Thread-safe in-memory store honouring the streaming latch.

    Every write publishes the affected conversation's ordered message list to
    its subscribers once the lock has been released.
    """

    def __init__(self, hub: Optional[SubscriptionHub] = None) -> None:
        self._conversations: Dict[str, _Conversation] = {}
        self._messages: Dict[str, _Message] = {}
        self._by_conversation: Dict[str, List[str]] = {}
        self._seq = count()
        self._lock = RLock()
        self._hub = hub or SubscriptionHub()

    @property
    def hub(self) -> SubscriptionHub:
        return self._hub

    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")

    def _conversation_model(self, conv: _Conversation) -> Conversation:
        data = dict(conv.__dict__)
        data.pop("seq")
        return Conversation(**data)

    def _message_model(self, message: _Message) -> ChatMessage:
        data = dict(message.__dict__)
        data.pop("seq")
        return ChatMessage(**data)

    def _ordered(self, conversation_id: str) -> List[_Message]:
        msgs = [self._messages[mid] for mid in self._by_conversation.get(conversation_id, [])]
        return sorted(msgs, key=lambda m: (m.created_at, m.seq))

    def _publish_messages(self, conversation_id: str) -> None:
        self._hub.publish(messages_topic(conversation_id), self.list_messages(conversation_id))

    def _publish_conversations(self) -> None:
        self._hub.publish(CONVERSATIONS_TOPIC, self.list_conversations())

    # Conversations

    def create_conversation(self, title: Optional[str] = None, model: Optional[str] = None) -> Conversation:
        with self._lock:
            conv = _Conversation(
                conversation_id=uuid.uuid4().hex,
                title=title or "New Chat",
                model=model or DEFAULT_MODEL,
                created_at=self._now_iso(),
                seq=next(self._seq),
            )
            self._conversations[conv.conversation_id] = conv
            self._by_conversation[conv.conversation_id] = []
            out = self._conversation_model(conv)
        self._publish_conversations()
        return out

    def list_conversations(self) -> List[Conversation]:
        with self._lock:
            # Newest first
            convs = sorted(self._conversations.values(), key=lambda c: (c.created_at, c.seq), reverse=True)
            return [self._conversation_model(c) for c in convs]

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            conv = self._conversations.get(conversation_id)
            if not conv:
                return None
            return self._conversation_model(conv)

    def update_conversation(
        self,
        conversation_id: str,
        title: Optional[str] = None,
        model: Optional[str] = None,
    ) -> Conversation:
        with self._lock:
            conv = self._conversations.get(conversation_id)
            if not conv:
                raise KeyError("Conversation not found")
            if title is not None:
                conv.title = title
            if model is not None:
                conv.model = model
            out = self._conversation_model(conv)
        self._publish_conversations()
        return out

    def delete_conversation(self, conversation_id: str) -> None:
        with self._lock:
            if conversation_id not in self._conversations:
                raise KeyError("Conversation not found")
            for mid in self._by_conversation.pop(conversation_id, []):
                self._messages.pop(mid, None)
            del self._conversations[conversation_id]
        self._publish_messages(conversation_id)
        self._publish_conversations()

    # Messages

    def _insert(self, conversation_id: str, role: str, content: str, model: Optional[str], state: MessageState) -> ChatMessage:
        with self._lock:
            if conversation_id not in self._conversations:
                raise KeyError("Conversation not found")
            msg = _Message(
                message_id=uuid.uuid4().hex,
                conversation_id=conversation_id,
                role=role,
                content=content,
                model=model,
                is_streaming=is_streaming_state(state),
                state=state,
                created_at=self._now_iso(),
                seq=next(self._seq),
            )
            self._messages[msg.message_id] = msg
            self._by_conversation[conversation_id].append(msg.message_id)
            out = self._message_model(msg)
        self._publish_messages(conversation_id)
        return out

    def create_user_message(self, conversation_id: str, content: str) -> ChatMessage:
        out = self._insert(conversation_id, "user", content, None, MessageState.CREATED)
        STORE_WRITES.labels(kind="user").inc()
        return out

    def create_assistant_message(self, conversation_id: str, model: str) -> ChatMessage:
        out = self._insert(conversation_id, "assistant", "", model, MessageState.PENDING)
        STORE_WRITES.labels(kind="placeholder").inc()
        return out

    def _advance(self, message_id: str, target: MessageState) -> _Message:
        msg = self._messages.get(message_id)
        if not msg:
            raise KeyError("Message not found")
        if not is_valid_transition(msg.state, target):
            raise MessageFinalizedError(message_id)
        return msg

    def update_streaming(self, message_id: str, content: str) -> ChatMessage:
        with self._lock:
            msg = self._advance(message_id, MessageState.STREAMING)
            if not content.startswith(msg.content):
                raise ValueError("Streaming content must extend the persisted text")
            msg.content = content
            msg.state = MessageState.STREAMING
            out = self._message_model(msg)
        STORE_WRITES.labels(kind="update").inc()
        self._publish_messages(out.conversation_id)
        return out

    def finish_streaming(self, message_id: str, content: str) -> ChatMessage:
        with self._lock:
            msg = self._advance(message_id, MessageState.FINALIZED)
            msg.content = content
            msg.is_streaming = False
            msg.state = MessageState.FINALIZED
            out = self._message_model(msg)
        STORE_WRITES.labels(kind="finish").inc()
        self._publish_messages(out.conversation_id)
        return out

    def get_message(self, message_id: str) -> Optional[ChatMessage]:
        with self._lock:
            msg = self._messages.get(message_id)
            if not msg:
                return None
            return self._message_model(msg)

    def list_messages(self, conversation_id: str) -> List[ChatMessage]:
        with self._lock:
            return [self._message_model(m) for m in self._ordered(conversation_id)]

    # Subscriptions

    def subscribe_messages(
        self,
        conversation_id: str,
        on_update: Callable[[List[ChatMessage]], None],
    ) -> Subscription:
        return self._hub.subscribe(messages_topic(conversation_id), on_update)

    def subscribe_conversations(self, on_update: Callable[[List[Conversation]], None]) -> Subscription:
        return self._hub.subscribe(CONVERSATIONS_TOPIC, on_update)


_store: ChatStore | None = None


def get_chat_store() -> ChatStore:
    global _store
    if _store is None:
        _store = InMemoryChatStore()
    return _store

from __future__ import annotations

import logging
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

LOG = logging.getLogger("chatrelay.events")

Callback = Callable[[Any], None]


class Subscription:
    """Handle returned by ``SubscriptionHub.subscribe``.

    ``close()`` is idempotent. Use the handle as a context manager to tie the
    callback's lifetime to a block.
    """

    def __init__(self, hub: "SubscriptionHub", topic: str, callback: Callback) -> None:
        self._hub = hub
        self.topic = topic
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def close(self) -> None:
        if not self._active:
            return
        self._active = False
        self._hub._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SubscriptionHub:
    """In-process topic fan-out used by stores to push updates to front ends."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._lock = RLock()

    def subscribe(self, topic: str, callback: Callback) -> Subscription:
        sub = Subscription(self, topic, callback)
        with self._lock:
            self._subscribers.setdefault(topic, []).append(sub)
        return sub

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, []))

    def publish(self, topic: str, payload: Any) -> int:
        with self._lock:
            targets = list(self._subscribers.get(topic, []))
        delivered = 0
        for sub in targets:
            if not sub.active:
                continue
            try:
                sub.callback(payload)
                delivered += 1
            except Exception:
                # A broken front end must never fail the write that triggered it
                LOG.exception("subscriber_callback_failed", extra={"topic": topic})
        return delivered

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.topic)
            if not subs:
                return
            try:
                subs.remove(sub)
            except ValueError:
                return
            if not subs:
                del self._subscribers[sub.topic]


class SubscriptionSlot:
    """Holds at most one live subscription; replacing it releases the previous one."""

    def __init__(self) -> None:
        self._current: Optional[Subscription] = None

    @property
    def current(self) -> Optional[Subscription]:
        return self._current

    def replace(self, subscription: Subscription) -> Subscription:
        previous = self._current
        self._current = subscription
        if previous is not None and previous is not subscription:
            previous.close()
        return subscription

    def close(self) -> None:
        if self._current is not None:
            self._current.close()
            self._current = None

    def __enter__(self) -> "SubscriptionSlot":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def messages_topic(conversation_id: str) -> str:
    return f"messages:{conversation_id}"


CONVERSATIONS_TOPIC = "conversations"

from __future__ import annotations

import time
from typing import Callable, List, Optional

from ..infrastructure.chat_store import ChatStore

THROTTLE_INTERVAL_S = 0.1


class ThrottledPersister:
    """Accumulate deltas and patch the placeholder at a bounded rate.

    Every write carries the full buffer, so a skipped write only delays what
    subscribers see. The terminal write belongs to the orchestrator's
    finalize call and is never throttled.
    """

    def __init__(
        self,
        store: ChatStore,
        message_id: str,
        *,
        interval: float = THROTTLE_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._message_id = message_id
        self._interval = interval
        self._clock = clock
        self._parts: List[str] = []
        self._last_write: Optional[float] = None

    @property
    def content(self) -> str:
        return "".join(self._parts)

    def add(self, delta: str) -> bool:
        """Append ``delta``; return True when the buffer was written through."""

        self._parts.append(delta)
        now = self._clock()
        if self._last_write is not None and now - self._last_write < self._interval:
            return False
        self._store.update_streaming(self._message_id, self.content)
        self._last_write = now
        return True

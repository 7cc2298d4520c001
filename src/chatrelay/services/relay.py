"""Relay orchestrator: one user turn in, one finalized assistant message out.

A turn writes the user message, creates a streaming placeholder, assembles
the prompt from the conversation history, streams the gateway reply into the
placeholder through the throttled persister and finally closes the
placeholder's streaming latch with exactly one finalize write.

Failures never escape as exceptions: the finalize write carries either the
full reply or a diagnostic, and partial text is discarded when the stream
breaks. Turns on the same conversation run one at a time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator, Dict, List, Optional, Tuple

from ..core.config import RelaySettings
from ..domain.chat_models import ChatMessage
from ..domain.errors import ConfigError, RelayCancelled, StreamError, TransportError
from ..domain.model_catalog import get_model_name
from ..infrastructure.chat_store import ChatStore, get_chat_store
from ..observability.metrics import RELAY_DURATION, RELAY_OUTCOMES
from .context_assembler import assemble_context
from .gateway import GatewayClient
from .persister import ThrottledPersister
from .stream_decoder import iter_deltas

LOG = logging.getLogger("chatrelay.relay")

COMPLETED = "completed"
DISCARDED = "discarded"


class ConversationLocks:
    """Per-conversation mutual exclusion for relay turns.

    Locks are created on demand and dropped once nobody holds or waits on
    them, so the table only grows with conversations that are busy.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


async def _pull(deltas: AsyncIterator[str]) -> Optional[str]:
    return await anext(deltas, None)


async def _next_delta(deltas: AsyncIterator[str], cancel: Optional[asyncio.Event]) -> Optional[str]:
    """Next delta, or ``None`` at end of stream.

    While a cancel event is armed the read races it, so a stalled gateway
    cannot hold the turn open after cancellation.
    """

    if cancel is None or cancel.is_set():
        return await _pull(deltas)
    step = asyncio.create_task(_pull(deltas))
    waiter = asyncio.create_task(cancel.wait())
    try:
        await asyncio.wait({step, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not step.done():
            step.cancel()
            await asyncio.gather(step, return_exceptions=True)
    if step.cancelled():
        raise RelayCancelled()
    return step.result()


class RelayOrchestrator:
    def __init__(
        self,
        store: ChatStore,
        gateway: GatewayClient,
        *,
        throttle_interval: Optional[float] = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._throttle_interval = (
            throttle_interval if throttle_interval is not None else gateway.settings.throttle_interval_s
        )
        self.locks = ConversationLocks()

    async def relay(
        self,
        conversation_id: str,
        content: str,
        model: str,
        cancel: Optional[asyncio.Event] = None,
    ) -> ChatMessage:
        """Run one turn and return the finalized assistant message.

        Raises ``KeyError`` when the conversation does not exist or is deleted
        before the turn finalizes. Every gateway-side failure ends up in the
        returned message's content.
        """

        async with self.locks.hold(conversation_id):
            return await self._relay_locked(conversation_id, content, model, cancel)

    async def _relay_locked(
        self,
        conversation_id: str,
        content: str,
        model: str,
        cancel: Optional[asyncio.Event],
    ) -> ChatMessage:
        started = time.perf_counter()
        self._store.create_user_message(conversation_id, content)
        placeholder = self._store.create_assistant_message(conversation_id, model)
        prompt = assemble_context(self._store.list_messages(conversation_id))
        LOG.info(
            "relay_started",
            extra={
                "conversation_id": conversation_id,
                "message_id": placeholder.message_id,
                "model": model,
                "model_name": get_model_name(model),
            },
        )
        try:
            outcome, text = await self._generate(placeholder.message_id, model, prompt, cancel)
        except asyncio.CancelledError:
            with suppress(KeyError):
                self._finalize(placeholder, RelayCancelled().diagnostic(), RelayCancelled.outcome, started)
            raise
        return self._finalize(placeholder, text, outcome, started)

    def _finalize(self, placeholder: ChatMessage, text: str, outcome: str, started: float) -> ChatMessage:
        try:
            final = self._store.finish_streaming(placeholder.message_id, text)
        except KeyError:
            # Conversation deleted mid-turn: nothing is left to finalize
            self._record(placeholder, DISCARDED, 0, started)
            raise
        self._record(placeholder, outcome, len(text), started)
        return final

    def _record(self, placeholder: ChatMessage, outcome: str, chars: int, started: float) -> None:
        elapsed = time.perf_counter() - started
        RELAY_OUTCOMES.labels(outcome=outcome).inc()
        RELAY_DURATION.observe(elapsed)
        log = LOG.info if outcome == COMPLETED else LOG.warning
        log(
            "relay_finished",
            extra={
                "conversation_id": placeholder.conversation_id,
                "message_id": placeholder.message_id,
                "outcome": outcome,
                "chars": chars,
                "elapsed_s": round(elapsed, 3),
            },
        )

    async def _generate(
        self,
        message_id: str,
        model: str,
        prompt: List[Dict[str, str]],
        cancel: Optional[asyncio.Event],
    ) -> Tuple[str, str]:
        """Return ``(outcome, final_content)`` for the placeholder."""

        if not self._gateway.has_credential:
            err = ConfigError(self._gateway.settings.api_key_env)
            return err.outcome, err.diagnostic()

        persister = ThrottledPersister(self._store, message_id, interval=self._throttle_interval)
        try:
            async with self._gateway.stream_chat(model, prompt) as resp:
                if not resp.is_success:
                    await resp.aread()
                    err = TransportError(resp.status_code, resp.text, self._gateway.settings.gateway_name)
                    return err.outcome, err.diagnostic()
                deltas = iter_deltas(resp.aiter_bytes())
                try:
                    while True:
                        delta = await _next_delta(deltas, cancel)
                        if delta is None:
                            break
                        persister.add(delta)
                        if cancel is not None and cancel.is_set():
                            raise RelayCancelled()
                finally:
                    await deltas.aclose()
        except RelayCancelled as exc:
            return exc.outcome, exc.diagnostic()
        except Exception as exc:
            # Partial text is discarded: the diagnostic alone is the final content
            err = StreamError.from_exception(exc)
            return err.outcome, err.diagnostic()
        return COMPLETED, persister.content


_relay: RelayOrchestrator | None = None


def get_relay() -> RelayOrchestrator:
    global _relay
    if _relay is None:
        settings = RelaySettings.from_env()
        _relay = RelayOrchestrator(get_chat_store(), GatewayClient(settings))
    return _relay

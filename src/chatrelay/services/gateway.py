from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..core.config import RelaySettings

LOG = logging.getLogger("chatrelay.gateway")


class GatewayClient:
    """Opens streaming chat-completion requests against an OpenAI-compatible gateway.

    A fresh ``httpx.AsyncClient`` is created per request so the client is safe
    to share across event loops; pass ``transport`` to route requests through
    a custom (or mock) transport.
    """

    def __init__(self, settings: RelaySettings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self._transport = transport

    @property
    def has_credential(self) -> bool:
        return self.settings.has_credential

    def build_payload(self, model: str, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        return {
            "model": model,
            "messages": messages,
            "stream": True,
            "max_tokens": self.settings.max_tokens,
        }

    def build_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.settings.read_timeout_s, connect=self.settings.connect_timeout_s)

    @asynccontextmanager
    async def stream_chat(self, model: str, messages: List[Dict[str, str]]) -> AsyncIterator[httpx.Response]:
        """Yield the open streaming response; the body is read by the caller."""

        LOG.debug(
            "gateway_request",
            extra={"url": self.settings.completions_url, "model": model, "messages": len(messages)},
        )
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout(), trust_env=False) as client:
            async with client.stream(
                "POST",
                self.settings.completions_url,
                json=self.build_payload(model, messages),
                headers=self.build_headers(),
            ) as resp:
                yield resp

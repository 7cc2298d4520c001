from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Iterable, List, Optional

import httpx

from src.chatrelay.core.config import RelaySettings
from src.chatrelay.services.gateway import GatewayClient


def settings(api_key: Optional[str] = "test-key", **overrides: Any) -> RelaySettings:
    return RelaySettings(api_key=api_key, base_url="https://gateway.test/api/v1", **overrides)


def data_line(delta: str) -> str:
    return "data: " + json.dumps({"choices": [{"index": 0, "delta": {"content": delta}}]}, ensure_ascii=False) + "\n\n"


def sse_body(deltas: Iterable[str], done: bool = True) -> bytes:
    body = "".join(data_line(d) for d in deltas)
    if done:
        body += "data: [DONE]\n\n"
    return body.encode("utf-8")


async def _emit(chunks: List[bytes], fail_with: Optional[BaseException], pause: float):
    for chunk in chunks:
        await asyncio.sleep(pause)
        yield chunk
    if fail_with is not None:
        raise fail_with


def gateway_transport(
    chunks: Optional[List[bytes]] = None,
    *,
    status: int = 200,
    body: bytes = b"",
    fail_with: Optional[BaseException] = None,
    pause: float = 0,
    requests: Optional[List[Dict[str, Any]]] = None,
) -> httpx.MockTransport:
    """Mock gateway: streams ``chunks`` on 200, otherwise answers ``status`` with ``body``.

    Every request's headers and JSON payload are appended to ``requests``.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(
                {
                    "url": str(request.url),
                    "headers": dict(request.headers),
                    "json": json.loads(request.content),
                }
            )
        if status != 200:
            return httpx.Response(status, content=body)
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=_emit(list(chunks or []), fail_with, pause),
        )

    return httpx.MockTransport(handler)


def gateway(transport: httpx.AsyncBaseTransport, api_key: Optional[str] = "test-key") -> GatewayClient:
    return GatewayClient(settings(api_key=api_key), transport=transport)


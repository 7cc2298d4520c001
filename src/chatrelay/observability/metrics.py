from __future__ import annotations

"""Prometheus metrics for the chatrelay API and relay pipeline.

Adds an HTTP middleware that records request latency per method/path/status,
plus relay-level counters the orchestrator and store update directly.
"""

import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "chatrelay_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

RELAY_OUTCOMES = Counter(
    "chatrelay_relay_outcomes",
    "Finalized relay turns by outcome",
    labelnames=("outcome",),
)

# Relays span a whole generation, so buckets reach well past web latencies
RELAY_DURATION = Histogram(
    "chatrelay_relay_duration_seconds",
    "Wall time from user message write to finalize write",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

STORE_WRITES = Counter(
    "chatrelay_store_writes",
    "Message store writes by kind",
    labelnames=("kind",),
)


def sanitize_path(path: str) -> str:
    """Reduce high-cardinality paths (e.g., /chat/conversations/{id}) to a coarse label.

    Keeps the first two static segments only.
    """
    if not path:
        return "/"
    segs = [s for s in path.split("?")[0].split("/") if s]
    if not segs:
        return "/"
    return "/" + "/".join(segs[:2])


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        # Avoid observing the metrics endpoint itself
        if request.url.path.endswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        REQUEST_LATENCY.labels(
            method=request.method,
            path=sanitize_path(request.url.path),
            status=str(response.status_code),
        ).observe(elapsed)
        return response

    return middleware

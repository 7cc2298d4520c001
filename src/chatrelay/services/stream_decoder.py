"""Decoder for the gateway's line-framed streaming response.

The body is a ``text/event-stream`` style sequence of lines. Only ``data:``
lines matter: ``data: [DONE]`` ends the stream and every other data line
carries a JSON chunk whose ``choices[0].delta.content`` is the next piece of
reply text.

Transport chunk boundaries do not line up with line boundaries, so the
decoder keeps any unterminated trailing line and completes it with the next
chunk. Bytes are decoded incrementally so a UTF-8 sequence split across two
chunks is reassembled as well.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Iterable, List

from ..domain.errors import DecodeError

LOG = logging.getLogger("chatrelay.gateway")

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


def parse_data(data: str) -> str:
    """Extract the delta text from one data payload.

    Returns an empty string for well-formed chunks without text (role-only
    deltas, finish markers). Raises ``DecodeError`` when the payload is not
    JSON or not shaped like a completion chunk.
    """

    try:
        parsed: Any = json.loads(data)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"Malformed JSON payload: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise DecodeError("Payload is not an object")
    choices = parsed.get("choices") or []
    if not isinstance(choices, list):
        raise DecodeError("choices is not a list")
    if not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        raise DecodeError("choice is not an object")
    delta = first.get("delta") or {}
    if not isinstance(delta, dict):
        raise DecodeError("delta is not an object")
    content = delta.get("content")
    return content if isinstance(content, str) else ""


class StreamDecoder:
    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self.done = False
        self.skipped = 0

    def feed(self, chunk: bytes) -> List[str]:
        """Consume one transport chunk and return the deltas it completes."""

        if self.done:
            return []
        text = self._pending + self._decoder.decode(chunk)
        lines = text.split("\n")
        self._pending = lines.pop()
        return self._consume(lines)

    def close(self) -> List[str]:
        """Flush the trailing line left when the body ends without a newline."""

        if self.done:
            return []
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return self._consume([tail]) if tail else []

    def _consume(self, lines: Iterable[str]) -> List[str]:
        deltas: List[str] = []
        for raw in lines:
            line = raw.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue
            data = line[len(DATA_PREFIX):].strip()
            if data == DONE_SENTINEL:
                self.done = True
                break
            try:
                delta = parse_data(data)
            except DecodeError as exc:
                self.skipped += 1
                LOG.debug("stream_decoder_skipped_line", extra={"err": str(exc)})
                continue
            if delta:
                deltas.append(delta)
        return deltas


async def iter_deltas(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Yield text deltas from an async byte stream until ``[DONE]`` or EOF."""

    decoder = StreamDecoder()
    async for chunk in chunks:
        for delta in decoder.feed(chunk):
            yield delta
        if decoder.done:
            return
    for delta in decoder.close():
        yield delta

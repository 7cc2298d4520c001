from __future__ import annotations

from typing import Dict, Iterable, List

from ..domain.chat_models import ChatMessage


def assemble_context(messages: Iterable[ChatMessage]) -> List[Dict[str, str]]:
    """Map a conversation's ordered messages to gateway prompt history.

    Messages still streaming (including the placeholder created for the turn
    being generated) are never echoed back to the gateway.
    """

    return [
        {"role": m.role, "content": m.content}
        for m in messages
        if not m.is_streaming
    ]

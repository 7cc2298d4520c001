from __future__ import annotations

from enum import Enum
from typing import Dict, List


class MessageState(str, Enum):
    CREATED = "created"
    PENDING = "pending"
    STREAMING = "streaming"
    FINALIZED = "finalized"


# Assistant message transitions. CREATED and FINALIZED are terminal.
STATE_TRANSITIONS: Dict[MessageState, List[MessageState]] = {
    MessageState.CREATED: [],
    MessageState.PENDING: [MessageState.STREAMING, MessageState.FINALIZED],
    MessageState.STREAMING: [MessageState.STREAMING, MessageState.FINALIZED],
    MessageState.FINALIZED: [],
}


def is_valid_transition(current: MessageState, target: MessageState) -> bool:
    return target in STATE_TRANSITIONS.get(current, [])


def is_terminal(state: MessageState) -> bool:
    return not STATE_TRANSITIONS.get(state)


def is_streaming_state(state: MessageState) -> bool:
    return state in (MessageState.PENDING, MessageState.STREAMING)

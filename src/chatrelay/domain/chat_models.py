from __future__ import annotations

from typing import List, Optional, Literal
from pydantic import BaseModel, Field

from ..core.lifecycle import MessageState


Role = Literal["user", "assistant"]


class ConversationCreate(BaseModel):
    title: Optional[str] = None
    model: Optional[str] = None


class ConversationUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    model: Optional[str] = Field(default=None, min_length=1)


class Conversation(BaseModel):
    conversation_id: str
    title: str
    model: str
    created_at: str


class ChatMessage(BaseModel):
    message_id: str
    conversation_id: str
    role: Role
    content: str
    model: Optional[str] = None
    is_streaming: bool = False
    state: MessageState
    created_at: str


class MessageSend(BaseModel):
    content: str = Field(min_length=1)
    model: Optional[str] = None


class ConversationWithMessages(BaseModel):
    conversation: Conversation
    messages: List[ChatMessage]


class ModelOption(BaseModel):
    id: str
    name: str
    provider: str

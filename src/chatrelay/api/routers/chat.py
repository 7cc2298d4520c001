from __future__ import annotations

from typing import List
from fastapi import APIRouter, HTTPException, Response, status

from ...domain.chat_models import (
    ChatMessage,
    Conversation,
    ConversationCreate,
    ConversationUpdate,
    ConversationWithMessages,
    MessageSend,
    ModelOption,
)
from ...domain.model_catalog import MODELS
from ...infrastructure.chat_store import get_chat_store
from ...services.relay import get_relay

TITLE_MAX_CHARS = 30


def _title_from_content(content: str) -> str:
    text = content.strip()
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + "..."
    return text or "New Chat"


def _require_conversation(conversation_id: str) -> Conversation:
    conv = get_chat_store().get_conversation(conversation_id)
    if not conv:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conv


router = APIRouter(prefix="/chat", tags=["chat"])


@router.get("/models", response_model=List[ModelOption])
def list_models() -> List[ModelOption]:
    return MODELS


@router.post("/conversations", response_model=Conversation, status_code=status.HTTP_201_CREATED)
def create_conversation(req: ConversationCreate) -> Conversation:
    return get_chat_store().create_conversation(title=req.title, model=req.model)


@router.get("/conversations", response_model=List[Conversation])
def list_conversations() -> List[Conversation]:
    return get_chat_store().list_conversations()


@router.get("/conversations/{conversation_id}", response_model=ConversationWithMessages)
def get_conversation(conversation_id: str) -> ConversationWithMessages:
    conv = _require_conversation(conversation_id)
    return ConversationWithMessages(conversation=conv, messages=get_chat_store().list_messages(conversation_id))


@router.patch("/conversations/{conversation_id}", response_model=Conversation)
def update_conversation(conversation_id: str, req: ConversationUpdate) -> Conversation:
    try:
        return get_chat_store().update_conversation(conversation_id, title=req.title, model=req.model)
    except KeyError:
        raise HTTPException(status_code=404, detail="Conversation not found")


@router.delete("/conversations/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_conversation(conversation_id: str) -> Response:
    try:
        get_chat_store().delete_conversation(conversation_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/conversations/{conversation_id}/messages", response_model=List[ChatMessage])
def list_messages(conversation_id: str) -> List[ChatMessage]:
    _require_conversation(conversation_id)
    return get_chat_store().list_messages(conversation_id)


@router.post("/conversations/{conversation_id}/messages", response_model=ChatMessage)
async def post_message(conversation_id: str, msg: MessageSend) -> ChatMessage:
    conv = _require_conversation(conversation_id)
    # The finalized assistant message is the only result: errors arrive as its content
    try:
        return await get_relay().relay(conversation_id, msg.content, msg.model or conv.model)
    except KeyError:
        raise HTTPException(status_code=404, detail="Conversation not found")


@router.post("/send", response_model=ConversationWithMessages, status_code=status.HTTP_201_CREATED)
async def send_new(msg: MessageSend) -> ConversationWithMessages:
    store = get_chat_store()
    conv = store.create_conversation(title=_title_from_content(msg.content), model=msg.model)
    try:
        await get_relay().relay(conv.conversation_id, msg.content, conv.model)
    except KeyError:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return ConversationWithMessages(conversation=conv, messages=store.list_messages(conv.conversation_id))

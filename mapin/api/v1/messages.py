from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from mapin.api.deps import get_conversation_repository, get_message_repository
from mapin.core.errors import success_response
from mapin.repositories.conversation_repository import ConversationRepository
from mapin.repositories.message_repository import MessageRepository
from mapin.schemas.messages import SendMessageRequest

router = APIRouter(prefix="/conversations/{conversation_id}/messages", tags=["messages"])


@router.get("")
def list_messages(
    conversation_id: str,
    cursor: str | None = Query(default=None, max_length=128),
    conversations: ConversationRepository = Depends(get_conversation_repository),
    messages: MessageRepository = Depends(get_message_repository),
):
    conversations.require_participant(conversation_id)
    if cursor:
        page = messages.load_more_messages(conversation_id, cursor)
    else:
        page = messages.latest_messages(conversation_id)
    return success_response(page.model_dump(mode="json"))


@router.post("")
def send_message(
    conversation_id: str,
    payload: SendMessageRequest,
    conversations: ConversationRepository = Depends(get_conversation_repository),
    messages: MessageRepository = Depends(get_message_repository),
):
    conversations.require_participant(conversation_id)
    message = messages.send_message(conversation_id, payload.text)
    if message is None:
        return success_response(None)
    return success_response(message.model_dump(mode="json"), status_code=status.HTTP_201_CREATED)

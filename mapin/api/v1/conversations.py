from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status

from mapin.api.deps import get_conversation_repository, get_current_user
from mapin.core.errors import conversation_not_found_error, success_response
from mapin.models import User
from mapin.repositories.conversation_repository import ConversationRepository
from mapin.schemas.conversations import (
    ConversationCreateRequest,
    JoinConversationRequest,
    NewUidRequest,
    ParticipantProfile,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("")
def list_conversations(repository: ConversationRepository = Depends(get_conversation_repository)):
    logger.info("List conversations endpoint hit user_id=%s", repository.current_user_id)
    conversations = repository.list_conversations_for_current_user()
    return success_response([conversation.model_dump(mode="json") for conversation in conversations])


@router.post("/uid")
def new_uid(
    payload: NewUidRequest,
    repository: ConversationRepository = Depends(get_conversation_repository),
):
    return success_response({"id": repository.get_new_uid(payload.participant_ids)})


@router.post("")
def add_conversation(
    payload: ConversationCreateRequest,
    repository: ConversationRepository = Depends(get_conversation_repository),
):
    logger.info(
        "Add conversation endpoint hit user_id=%s participants=%s",
        repository.current_user_id,
        len(payload.participants),
    )
    conversation, created = repository.add_conversation(payload)
    status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return success_response(conversation.model_dump(mode="json"), status_code=status_code)


@router.get("/{conversation_id}/exists")
def conversation_exists(
    conversation_id: str,
    repository: ConversationRepository = Depends(get_conversation_repository),
):
    return success_response({"exists": repository.conversation_exists(conversation_id)})


@router.get("/{conversation_id}")
def get_conversation(
    conversation_id: str,
    repository: ConversationRepository = Depends(get_conversation_repository),
):
    conversation = repository.get_conversation_by_id(conversation_id)
    if conversation is None:
        raise conversation_not_found_error()
    return success_response(conversation.model_dump(mode="json"))


@router.post("/{conversation_id}/join")
def join_conversation(
    conversation_id: str,
    payload: JoinConversationRequest,
    current_user: User = Depends(get_current_user),
    repository: ConversationRepository = Depends(get_conversation_repository),
):
    profile = None
    if payload.name or payload.profile_picture_url:
        profile = ParticipantProfile(
            user_id=current_user.id,
            name=payload.name,
            profile_picture_url=payload.profile_picture_url,
        )
    conversation = repository.join_conversation(conversation_id, current_user.id, profile)
    return success_response(conversation.model_dump(mode="json"))


@router.post("/{conversation_id}/leave")
def leave_conversation(
    conversation_id: str,
    repository: ConversationRepository = Depends(get_conversation_repository),
):
    logger.info("Leave conversation endpoint hit user_id=%s conversation_id=%s", repository.current_user_id, conversation_id)
    conversation = repository.leave_conversation(conversation_id)
    return success_response(conversation.model_dump(mode="json"))

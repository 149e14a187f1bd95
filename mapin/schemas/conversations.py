from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

UID_MAX_LENGTH = 64


class ParticipantProfile(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str = Field(min_length=1, max_length=128)
    name: str = Field(default="", max_length=128)
    profile_picture_url: str | None = Field(default=None, max_length=512)


class ConversationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str | None
    profile_picture_url: str | None
    participant_ids: list[str]
    participants: list[ParticipantProfile]
    last_message: str | None
    last_message_timestamp: int


class ConversationCreateRequest(BaseModel):
    id: str | None = Field(default=None, min_length=1, max_length=UID_MAX_LENGTH)
    name: str | None = Field(default=None, max_length=128)
    profile_picture_url: str | None = Field(default=None, max_length=512)
    participants: list[ParticipantProfile] = Field(default_factory=list, max_length=256)


class NewUidRequest(BaseModel):
    participant_ids: list[str] = Field(default_factory=list, max_length=256)


class JoinConversationRequest(BaseModel):
    name: str = Field(default="", max_length=128)
    profile_picture_url: str | None = Field(default=None, max_length=512)

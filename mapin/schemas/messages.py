from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SendMessageRequest(BaseModel):
    text: str = Field(max_length=2000)


class MessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    sender_id: str
    text: str
    timestamp: int
    is_me: bool


class MessagePage(BaseModel):
    messages: list[MessageRead]
    cursor: str | None

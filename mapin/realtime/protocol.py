from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

CONVERSATIONS_SUBSCRIPTION = "conversations"


def messages_subscription(conversation_id: str) -> str:
    return f"messages:{conversation_id}"


@dataclass(slots=True)
class ProtocolError(Exception):
    code: str
    message: str


class ObserveConversationsCommand(BaseModel):
    model_config = ConfigDict(extra="forbid")

    op: Literal["observe_conversations"]


class ObserveMessagesCommand(BaseModel):
    model_config = ConfigDict(extra="forbid")

    op: Literal["observe_messages"]
    conversation_id: str = Field(min_length=1, max_length=64)


class UnobserveCommand(BaseModel):
    model_config = ConfigDict(extra="forbid")

    op: Literal["unobserve"]
    subscription: str = Field(min_length=1, max_length=128)


class PingCommand(BaseModel):
    model_config = ConfigDict(extra="forbid")

    op: Literal["ping"]
    ts: int | None = None


Command = ObserveConversationsCommand | ObserveMessagesCommand | UnobserveCommand | PingCommand

_COMMANDS: dict[str, type[BaseModel]] = {
    "observe_conversations": ObserveConversationsCommand,
    "observe_messages": ObserveMessagesCommand,
    "unobserve": UnobserveCommand,
    "ping": PingCommand,
}


def parse_command(raw_text: str, *, max_bytes: int) -> Command:
    if len(raw_text.encode("utf-8")) > max_bytes:
        raise ProtocolError(code="INVALID_COMMAND", message="Frame is too large")

    try:
        decoded = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(code="INVALID_COMMAND", message="Invalid JSON payload") from exc

    if not isinstance(decoded, dict):
        raise ProtocolError(code="INVALID_COMMAND", message="Command payload must be an object")

    op = decoded.get("op")
    model = _COMMANDS.get(op) if isinstance(op, str) else None
    if model is None:
        raise ProtocolError(code="INVALID_COMMAND", message="Unsupported command")

    try:
        return model.model_validate(decoded)
    except ValidationError as exc:
        raise ProtocolError(code="INVALID_COMMAND", message=str(exc.errors()[0]["msg"])) from exc


def welcome_frame(*, connection_id: str, user_id: str, heartbeat_sec: int) -> dict[str, object]:
    return {
        "type": "connection.welcome",
        "connection_id": connection_id,
        "user_id": user_id,
        "server_time": datetime.now(UTC).isoformat(),
        "heartbeat_sec": heartbeat_sec,
        "protocol_version": 1,
    }


def ack_frame(*, op: str, details: dict[str, object] | None = None) -> dict[str, object]:
    payload: dict[str, object] = {"type": "ack", "op": op, "ok": True}
    if details:
        payload["details"] = details
    return payload


def error_frame(*, code: str, message: str, details: dict[str, object] | None = None) -> dict[str, object]:
    error_payload: dict[str, object] = {"code": code, "message": message}
    if details:
        error_payload["details"] = details
    return {"type": "error", "error": error_payload}


def pong_frame(*, ts: int | None = None) -> dict[str, object]:
    payload: dict[str, object] = {"type": "pong"}
    if ts is not None:
        payload["ts"] = ts
    return payload


def conversations_snapshot_frame(*, conversations: list[dict[str, object]]) -> dict[str, object]:
    return {
        "type": "conversations.snapshot",
        "subscription": CONVERSATIONS_SUBSCRIPTION,
        "conversations": conversations,
    }


def messages_snapshot_frame(
    *,
    conversation_id: str,
    messages: list[dict[str, object]],
    cursor: str | None,
) -> dict[str, object]:
    return {
        "type": "messages.snapshot",
        "subscription": messages_subscription(conversation_id),
        "conversation_id": conversation_id,
        "messages": messages,
        "cursor": cursor,
    }

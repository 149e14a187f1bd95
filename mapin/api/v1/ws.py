from __future__ import annotations

import asyncio
from collections import deque
import logging
from time import monotonic
from typing import Callable, TypeVar

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from mapin.core.errors import APIError
from mapin.core.security import subject_from_token
from mapin.core.settings import get_settings
from mapin.db.session import get_session_factory
from mapin.models import User
from mapin.realtime.connection_manager import ConnectionManager
from mapin.realtime.feed import ChangeFeed
from mapin.realtime.live_query import LiveQuery
from mapin.realtime.protocol import (
    CONVERSATIONS_SUBSCRIPTION,
    ObserveConversationsCommand,
    ObserveMessagesCommand,
    PingCommand,
    ProtocolError,
    UnobserveCommand,
    ack_frame,
    conversations_snapshot_frame,
    error_frame,
    messages_snapshot_frame,
    messages_subscription,
    parse_command,
    pong_frame,
    welcome_frame,
)
from mapin.repositories.conversation_repository import ConversationRepository
from mapin.repositories.message_repository import MessageRepository
from mapin.schemas.conversations import ConversationRead
from mapin.schemas.messages import MessagePage

logger = logging.getLogger(__name__)
router = APIRouter(tags=["ws"])

T = TypeVar("T")


def _extract_access_token(websocket: WebSocket) -> str | None:
    auth_header = websocket.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return websocket.query_params.get("access_token")


def _command_allowed(events: deque[float], *, now: float, window_seconds: int, max_commands: int) -> bool:
    cutoff = now - window_seconds
    while events and events[0] <= cutoff:
        events.popleft()
    if len(events) >= max_commands:
        return False
    events.append(now)
    return True


def _render_conversations(conversations: list[ConversationRead]) -> dict[str, object]:
    return conversations_snapshot_frame(
        conversations=[conversation.model_dump(mode="json") for conversation in conversations]
    )


def _messages_renderer(conversation_id: str) -> Callable[[MessagePage], dict[str, object]]:
    def render(page: MessagePage) -> dict[str, object]:
        return messages_snapshot_frame(
            conversation_id=conversation_id,
            messages=[message.model_dump(mode="json") for message in page.messages],
            cursor=page.cursor,
        )

    return render


async def _pump(
    connection_manager: ConnectionManager,
    connection_id: str,
    live_query: LiveQuery[T],
    render: Callable[[T], dict[str, object]],
) -> None:
    """Forward every live-query emission to the socket until cancelled or failed."""
    try:
        async with live_query:
            async for result in live_query:
                if not await connection_manager.send(connection_id, render(result)):
                    return
    except asyncio.CancelledError:
        raise
    except APIError as exc:
        await connection_manager.send(connection_id, error_frame(code=exc.code.upper(), message=exc.message))
    except Exception:
        logger.exception("Live query failed connection_id=%s topic=%s", connection_id, live_query.topic)
        await connection_manager.send(
            connection_id,
            error_frame(code="LIVE_QUERY_FAILED", message="Live query failed", details={"topic": live_query.topic}),
        )


async def _start_subscription(
    connection_manager: ConnectionManager,
    connection_id: str,
    key: str,
    live_query: LiveQuery[T],
    render: Callable[[T], dict[str, object]],
) -> None:
    try:
        started = await connection_manager.attach(
            connection_id,
            key,
            lambda: _pump(connection_manager, connection_id, live_query, render),
        )
    except ValueError:
        await connection_manager.send(
            connection_id,
            error_frame(code="INVALID_COMMAND", message="Subscription limit exceeded"),
        )
        return
    await connection_manager.send(
        connection_id,
        ack_frame(op="observe", details={"subscription": key, "already_active": not started}),
    )


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    settings = get_settings()
    token = _extract_access_token(websocket)
    if not token:
        await websocket.close(code=1008)
        return

    try:
        user_id = subject_from_token(token)
    except APIError:
        await websocket.close(code=1008)
        return

    try:
        session_factory = get_session_factory()
    except RuntimeError:
        await websocket.close(code=1011)
        return
    with session_factory() as db:
        user = db.get(User, user_id)
    if user is None:
        await websocket.close(code=1008)
        return

    connection_manager: ConnectionManager | None = getattr(websocket.app.state, "connection_manager", None)
    feed: ChangeFeed | None = getattr(websocket.app.state, "change_feed", None)
    if connection_manager is None or feed is None:
        await websocket.close(code=1011)
        return

    await websocket.accept()
    context = await connection_manager.register(websocket, user_id=user_id)
    connection_id = context.connection_id
    await connection_manager.send(
        connection_id,
        welcome_frame(connection_id=connection_id, user_id=user_id, heartbeat_sec=settings.ws_heartbeat_sec),
    )

    conversations = ConversationRepository(session_factory, current_user_id=user_id, feed=feed)
    messages = MessageRepository(session_factory, current_user_id=user_id, feed=feed)

    rate_events: deque[float] = deque()
    try:
        while True:
            try:
                raw_text = await asyncio.wait_for(websocket.receive_text(), timeout=settings.ws_idle_timeout_sec)
            except asyncio.TimeoutError:
                break
            except WebSocketDisconnect:
                break

            if not _command_allowed(
                rate_events,
                now=monotonic(),
                window_seconds=settings.ws_rate_limit_window_sec,
                max_commands=settings.ws_rate_limit_max_commands,
            ):
                await connection_manager.send(
                    connection_id,
                    error_frame(code="RATE_LIMITED", message="Command rate limit exceeded"),
                )
                continue

            try:
                command = parse_command(raw_text, max_bytes=settings.ws_max_command_bytes)
            except ProtocolError as exc:
                await connection_manager.send(connection_id, error_frame(code=exc.code, message=exc.message))
                continue

            if isinstance(command, PingCommand):
                await connection_manager.send(connection_id, pong_frame(ts=command.ts))
                continue

            if isinstance(command, ObserveConversationsCommand):
                await _start_subscription(
                    connection_manager,
                    connection_id,
                    CONVERSATIONS_SUBSCRIPTION,
                    conversations.observe_conversations_for_current_user(),
                    _render_conversations,
                )
                continue

            if isinstance(command, ObserveMessagesCommand):
                try:
                    conversations.require_participant(command.conversation_id)
                except APIError:
                    await connection_manager.send(
                        connection_id,
                        error_frame(code="FORBIDDEN_CONVERSATION", message="Not a participant of this conversation"),
                    )
                    continue
                await _start_subscription(
                    connection_manager,
                    connection_id,
                    messages_subscription(command.conversation_id),
                    messages.observe_messages(
                        command.conversation_id,
                        guard=conversations.require_participant,
                    ),
                    _messages_renderer(command.conversation_id),
                )
                continue

            if isinstance(command, UnobserveCommand):
                removed = await connection_manager.detach(connection_id, command.subscription)
                await connection_manager.send(
                    connection_id,
                    ack_frame(op="unobserve", details={"subscription": command.subscription, "removed": removed}),
                )
                continue
    finally:
        await connection_manager.unregister(connection_id, close_socket=True)
        logger.info("WebSocket session closed connection_id=%s user_id=%s", connection_id, user_id)

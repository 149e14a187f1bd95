from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from fastapi import WebSocket

logger = logging.getLogger(__name__)


@dataclass
class ConnectionContext:
    connection_id: str
    user_id: str
    websocket: WebSocket
    outgoing_queue: asyncio.Queue[dict[str, object]]
    writer_task: asyncio.Task[None] | None
    subscriptions: dict[str, asyncio.Task[None]] = field(default_factory=dict)

    def active_subscriptions(self) -> list[str]:
        return [key for key, task in self.subscriptions.items() if not task.done()]


class ConnectionManager:
    """Tracks WebSocket connections and the live-query tasks each one runs."""

    def __init__(self, *, max_subscriptions_per_connection: int) -> None:
        self._max_subscriptions_per_connection = max_subscriptions_per_connection
        self._connections: dict[str, ConnectionContext] = {}
        self._lock = asyncio.Lock()

    async def register(self, websocket: WebSocket, *, user_id: str) -> ConnectionContext:
        connection_id = str(uuid.uuid4())
        queue: asyncio.Queue[dict[str, object]] = asyncio.Queue(maxsize=200)
        context = ConnectionContext(
            connection_id=connection_id,
            user_id=user_id,
            websocket=websocket,
            outgoing_queue=queue,
            writer_task=None,
        )

        async with self._lock:
            self._connections[connection_id] = context
            context.writer_task = asyncio.create_task(self._writer_loop(connection_id))
        logger.info("WebSocket connection registered connection_id=%s user_id=%s", connection_id, user_id)
        return context

    async def unregister(self, connection_id: str, *, close_socket: bool = True, close_code: int = 1000) -> None:
        async with self._lock:
            context = self._connections.pop(connection_id, None)
            if context is None:
                return
            subscription_tasks = list(context.subscriptions.values())
            context.subscriptions.clear()

        current_task = asyncio.current_task()
        for task in subscription_tasks:
            if task is not current_task:
                await _cancel(task)
        if context.writer_task is not None and context.writer_task is not current_task:
            await _cancel(context.writer_task)

        if close_socket:
            try:
                await context.websocket.close(code=close_code)
            except Exception:
                logger.debug("WebSocket already closed connection_id=%s", connection_id)
        logger.info("WebSocket connection unregistered connection_id=%s user_id=%s", connection_id, context.user_id)

    async def _writer_loop(self, connection_id: str) -> None:
        while True:
            async with self._lock:
                context = self._connections.get(connection_id)
            if context is None:
                return

            try:
                payload = await context.outgoing_queue.get()
                await context.websocket.send_json(payload)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "WebSocket writer failed connection_id=%s user_id=%s error=%s",
                    connection_id,
                    context.user_id,
                    exc,
                )
                await self.unregister(connection_id, close_socket=False)
                return

    async def send(self, connection_id: str, payload: dict[str, object]) -> bool:
        async with self._lock:
            context = self._connections.get(connection_id)

        if context is None:
            return False

        try:
            context.outgoing_queue.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            logger.warning("Slow WebSocket client disconnected connection_id=%s", connection_id)
            await self.unregister(connection_id, close_socket=True, close_code=1013)
            return False

    async def attach(self, connection_id: str, key: str, run: Callable[[], Awaitable[None]]) -> bool:
        """Start ``run`` as the task behind subscription ``key``.

        Returns False when the key is already running. Raises ValueError when the
        connection is at its subscription limit.
        """
        async with self._lock:
            context = self._connections.get(connection_id)
            if context is None:
                return False

            existing = context.subscriptions.get(key)
            if existing is not None and not existing.done():
                return False
            if len(context.active_subscriptions()) >= self._max_subscriptions_per_connection:
                raise ValueError("Subscription limit exceeded")

            context.subscriptions[key] = asyncio.create_task(run())
        logger.debug("Subscription attached connection_id=%s key=%s", connection_id, key)
        return True

    async def detach(self, connection_id: str, key: str) -> bool:
        async with self._lock:
            context = self._connections.get(connection_id)
            if context is None:
                return False
            task = context.subscriptions.pop(key, None)

        if task is None:
            return False
        await _cancel(task)
        logger.debug("Subscription detached connection_id=%s key=%s", connection_id, key)
        return True

    async def connection_count(self) -> int:
        async with self._lock:
            return len(self._connections)


async def _cancel(task: asyncio.Task[None]) -> None:
    if task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass

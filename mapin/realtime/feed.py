from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


def conversation_topic(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def user_topic(user_id: str) -> str:
    return f"user:{user_id}"


class FeedListener:
    """Pending-change flag for one subscriber.

    Notifications coalesce: any number of publishes between two waits wake the
    subscriber once, which then re-reads the whole result.
    """

    def __init__(self, topic: str) -> None:
        self.topic = topic
        self.closed = False
        self._changed = asyncio.Event()

    def notify(self) -> None:
        self._changed.set()

    def close(self) -> None:
        self.closed = True
        self._changed.set()

    async def wait(self) -> None:
        await self._changed.wait()
        self._changed.clear()


class ChangeFeed:
    def __init__(self) -> None:
        self._listeners: dict[str, set[FeedListener]] = {}

    def subscribe(self, topic: str) -> FeedListener:
        listener = FeedListener(topic)
        self._listeners.setdefault(topic, set()).add(listener)
        logger.debug("Feed listener added topic=%s listeners=%s", topic, len(self._listeners[topic]))
        return listener

    def unsubscribe(self, listener: FeedListener) -> None:
        listener.close()
        topic_listeners = self._listeners.get(listener.topic)
        if topic_listeners is None:
            return
        topic_listeners.discard(listener)
        if not topic_listeners:
            self._listeners.pop(listener.topic, None)
        logger.debug("Feed listener removed topic=%s", listener.topic)

    def publish(self, topic: str) -> int:
        listeners = list(self._listeners.get(topic, ()))
        for listener in listeners:
            listener.notify()
        return len(listeners)

    def listener_count(self, topic: str | None = None) -> int:
        if topic is not None:
            return len(self._listeners.get(topic, ()))
        return sum(len(listeners) for listeners in self._listeners.values())

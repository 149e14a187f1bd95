from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

from mapin.realtime.feed import ChangeFeed, FeedListener

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LiveQuery(Generic[T]):
    """A query re-run every time its feed topic reports a change.

    Use it as ``async with query: async for result in query: ...``. Entering
    registers the feed listener and leaving always removes it. The first
    iteration yields the current result; each later iteration waits for a
    change and yields the full result again. A failing fetch stops the query
    and the error propagates to the consumer.
    """

    def __init__(self, *, feed: ChangeFeed, topic: str, fetch: Callable[[], T], name: str = "live_query") -> None:
        self._feed = feed
        self._topic = topic
        self._fetch = fetch
        self._name = name
        self._listener: FeedListener | None = None
        self._emitted = False
        self._stopped = False

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def active(self) -> bool:
        return self._listener is not None

    async def start(self) -> FeedListener:
        if self._stopped:
            raise RuntimeError("Live query was stopped and cannot be restarted")
        if self._listener is None:
            # Subscribe before the first read so a change racing it is not lost.
            self._listener = self._feed.subscribe(self._topic)
            logger.debug("Live query started name=%s topic=%s", self._name, self._topic)
        return self._listener

    async def stop(self) -> None:
        self._stopped = True
        if self._listener is None:
            return
        self._feed.unsubscribe(self._listener)
        self._listener = None
        logger.debug("Live query stopped name=%s topic=%s", self._name, self._topic)

    async def __aenter__(self) -> LiveQuery[T]:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def __aiter__(self) -> LiveQuery[T]:
        return self

    async def __anext__(self) -> T:
        if self._stopped:
            raise StopAsyncIteration
        listener = await self.start()

        if self._emitted:
            await listener.wait()
            if listener.closed or self._stopped:
                raise StopAsyncIteration

        try:
            result = self._fetch()
        except Exception:
            logger.warning("Live query fetch failed name=%s topic=%s", self._name, self._topic, exc_info=True)
            await self.stop()
            raise
        self._emitted = True
        return result

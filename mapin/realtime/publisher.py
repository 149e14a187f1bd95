from __future__ import annotations

import logging

from mapin.models import ChangeEvent
from mapin.realtime.feed import ChangeFeed

logger = logging.getLogger(__name__)


def event_topics(event: ChangeEvent) -> list[str]:
    topics = event.topics
    if not isinstance(topics, list) or not all(isinstance(topic, str) and topic for topic in topics):
        raise ValueError("Change event topics must be a list of non-empty strings")
    return topics


class ChangePublisher:
    """Wakes every live query listening on a feed topic."""

    def __init__(self, feed: ChangeFeed) -> None:
        self._feed = feed

    async def publish_topic(self, topic: str) -> int:
        notified = self._feed.publish(topic)
        logger.debug("Change topic published topic=%s notified=%s", topic, notified)
        return notified

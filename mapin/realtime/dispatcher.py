from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
import logging
from typing import Callable, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from mapin.models import ChangeEvent
from mapin.realtime.publisher import event_topics

logger = logging.getLogger(__name__)

MAX_RETRY_DELAY_SEC = 30.0


class Publisher(Protocol):
    async def publish_topic(self, topic: str) -> int: ...


def retry_delay_seconds(attempts: int) -> float:
    return min(MAX_RETRY_DELAY_SEC, 0.5 * (2 ** (attempts - 1)))


class ChangeDispatcher:
    """Drains the change outbox onto the feed, one wake-up per topic per batch.

    Live queries re-read their whole result when woken, so several events on
    the same conversation within a batch need a single notification. An event
    whose topic fails to publish is retried with capped backoff and is parked
    with ``failed_at`` once it has used up ``max_attempts``. Events with
    malformed topics are parked immediately.
    """

    def __init__(
        self,
        *,
        publisher: Publisher,
        session_factory: Callable[[], Session],
        poll_interval_sec: float,
        batch_size: int,
        max_attempts: int = 8,
    ) -> None:
        self._publisher = publisher
        self._session_factory = session_factory
        self._poll_interval_sec = poll_interval_sec
        self._batch_size = batch_size
        self._max_attempts = max_attempts
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info("Change dispatcher started batch_size=%s max_attempts=%s", self._batch_size, self._max_attempts)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Change dispatcher stopped")

    async def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                processed = await self.process_once()
                # A full batch means more events are probably due.
                if processed < self._batch_size:
                    await asyncio.sleep(self._poll_interval_sec)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Change dispatcher crashed")
            raise

    def _claim_due(self, db: Session, now: datetime) -> list[ChangeEvent]:
        return list(
            db.scalars(
                select(ChangeEvent)
                .where(ChangeEvent.published_at.is_(None))
                .where(ChangeEvent.failed_at.is_(None))
                .where(ChangeEvent.next_attempt_at <= now)
                .order_by(ChangeEvent.id.asc())
                .limit(self._batch_size)
            ).all()
        )

    def _park(self, event: ChangeEvent, error: Exception, now: datetime) -> None:
        event.failed_at = now
        event.last_error = str(error)[:1000]
        logger.error(
            "Change event parked event_id=%s type=%s conversation_id=%s attempts=%s error=%s",
            event.event_id,
            event.event_type,
            event.conversation_id,
            event.attempts,
            error,
        )

    def _schedule_retry(self, event: ChangeEvent, error: Exception, now: datetime) -> None:
        event.attempts += 1
        if event.attempts >= self._max_attempts:
            self._park(event, error, now)
            return
        event.next_attempt_at = now + timedelta(seconds=retry_delay_seconds(event.attempts))
        event.last_error = str(error)[:1000]

    async def process_once(self) -> int:
        now = datetime.now(UTC)
        with self._session_factory() as db:
            events = self._claim_due(db, now)
            if not events:
                return 0

            by_topic: dict[str, list[ChangeEvent]] = {}
            for event in events:
                try:
                    topics = event_topics(event)
                except ValueError as exc:
                    self._park(event, exc, now)
                    continue
                for topic in topics:
                    by_topic.setdefault(topic, []).append(event)

            errors: dict[int, Exception] = {}
            for topic, topic_events in by_topic.items():
                try:
                    await self._publisher.publish_topic(topic)
                except Exception as exc:
                    logger.warning("Change topic publish failed topic=%s events=%s error=%s", topic, len(topic_events), exc)
                    for event in topic_events:
                        errors.setdefault(event.id, exc)

            finished_at = datetime.now(UTC)
            for event in events:
                if event.failed_at is not None:
                    continue
                error = errors.get(event.id)
                if error is not None:
                    self._schedule_retry(event, error, finished_at)
                    continue
                event.published_at = finished_at
                event.last_error = None

            db.commit()
            logger.debug("Change dispatcher processed events=%s topics=%s", len(events), len(by_topic))
            return len(events)

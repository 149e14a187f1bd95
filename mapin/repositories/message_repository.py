from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import Callable, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from mapin.core.clock import now_ms
from mapin.core.errors import conversation_not_found_error
from mapin.core.settings import get_settings
from mapin.db.transactions import run_in_transaction
from mapin.models import Conversation, Message
from mapin.realtime.feed import ChangeFeed, conversation_topic
from mapin.realtime.live_query import LiveQuery
from mapin.repositories.cursor import MessageCursor
from mapin.schemas.messages import MessagePage, MessageRead
from mapin.services import change_service

logger = logging.getLogger(__name__)


def project_message(message: Message, viewer_id: str | None) -> MessageRead:
    return MessageRead(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        text=message.text,
        timestamp=message.timestamp,
        is_me=viewer_id is not None and message.sender_id == viewer_id,
    )


class MessageRepository:
    """Paginated reads and writes of a conversation's messages.

    Pages are fetched newest-first and handed out oldest-first. The cursor of a
    page points at its oldest message and resumes the descending scan there.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        current_user_id: str | None,
        feed: ChangeFeed | None = None,
        page_size: int | None = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory
        self._current_user_id = current_user_id
        self._feed = feed
        self._page_size = page_size or settings.message_page_size
        self._max_attempts = settings.transaction_max_attempts

    def _page_query(self, conversation_id: str, cursor: MessageCursor | None):
        query = select(Message).where(Message.conversation_id == conversation_id)
        if cursor is not None:
            query = query.where(
                or_(
                    Message.timestamp < cursor.timestamp,
                    and_(Message.timestamp == cursor.timestamp, Message.seq < cursor.seq),
                )
            )
        return query.order_by(Message.timestamp.desc(), Message.seq.desc()).limit(self._page_size)

    def _to_page(self, rows: Sequence[Message], *, exhausted: bool) -> MessagePage:
        messages = [project_message(row, self._current_user_id) for row in reversed(rows)]
        cursor = None
        if rows and not exhausted:
            oldest = rows[-1]
            cursor = MessageCursor(timestamp=oldest.timestamp, seq=oldest.seq).encode()
        return MessagePage(messages=messages, cursor=cursor)

    def latest_messages(self, conversation_id: str) -> MessagePage:
        with self._session_factory() as db:
            rows = db.scalars(self._page_query(conversation_id, None)).all()
        logger.debug("Fetched latest messages conversation_id=%s count=%s", conversation_id, len(rows))
        return self._to_page(rows, exhausted=False)

    def observe_messages(
        self,
        conversation_id: str,
        *,
        guard: Callable[[str], None] | None = None,
    ) -> LiveQuery[MessagePage]:
        """Live latest page of a conversation.

        ``guard`` runs before every fetch; an error it raises ends the query, so a
        reader who loses access stops receiving pages.
        """
        if self._feed is None:
            raise RuntimeError("Message repository has no change feed to observe")

        def fetch() -> MessagePage:
            if guard is not None:
                guard(conversation_id)
            return self.latest_messages(conversation_id)

        return LiveQuery(
            feed=self._feed,
            topic=conversation_topic(conversation_id),
            fetch=fetch,
            name=f"messages:{conversation_id}",
        )

    def load_more_messages(self, conversation_id: str, cursor: str) -> MessagePage:
        position = MessageCursor.decode(cursor)
        with self._session_factory() as db:
            rows = db.scalars(self._page_query(conversation_id, position)).all()
        logger.debug(
            "Fetched older messages conversation_id=%s before=%s:%s count=%s",
            conversation_id,
            position.timestamp,
            position.seq,
            len(rows),
        )
        return self._to_page(rows, exhausted=len(rows) < self._page_size)

    def send_message(self, conversation_id: str, text: str) -> MessageRead | None:
        if not text or not text.strip():
            logger.debug("Ignoring blank message conversation_id=%s", conversation_id)
            return None
        sender_id = self._current_user_id
        if sender_id is None:
            logger.warning("Ignoring message without authenticated sender conversation_id=%s", conversation_id)
            return None

        def work(db: Session) -> MessageRead:
            conversation = db.get(Conversation, conversation_id)
            if conversation is None:
                raise conversation_not_found_error()

            # Keep timestamps non-decreasing within a conversation so the
            # (timestamp, seq) order matches the send order.
            timestamp = max(now_ms(), conversation.last_message_timestamp)
            seq = conversation.next_message_seq
            message = Message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                text=text,
                timestamp=timestamp,
                seq=seq,
            )
            db.add(message)

            conversation.next_message_seq = seq + 1
            conversation.last_message = text
            conversation.last_message_timestamp = timestamp
            conversation.updated_at = datetime.now(UTC)
            db.flush()

            change_service.record_change(
                db,
                event_type="message.created",
                conversation_id=conversation_id,
                user_ids=conversation.participant_ids,
            )
            return project_message(message, sender_id)

        message = run_in_transaction(self._session_factory, work, max_attempts=self._max_attempts, label="send_message")
        logger.info("Message sent message_id=%s conversation_id=%s", message.id, conversation_id)
        return message

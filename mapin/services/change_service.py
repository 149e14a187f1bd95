from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.orm import Session

from mapin.models import ChangeEvent
from mapin.realtime.feed import conversation_topic, user_topic

logger = logging.getLogger(__name__)


def record_change(
    db: Session,
    *,
    event_type: str,
    conversation_id: str,
    user_ids: Iterable[str],
) -> ChangeEvent:
    """Queue a change notification in the caller's transaction.

    The conversation topic wakes message live queries; each user topic wakes
    that user's conversation list.
    """
    topics = [conversation_topic(conversation_id)]
    topics.extend(user_topic(user_id) for user_id in dict.fromkeys(user_ids))
    event = ChangeEvent(event_type=event_type, conversation_id=conversation_id, topics=topics)
    db.add(event)
    logger.debug(
        "Change recorded type=%s conversation_id=%s topics=%s",
        event_type,
        conversation_id,
        len(topics),
    )
    return event

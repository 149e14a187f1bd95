from __future__ import annotations

import logging

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from mapin.core.errors import APIError
from mapin.core.security import subject_from_token
from mapin.db.session import get_db, get_session_factory
from mapin.models import User
from mapin.realtime.feed import ChangeFeed
from mapin.repositories.conversation_repository import ConversationRepository
from mapin.repositories.message_repository import MessageRepository

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/v1/auth/login")


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    subject = subject_from_token(token)
    user = db.get(User, subject)
    if user is None:
        logger.warning("Token user_id=%s not found", subject)
        raise APIError(status_code=401, code="invalid_token", message="Token user was not found")

    logger.debug("Resolved current user user_id=%s", user.id)
    return user


def get_change_feed(request: Request) -> ChangeFeed | None:
    return getattr(request.app.state, "change_feed", None)


def get_conversation_repository(
    current_user: User = Depends(get_current_user),
    feed: ChangeFeed | None = Depends(get_change_feed),
) -> ConversationRepository:
    return ConversationRepository(get_session_factory(), current_user_id=current_user.id, feed=feed)


def get_message_repository(
    current_user: User = Depends(get_current_user),
    feed: ChangeFeed | None = Depends(get_change_feed),
) -> MessageRepository:
    return MessageRepository(get_session_factory(), current_user_id=current_user.id, feed=feed)

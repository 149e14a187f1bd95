from __future__ import annotations

from datetime import UTC, datetime
import hashlib
import logging
from typing import Callable, Iterable
import uuid

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from mapin.core.clock import now_ms
from mapin.core.errors import conversation_not_found_error, not_authenticated_error
from mapin.core.settings import get_settings
from mapin.db.transactions import run_in_transaction
from mapin.models import Conversation, ConversationParticipant, User
from mapin.realtime.feed import ChangeFeed, user_topic
from mapin.realtime.live_query import LiveQuery
from mapin.schemas.conversations import ConversationCreateRequest, ConversationRead, ParticipantProfile
from mapin.services import change_service

logger = logging.getLogger(__name__)


def hash_participant_ids(participant_ids: Iterable[str]) -> str:
    """SHA-256 over the sorted, de-duplicated ids in ``len:value|len:value`` form.

    The length prefix keeps ``["ab", "cd"]`` and ``["a", "bcd"]`` apart even
    when ids contain the separators.
    """
    unique_ids = sorted(set(participant_ids))
    encoded = "|".join(f"{len(user_id)}:{user_id}" for user_id in unique_ids)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def project_for_viewer(conversation: ConversationRead, viewer_id: str) -> ConversationRead:
    """Show a two-party conversation under the counterpart's name and picture."""
    if len(conversation.participants) != 2:
        return conversation
    counterpart = next((p for p in conversation.participants if p.user_id != viewer_id), None)
    if counterpart is None:
        return conversation
    return conversation.model_copy(
        update={"name": counterpart.name, "profile_picture_url": counterpart.profile_picture_url}
    )


def _dedupe_profiles(profiles: Iterable[ParticipantProfile]) -> list[ParticipantProfile]:
    seen: dict[str, ParticipantProfile] = {}
    for profile in profiles:
        seen.setdefault(profile.user_id, profile)
    return list(seen.values())


class ConversationRepository:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        current_user_id: str | None,
        feed: ChangeFeed | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._current_user_id = current_user_id
        self._feed = feed
        self._max_attempts = get_settings().transaction_max_attempts

    @property
    def current_user_id(self) -> str | None:
        return self._current_user_id

    def _require_user(self) -> str:
        if self._current_user_id is None:
            raise not_authenticated_error()
        return self._current_user_id

    def get_new_uid(self, participant_ids: list[str]) -> str:
        if not participant_ids:
            return uuid.uuid4().hex
        return hash_participant_ids(participant_ids)

    def conversation_exists(self, conversation_id: str) -> bool:
        try:
            with self._session_factory() as db:
                return db.get(Conversation, conversation_id) is not None
        except SQLAlchemyError:
            logger.exception("Conversation existence check failed conversation_id=%s", conversation_id)
            return False

    def get_conversation_by_id(self, conversation_id: str) -> ConversationRead | None:
        try:
            with self._session_factory() as db:
                conversation = db.get(Conversation, conversation_id)
                if conversation is None:
                    logger.debug("Conversation not found conversation_id=%s", conversation_id)
                    return None
                return ConversationRead.model_validate(conversation)
        except SQLAlchemyError:
            logger.exception("Conversation lookup failed conversation_id=%s", conversation_id)
            return None

    def require_participant(self, conversation_id: str) -> None:
        user_id = self._require_user()
        with self._session_factory() as db:
            participant = db.get(ConversationParticipant, {"conversation_id": conversation_id, "user_id": user_id})
        if participant is None:
            logger.warning("Participant check failed user_id=%s conversation_id=%s", user_id, conversation_id)
            raise conversation_not_found_error()

    def list_conversations_for_current_user(self) -> list[ConversationRead]:
        user_id = self._require_user()
        with self._session_factory() as db:
            rows = db.scalars(
                select(Conversation)
                .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
                .where(ConversationParticipant.user_id == user_id)
                .options(selectinload(Conversation.participants))
                .order_by(Conversation.last_message_timestamp.desc(), Conversation.id.desc())
            ).all()
            conversations = [ConversationRead.model_validate(row) for row in rows]
        logger.debug("Listed conversations user_id=%s count=%s", user_id, len(conversations))
        return [project_for_viewer(conversation, user_id) for conversation in conversations]

    def observe_conversations_for_current_user(self) -> LiveQuery[list[ConversationRead]]:
        user_id = self._require_user()
        if self._feed is None:
            raise RuntimeError("Conversation repository has no change feed to observe")
        return LiveQuery(
            feed=self._feed,
            topic=user_topic(user_id),
            fetch=self.list_conversations_for_current_user,
            name="conversations",
        )

    def add_conversation(self, conversation: ConversationCreateRequest) -> tuple[ConversationRead, bool]:
        creator_id = self._current_user_id
        profiles = _dedupe_profiles(conversation.participants)

        def work(db: Session) -> tuple[ConversationRead, bool]:
            participants = list(profiles)
            if creator_id is not None and creator_id not in {profile.user_id for profile in participants}:
                participants.append(self._profile_for_user(db, creator_id))
            conversation_id = conversation.id or self.get_new_uid([profile.user_id for profile in participants])

            existing = db.get(Conversation, conversation_id)
            if existing is not None:
                logger.debug("Conversation already exists conversation_id=%s", conversation_id)
                return ConversationRead.model_validate(existing), False

            row = Conversation(
                id=conversation_id,
                name=conversation.name,
                profile_picture_url=conversation.profile_picture_url,
                last_message_timestamp=now_ms(),
                participants=[
                    ConversationParticipant(
                        user_id=profile.user_id,
                        name=profile.name,
                        profile_picture_url=profile.profile_picture_url,
                        position=position,
                    )
                    for position, profile in enumerate(participants)
                ],
            )
            db.add(row)
            db.flush()
            change_service.record_change(
                db,
                event_type="conversation.created",
                conversation_id=row.id,
                user_ids=row.participant_ids,
            )
            return ConversationRead.model_validate(row), True

        result, created = run_in_transaction(
            self._session_factory, work, max_attempts=self._max_attempts, label="add_conversation"
        )
        if created:
            logger.info("Conversation created conversation_id=%s participants=%s", result.id, len(result.participant_ids))
        return result, created

    def join_conversation(
        self,
        conversation_id: str,
        user_id: str,
        profile: ParticipantProfile | None = None,
    ) -> ConversationRead:
        def work(db: Session) -> ConversationRead:
            row = db.get(Conversation, conversation_id)
            if row is None:
                raise conversation_not_found_error()
            if user_id in row.participant_ids:
                logger.debug("Join is a no-op user_id=%s conversation_id=%s", user_id, conversation_id)
                return ConversationRead.model_validate(row)

            snapshot = profile or self._profile_for_user(db, user_id)
            next_position = max((participant.position for participant in row.participants), default=-1) + 1
            row.participants.append(
                ConversationParticipant(
                    user_id=user_id,
                    name=snapshot.name,
                    profile_picture_url=snapshot.profile_picture_url,
                    position=next_position,
                )
            )
            row.updated_at = datetime.now(UTC)
            db.flush()
            change_service.record_change(
                db,
                event_type="conversation.joined",
                conversation_id=conversation_id,
                user_ids=row.participant_ids,
            )
            return ConversationRead.model_validate(row)

        result = run_in_transaction(self._session_factory, work, max_attempts=self._max_attempts, label="join_conversation")
        logger.info("Participant joined user_id=%s conversation_id=%s", user_id, conversation_id)
        return result

    def leave_conversation(self, conversation_id: str) -> ConversationRead:
        user_id = self._require_user()

        def work(db: Session) -> ConversationRead:
            row = db.get(Conversation, conversation_id)
            if row is None:
                raise conversation_not_found_error()
            participant = next((p for p in row.participants if p.user_id == user_id), None)
            if participant is None:
                logger.debug("Leave is a no-op user_id=%s conversation_id=%s", user_id, conversation_id)
                return ConversationRead.model_validate(row)

            notified_ids = row.participant_ids
            row.participants.remove(participant)
            row.updated_at = datetime.now(UTC)
            db.flush()
            change_service.record_change(
                db,
                event_type="conversation.left",
                conversation_id=conversation_id,
                user_ids=notified_ids,
            )
            return ConversationRead.model_validate(row)

        result = run_in_transaction(self._session_factory, work, max_attempts=self._max_attempts, label="leave_conversation")
        logger.info("Participant left user_id=%s conversation_id=%s", user_id, conversation_id)
        return result

    @staticmethod
    def _profile_for_user(db: Session, user_id: str) -> ParticipantProfile:
        user = db.get(User, user_id)
        if user is None:
            return ParticipantProfile(user_id=user_id)
        return ParticipantProfile(
            user_id=user.id,
            name=user.display_name,
            profile_picture_url=user.profile_picture_url,
        )

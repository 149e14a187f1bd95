from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from mapin.core.errors import APIError
from mapin.models import ChangeEvent, Conversation, ConversationParticipant
from mapin.repositories.conversation_repository import (
    ConversationRepository,
    hash_participant_ids,
    project_for_viewer,
)
from mapin.schemas.conversations import ConversationCreateRequest, ConversationRead, ParticipantProfile


def _broken_session_factory():
    raise OperationalError("SELECT 1", {}, Exception("database is locked"))


def _create(repository: ConversationRepository, *user_ids: str, name: str | None = None) -> ConversationRead:
    conversation, _ = repository.add_conversation(
        ConversationCreateRequest(
            name=name,
            participants=[ParticipantProfile(user_id=user_id, name=user_id.title()) for user_id in user_ids],
        )
    )
    return conversation


def test_new_uid_ignores_participant_order_and_duplicates():
    repository = ConversationRepository(_broken_session_factory, current_user_id=None)

    first = repository.get_new_uid(["bob", "alice"])
    assert first == repository.get_new_uid(["alice", "bob"])
    assert first == repository.get_new_uid(["alice", "bob", "alice"])
    assert first != repository.get_new_uid(["alice", "carol"])
    assert len(first) == 64


def test_new_uid_without_participants_is_random():
    repository = ConversationRepository(_broken_session_factory, current_user_id=None)
    assert repository.get_new_uid([]) != repository.get_new_uid([])


def test_participant_hash_separates_ambiguous_concatenations():
    assert hash_participant_ids(["ab", "c"]) != hash_participant_ids(["a", "bc"])
    assert hash_participant_ids(["a|b"]) != hash_participant_ids(["a", "b"])


def test_lookups_report_absence_when_storage_fails():
    repository = ConversationRepository(_broken_session_factory, current_user_id="alice")

    assert repository.conversation_exists("anything") is False
    assert repository.get_conversation_by_id("anything") is None


def test_add_conversation_uses_explicit_id(session_factory):
    repository = ConversationRepository(session_factory, current_user_id="alice")

    conversation, created = repository.add_conversation(
        ConversationCreateRequest(id="event-42", name="Jazz night", participants=[ParticipantProfile(user_id="bob")])
    )

    assert created is True
    assert conversation.id == "event-42"
    assert conversation.participant_ids == ["bob", "alice"]
    assert repository.conversation_exists("event-42")


def test_add_conversation_records_change_for_every_participant(session_factory):
    repository = ConversationRepository(session_factory, current_user_id="alice")
    conversation = _create(repository, "bob")

    with session_factory() as db:
        event = db.scalar(select(ChangeEvent))
        assert event is not None
        assert event.event_type == "conversation.created"
        assert event.topics == [f"conversation:{conversation.id}", "user:bob", "user:alice"]


def test_leave_removes_both_id_and_profile(session_factory):
    alice = ConversationRepository(session_factory, current_user_id="alice")
    conversation = _create(alice, "bob", "carol", name="Trip")

    bob = ConversationRepository(session_factory, current_user_id="bob")
    after = bob.leave_conversation(conversation.id)

    assert after.participant_ids == ["carol", "alice"]
    assert [profile.user_id for profile in after.participants] == ["carol", "alice"]
    with session_factory() as db:
        remaining = db.scalars(
            select(ConversationParticipant.user_id).where(ConversationParticipant.conversation_id == conversation.id)
        ).all()
    assert sorted(remaining) == ["alice", "carol"]


def test_leave_by_non_participant_changes_nothing(session_factory):
    alice = ConversationRepository(session_factory, current_user_id="alice")
    conversation = _create(alice, "bob")

    outsider = ConversationRepository(session_factory, current_user_id="mallory")
    after = outsider.leave_conversation(conversation.id)

    assert after.participant_ids == conversation.participant_ids


def test_leave_without_user_is_rejected(session_factory):
    anonymous = ConversationRepository(session_factory, current_user_id=None)

    with pytest.raises(APIError) as excinfo:
        anonymous.leave_conversation("whatever")
    assert excinfo.value.code == "not_authenticated"


def test_join_appends_once(session_factory):
    alice = ConversationRepository(session_factory, current_user_id="alice")
    conversation = _create(alice, "bob")

    alice.join_conversation(conversation.id, "carol", ParticipantProfile(user_id="carol", name="Carol"))
    after = alice.join_conversation(conversation.id, "carol")

    assert after.participant_ids == ["bob", "alice", "carol"]
    assert after.participants[-1].name == "Carol"


def test_list_orders_by_latest_activity(session_factory):
    alice = ConversationRepository(session_factory, current_user_id="alice")
    quiet = _create(alice, "bob")
    busy = _create(alice, "carol")
    with session_factory() as db:
        db.get(Conversation, quiet.id).last_message_timestamp = 1_000
        db.get(Conversation, busy.id).last_message_timestamp = 2_000
        db.commit()

    rows = alice.list_conversations_for_current_user()
    assert [row.id for row in rows] == [busy.id, quiet.id]
    assert [row.name for row in rows] == ["Carol", "Bob"]


def test_projection_only_applies_to_two_participants():
    group = ConversationRead(
        id="c1",
        name="Group",
        profile_picture_url=None,
        participant_ids=["a", "b", "c"],
        participants=[ParticipantProfile(user_id=user_id, name=user_id) for user_id in ("a", "b", "c")],
        last_message=None,
        last_message_timestamp=0,
    )
    assert project_for_viewer(group, "a").name == "Group"

    pair = group.model_copy(
        update={
            "participant_ids": ["a", "b"],
            "participants": [
                ParticipantProfile(user_id="a", name="Ann"),
                ParticipantProfile(user_id="b", name="Ben", profile_picture_url="https://cdn/ben.png"),
            ],
        }
    )
    projected = project_for_viewer(pair, "a")
    assert projected.name == "Ben"
    assert projected.profile_picture_url == "https://cdn/ben.png"

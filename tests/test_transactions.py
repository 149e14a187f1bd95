from __future__ import annotations

import pytest
from sqlalchemy.orm.exc import StaleDataError

from mapin.core.errors import APIError
from mapin.db.transactions import run_in_transaction
from mapin.models import Conversation


def _create_conversation(session_factory, conversation_id: str = "conversation-1") -> None:
    with session_factory() as db:
        db.add(Conversation(id=conversation_id, last_message_timestamp=0))
        db.commit()


def _load(session_factory, conversation_id: str = "conversation-1") -> Conversation:
    with session_factory() as db:
        conversation = db.get(Conversation, conversation_id)
        assert conversation is not None
        return conversation


def test_concurrent_writers_trip_the_version_check(session_factory):
    _create_conversation(session_factory)

    with session_factory() as first, session_factory() as second:
        first_row = first.get(Conversation, "conversation-1")
        second_row = second.get(Conversation, "conversation-1")
        assert first_row.version == second_row.version == 1

        first_row.last_message = "from first"
        first.commit()

        second_row.last_message = "from second"
        with pytest.raises(StaleDataError):
            second.commit()
        second.rollback()

    stored = _load(session_factory)
    assert stored.last_message == "from first"
    assert stored.version == 2


def test_stale_conflict_is_retried_and_committed(session_factory):
    _create_conversation(session_factory)
    calls: list[int] = []

    def work(db) -> str:
        calls.append(len(calls) + 1)
        if len(calls) == 1:
            raise StaleDataError("conversation row changed")
        conversation = db.get(Conversation, "conversation-1")
        conversation.last_message = "saved"
        return conversation.id

    assert run_in_transaction(session_factory, work, max_attempts=3) == "conversation-1"
    assert calls == [1, 2]
    assert _load(session_factory).last_message == "saved"


def test_retry_reads_the_concurrent_write(session_factory):
    _create_conversation(session_factory)
    seen_versions: list[int] = []

    def work(db) -> None:
        conversation = db.get(Conversation, "conversation-1")
        seen_versions.append(conversation.version)
        if len(seen_versions) == 1:
            with session_factory() as other:
                other.get(Conversation, "conversation-1").next_message_seq = 5
                other.commit()
        conversation.next_message_seq += 1

    run_in_transaction(session_factory, work, max_attempts=3, label="bump_seq")

    assert seen_versions == [1, 2]
    stored = _load(session_factory)
    assert stored.next_message_seq == 6
    assert stored.version == 3


def test_persistent_conflict_gives_up_after_max_attempts(session_factory):
    calls: list[int] = []

    def work(db) -> None:
        calls.append(1)
        raise StaleDataError("always stale")

    with pytest.raises(APIError) as excinfo:
        run_in_transaction(session_factory, work, max_attempts=4)

    assert len(calls) == 4
    assert excinfo.value.status_code == 409
    assert excinfo.value.code == "transaction_conflict"
    assert isinstance(excinfo.value.__cause__, StaleDataError)


def test_other_errors_are_not_retried(session_factory):
    _create_conversation(session_factory)
    calls: list[int] = []

    def work(db) -> None:
        calls.append(1)
        db.get(Conversation, "conversation-1").last_message = "discarded"
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        run_in_transaction(session_factory, work, max_attempts=5)

    assert len(calls) == 1
    assert _load(session_factory).last_message is None

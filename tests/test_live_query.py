from __future__ import annotations

import asyncio

import pytest

from mapin.core.errors import APIError
from mapin.realtime.dispatcher import ChangeDispatcher
from mapin.realtime.feed import ChangeFeed, conversation_topic, user_topic
from mapin.realtime.live_query import LiveQuery
from mapin.realtime.publisher import ChangePublisher
from mapin.repositories.conversation_repository import ConversationRepository
from mapin.repositories.message_repository import MessageRepository
from mapin.schemas.conversations import ConversationCreateRequest, ParticipantProfile


def _dispatcher(session_factory, feed: ChangeFeed) -> ChangeDispatcher:
    return ChangeDispatcher(
        publisher=ChangePublisher(feed),
        session_factory=session_factory,
        poll_interval_sec=0.01,
        batch_size=50,
    )


def test_message_live_query_emits_again_after_send(session_factory):
    feed = ChangeFeed()
    conversations = ConversationRepository(session_factory, current_user_id="alice", feed=feed)
    conversation, _ = conversations.add_conversation(
        ConversationCreateRequest(participants=[ParticipantProfile(user_id="bob", name="Bob")])
    )
    messages = MessageRepository(session_factory, current_user_id="alice", feed=feed)
    dispatcher = _dispatcher(session_factory, feed)

    async def scenario() -> list[list[str]]:
        await dispatcher.process_once()
        emissions: list[list[str]] = []
        async with messages.observe_messages(conversation.id) as live:
            iterator = live.__aiter__()
            first = await iterator.__anext__()
            emissions.append([message.text for message in first.messages])

            messages.send_message(conversation.id, "first")
            messages.send_message(conversation.id, "second")
            await dispatcher.process_once()

            second = await asyncio.wait_for(iterator.__anext__(), timeout=1)
            emissions.append([message.text for message in second.messages])
        assert feed.listener_count(conversation_topic(conversation.id)) == 0
        return emissions

    assert asyncio.run(scenario()) == [[], ["first", "second"]]


def test_conversation_live_query_follows_user_topic(session_factory):
    feed = ChangeFeed()
    alice = ConversationRepository(session_factory, current_user_id="alice", feed=feed)
    dispatcher = _dispatcher(session_factory, feed)

    async def scenario() -> tuple[int, int]:
        async with alice.observe_conversations_for_current_user() as live:
            iterator = live.__aiter__()
            before = await iterator.__anext__()
            assert feed.listener_count(user_topic("alice")) == 1

            alice.add_conversation(ConversationCreateRequest(participants=[ParticipantProfile(user_id="bob")]))
            await dispatcher.process_once()
            after = await asyncio.wait_for(iterator.__anext__(), timeout=1)
        return len(before), len(after)

    assert asyncio.run(scenario()) == (0, 1)


def test_notifications_between_reads_coalesce():
    feed = ChangeFeed()
    calls: list[int] = []

    def fetch() -> int:
        calls.append(len(calls))
        return len(calls)

    async def scenario() -> list[int]:
        results = []
        async with LiveQuery(feed=feed, topic="t", fetch=fetch) as live:
            iterator = live.__aiter__()
            results.append(await iterator.__anext__())
            for _ in range(5):
                feed.publish("t")
            results.append(await asyncio.wait_for(iterator.__anext__(), timeout=1))
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(iterator.__anext__(), timeout=0.05)
        return results

    assert asyncio.run(scenario()) == [1, 2]


def test_failing_fetch_stops_query_and_releases_listener():
    feed = ChangeFeed()

    def fetch() -> int:
        raise RuntimeError("storage offline")

    async def scenario() -> None:
        live = LiveQuery(feed=feed, topic="t", fetch=fetch)
        async with live:
            with pytest.raises(RuntimeError):
                await live.__anext__()
            assert not live.active
        assert feed.listener_count() == 0

    asyncio.run(scenario())


def test_stop_ends_iteration():
    feed = ChangeFeed()

    async def scenario() -> list[int]:
        live = LiveQuery(feed=feed, topic="t", fetch=lambda: 1)
        seen = []
        async with live:
            async for value in live:
                seen.append(value)
                await live.stop()
        return seen

    assert asyncio.run(scenario()) == [1]
    assert feed.listener_count() == 0


def test_first_read_subscribes_without_context_manager():
    feed = ChangeFeed()

    async def scenario() -> None:
        live = LiveQuery(feed=feed, topic="t", fetch=lambda: "value")
        assert await live.__anext__() == "value"
        assert live.active
        assert feed.listener_count("t") == 1
        assert await live.start() is await live.start()

        await live.stop()
        assert feed.listener_count("t") == 0
        with pytest.raises(RuntimeError):
            await live.start()
        with pytest.raises(StopAsyncIteration):
            await live.__anext__()

    asyncio.run(scenario())


def test_guarded_message_live_query_ends_when_reader_leaves(session_factory):
    feed = ChangeFeed()
    alice = ConversationRepository(session_factory, current_user_id="alice", feed=feed)
    conversation, _ = alice.add_conversation(
        ConversationCreateRequest(
            participants=[ParticipantProfile(user_id="bob"), ParticipantProfile(user_id="carol")]
        )
    )
    bob = ConversationRepository(session_factory, current_user_id="bob", feed=feed)
    bob_messages = MessageRepository(session_factory, current_user_id="bob", feed=feed)
    alice_messages = MessageRepository(session_factory, current_user_id="alice", feed=feed)
    dispatcher = _dispatcher(session_factory, feed)

    async def scenario() -> None:
        await dispatcher.process_once()
        live = bob_messages.observe_messages(conversation.id, guard=bob.require_participant)
        async with live:
            assert (await live.__anext__()).messages == []

            bob.leave_conversation(conversation.id)
            alice_messages.send_message(conversation.id, "after bob left")
            await dispatcher.process_once()

            with pytest.raises(APIError) as excinfo:
                await asyncio.wait_for(live.__anext__(), timeout=1)
            assert excinfo.value.code == "conversation_not_found"
            assert not live.active
        assert feed.listener_count(conversation_topic(conversation.id)) == 0

    asyncio.run(scenario())


def test_observe_without_user_fails_immediately(session_factory):
    anonymous = ConversationRepository(session_factory, current_user_id=None, feed=ChangeFeed())

    with pytest.raises(APIError) as excinfo:
        anonymous.observe_conversations_for_current_user()
    assert excinfo.value.code == "not_authenticated"

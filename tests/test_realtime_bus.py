"""
Tests for the change feed: filtering, ordering and subscription release.
"""
from datetime import datetime, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.errors import RemoteOperationFailed
from app.repositories.message_repository import MessageRepository
from app.repositories.notification_repository import NotificationRepository
from app.schemas.feed import ChangeEvent
from app.schemas.message import Message
from app.utils.realtime_bus import InMemoryBus, RedisBus


def chat_event(type_="INSERT", **row):
    if type_ == "DELETE":
        return ChangeEvent(table="chats", type=type_, old=row)
    return ChangeEvent(table="chats", type=type_, new=row)


class TestSubscriptionFilter:

    async def test_delivers_only_matching_column(self):
        bus = InMemoryBus()
        received = []

        async def on_event(evt):
            received.append(evt.row["body"])

        await bus.subscribe("chats", on_event, column="receiver_id", value="bob")
        await bus.publish(chat_event(receiver_id="bob", body="for bob"))
        await bus.publish(chat_event(receiver_id="carol", body="for carol"))

        assert received == ["for bob"]

    async def test_event_type_filter(self):
        bus = InMemoryBus()
        received = []

        async def on_event(evt):
            received.append(evt.type)

        await bus.subscribe("chats", on_event, event="INSERT")
        await bus.publish(chat_event("INSERT", body="a"))
        await bus.publish(chat_event("UPDATE", body="a"))
        await bus.publish(chat_event("DELETE", body="a"))

        assert received == ["INSERT"]

    async def test_wildcard_matches_delete_on_old_row(self):
        bus = InMemoryBus()
        received = []

        async def on_event(evt):
            received.append(evt.type)

        await bus.subscribe("chats", on_event, event="*", column="receiver_id", value="bob")
        await bus.publish(chat_event("DELETE", receiver_id="bob"))

        assert received == ["DELETE"]

    async def test_other_tables_are_not_delivered(self):
        bus = InMemoryBus()
        received = []

        async def on_event(evt):
            received.append(evt)

        await bus.subscribe("notifications", on_event)
        await bus.publish(chat_event(body="x"))

        assert received == []


class TestDelivery:

    async def test_events_arrive_in_publish_order(self):
        bus = InMemoryBus()
        received = []

        async def on_event(evt):
            received.append(evt.row["seq"])

        await bus.subscribe("chats", on_event)
        for seq in range(20):
            await bus.publish(chat_event(seq=seq))

        assert received == list(range(20))

    async def test_failing_subscriber_does_not_break_others(self):
        bus = InMemoryBus()
        received = []

        async def broken(evt):
            raise RuntimeError("boom")

        async def healthy(evt):
            received.append(evt.row["body"])

        await bus.subscribe("chats", broken)
        await bus.subscribe("chats", healthy)
        await bus.publish(chat_event(body="still delivered"))

        assert received == ["still delivered"]

    async def test_cancel_stops_delivery(self):
        bus = InMemoryBus()
        received = []

        async def on_event(evt):
            received.append(evt)

        sub = await bus.subscribe("chats", on_event)
        await sub.cancel()
        await bus.publish(chat_event(body="late"))

        assert received == []
        assert bus.subscriber_count() == 0

    async def test_subscription_released_by_context_manager(self):
        bus = InMemoryBus()

        async def on_event(evt):
            return None

        sub = await bus.subscribe("chats", on_event)
        async with sub:
            assert bus.subscriber_count("chats") == 1
        assert bus.subscriber_count("chats") == 0
        assert not sub.active


class FakeRedis:

    def __init__(self, fail=False):
        self.fail = fail
        self.published = []

    async def publish(self, channel, data):
        if self.fail:
            raise RedisConnectionError("Connection refused")
        self.published.append((channel, data))
        return 1


class ScriptedPubSub:
    """Replays published payloads as pattern messages, then stops the listener."""

    def __init__(self, bus, messages):
        self._bus = bus
        self._messages = list(messages)

    async def get_message(self, ignore_subscribe_messages=False, timeout=None):
        if not self._messages:
            self._bus._running = False
            return None
        channel, data = self._messages.pop(0)
        return {"type": "pmessage", "pattern": b"feed:*", "channel": channel.encode(), "data": data.encode()}


def redis_bus(fake):
    bus = RedisBus("redis://localhost:6379/0")
    bus._redis = fake
    return bus


async def replay(bus, messages):
    bus._pubsub = ScriptedPubSub(bus, messages)
    bus._running = True
    await bus._listen()


class TestRedisBus:

    async def test_publish_goes_to_table_channel_only(self):
        fake = FakeRedis()
        bus = redis_bus(fake)
        received = []

        async def on_event(evt):
            received.append(evt)

        await bus.subscribe("chats", on_event)
        await bus.publish(chat_event(body="hi"))

        assert received == []
        assert [channel for channel, _ in fake.published] == ["feed:chats"]

    async def test_events_round_trip_with_timestamps(self):
        fake = FakeRedis()
        bus = redis_bus(fake)
        received = []

        async def on_event(evt):
            received.append(evt)

        created = datetime(2025, 1, 15, 10, 0, 0, 123000, tzinfo=timezone.utc)
        await bus.subscribe("chats", on_event, event="INSERT", column="receiver_id", value="bob")
        await bus.publish(ChangeEvent(table="chats", type="INSERT", new={
            "_id": "m1",
            "conversation_id": "T1",
            "sender_id": "alice",
            "receiver_id": "bob",
            "body": "is it still available?",
            "created_at": created,
            "is_read": False,
        }))
        await bus.publish(chat_event(receiver_id="carol", body="not for bob"))
        await replay(bus, fake.published)

        assert len(received) == 1
        message = Message.model_validate(received[0].new)
        assert message.id == "m1"
        assert message.created_at == created

    async def test_malformed_payload_is_dropped(self):
        bus = redis_bus(FakeRedis())
        received = []

        async def on_event(evt):
            received.append(evt.row["body"])

        await bus.subscribe("chats", on_event)
        await replay(bus, [
            ("feed:chats", "{not json"),
            ("feed:chats", chat_event(body="after").model_dump_json()),
        ])

        assert received == ["after"]

    async def test_publish_failure_is_reported(self):
        bus = redis_bus(FakeRedis(fail=True))
        with pytest.raises(RemoteOperationFailed):
            await bus.publish(chat_event(body="hi"))


class TestCommittedWrites:

    async def test_message_is_stored_when_feed_is_down(self, seeded_db):
        repo = MessageRepository(seeded_db, redis_bus(FakeRedis(fail=True)))

        saved = await repo.save_message("T1", "alice", "bob", "hi")

        assert saved["body"] == "hi"
        assert await seeded_db["chats"].count_documents({}) == 1

    async def test_read_receipt_is_stored_when_feed_is_down(self, seeded_db):
        repo = MessageRepository(seeded_db, redis_bus(FakeRedis(fail=True)))
        saved = await repo.save_message("T1", "alice", "bob", "hi")

        assert await repo.mark_read("bob", [saved["_id"]]) == 1
        assert await repo.count_unread("bob") == 0

    async def test_notification_is_stored_when_feed_is_down(self, seeded_db):
        repo = NotificationRepository(seeded_db, redis_bus(FakeRedis(fail=True)))

        created = await repo.create("alice", "Bob viewed your product.", "perfume-1")

        assert await repo.delete(created["_id"]) is True
        assert await seeded_db["notifications"].count_documents({}) == 0

"""
Shared fixtures: an in-memory MongoDB, an in-process change feed and seeded profiles.
"""
from datetime import datetime, timedelta, timezone

import pytest
from mongomock_motor import AsyncMongoMockClient

from app.repositories.message_repository import MessageRepository
from app.repositories.notification_repository import NotificationRepository
from app.repositories.product_repository import ProductRepository
from app.repositories.profile_repository import ProfileRepository
from app.services.chat_service import ChatService
from app.services.notification_service import NotificationService
from app.services.session_service import UserSession
from app.utils.realtime_bus import InMemoryBus


PROFILES = [
    {"_id": "alice", "name": "Alice", "profile_picture": "https://cdn.example/alice.png", "role": "store"},
    {"_id": "bob", "name": "Bob", "profile_picture": "", "role": "buyer"},
    {"_id": "carol", "name": "Carol", "profile_picture": None, "role": "buyer"},
    {"_id": "dave", "name": "Dave", "profile_picture": "", "role": "store"},
]

BASE_TIME = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)


def at(seconds: int) -> datetime:
    return BASE_TIME + timedelta(seconds=seconds)


@pytest.fixture
def db():
    return AsyncMongoMockClient()["marketplace_test"]


@pytest.fixture
def bus():
    return InMemoryBus()


@pytest.fixture
async def seeded_db(db):
    await db["profiles"].insert_many([dict(p) for p in PROFILES])
    await db["products"].insert_many([
        {"_id": "perfume-1", "user_id": "alice", "name": "Oud Nights"},
        {"_id": "perfume-2", "user_id": "dave", "name": "Citrus Bloom"},
    ])
    return db


@pytest.fixture
def message_repo(seeded_db, bus):
    return MessageRepository(seeded_db, bus)


@pytest.fixture
def chat_service(seeded_db, bus):
    return ChatService(MessageRepository(seeded_db, bus), ProfileRepository(seeded_db))


@pytest.fixture
def notification_service(seeded_db, bus):
    return NotificationService(
        NotificationRepository(seeded_db, bus),
        ProductRepository(seeded_db),
        ProfileRepository(seeded_db),
    )


@pytest.fixture
def alice():
    return UserSession("alice", "Alice", "store")


@pytest.fixture
def bob():
    return UserSession("bob", "Bob", "buyer")


@pytest.fixture
def carol():
    return UserSession("carol", "Carol", "buyer")


async def insert_message(db, conversation_id, sender_id, receiver_id, body, created_at, is_read=False):
    """Write a message row directly, bypassing the change feed."""
    doc = {
        "conversation_id": conversation_id,
        "sender_id": sender_id,
        "receiver_id": receiver_id,
        "body": body,
        "created_at": created_at,
        "is_read": is_read,
    }
    result = await db["chats"].insert_one(doc)
    return str(result.inserted_id)

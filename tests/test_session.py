"""
Tests for the signed-in session lifecycle.
"""
import asyncio
import time

import pytest
from bson import ObjectId

from app.core.config import get_settings
from app.core.errors import NotAuthenticatedError
from app.repositories.profile_repository import ProfileRepository
from app.services.session_service import SessionManager, UserSession
from app.utils.security import create_access_token
from app.views.thread import ThreadView
from app.views.unread import UnreadTracker
from conftest import at, insert_message


async def test_resolve_opens_session_from_token(seeded_db):
    manager = SessionManager()
    token = create_access_token("alice")

    session = await manager.resolve(token, ProfileRepository(seeded_db))

    assert session.user_id == "alice"
    assert session.display_name == "Alice"
    assert session.role == "store"
    assert await manager.resolve(token, ProfileRepository(seeded_db)) is session


async def test_invalid_token_is_rejected(seeded_db):
    manager = SessionManager()
    with pytest.raises(NotAuthenticatedError):
        await manager.resolve("not-a-token", ProfileRepository(seeded_db))


async def test_expired_token_is_rejected(seeded_db):
    manager = SessionManager()
    token = create_access_token("alice", expires_minutes=-1)
    with pytest.raises(NotAuthenticatedError):
        await manager.resolve(token, ProfileRepository(seeded_db))


async def test_sign_out_closes_attached_views(seeded_db, chat_service, bus):
    manager = SessionManager()
    token = create_access_token("bob")
    session = await manager.resolve(token, ProfileRepository(seeded_db))

    tracker = UnreadTracker(session, chat_service, bus)
    await tracker.open()
    assert session.views == {tracker}

    assert await manager.sign_out(token) is True
    assert tracker.closed
    assert bus.subscriber_count() == 0
    assert len(manager) == 0
    assert await manager.sign_out(token) is False


async def test_closed_session_cannot_open_views(chat_service, bus):
    session = UserSession("bob", "Bob")
    await session.close()
    with pytest.raises(NotAuthenticatedError):
        await UnreadTracker(session, chat_service, bus).open()
    assert bus.subscriber_count() == 0


class YieldingProfiles:
    """Profile lookup that hands control back to the loop before answering."""

    def __init__(self, repo):
        self._repo = repo

    async def get_profile(self, user_id):
        await asyncio.sleep(0)
        return await self._repo.get_profile(user_id)


class GatedChatService:
    """Chat service whose reads block until the test releases them."""

    def __init__(self, service):
        self._service = service
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def _gate(self):
        self.entered.set()
        await self.release.wait()

    async def get_unread_count(self, user_id):
        await self._gate()
        return await self._service.get_unread_count(user_id)

    async def open_thread(self, conversation_id, self_id):
        await self._gate()
        return await self._service.open_thread(conversation_id, self_id)

    async def mark_read(self, receiver_id, message_ids):
        return await self._service.mark_read(receiver_id, message_ids)


async def test_concurrent_resolves_share_one_session(seeded_db, chat_service, bus):
    manager = SessionManager()
    token = create_access_token("bob")
    profiles = YieldingProfiles(ProfileRepository(seeded_db))

    first, second = await asyncio.gather(manager.resolve(token, profiles), manager.resolve(token, profiles))
    assert first is second

    tracker = await UnreadTracker(first, chat_service, bus).open()
    await manager.sign_out(token)
    assert tracker.closed
    assert bus.subscriber_count() == 0


async def test_expired_sessions_are_evicted(seeded_db, chat_service, bus):
    now = [time.time()]
    manager = SessionManager(clock=lambda: now[0])
    profiles = ProfileRepository(seeded_db)
    token = create_access_token("bob", expires_minutes=5)
    session = await manager.resolve(token, profiles)
    tracker = await UnreadTracker(session, chat_service, bus).open()

    now[0] += 600
    await manager.resolve(create_access_token("alice"), profiles)

    assert len(manager) == 1
    assert tracker.closed
    assert not session.active


async def test_token_that_stops_validating_drops_session(seeded_db, chat_service, bus, monkeypatch):
    manager = SessionManager()
    profiles = ProfileRepository(seeded_db)
    token = create_access_token("bob")
    session = await manager.resolve(token, profiles)
    tracker = await UnreadTracker(session, chat_service, bus).open()

    monkeypatch.setattr(get_settings(), "jwt_secret", "rotated-secret")
    with pytest.raises(NotAuthenticatedError):
        await manager.resolve(token, profiles)

    assert len(manager) == 0
    assert tracker.closed


async def test_view_closed_while_loading_is_released(chat_service, bus, bob):
    gated = GatedChatService(chat_service)
    tracker = UnreadTracker(bob, gated, bus)

    opening = asyncio.create_task(tracker.open())
    await gated.entered.wait()
    await bob.close()
    gated.release.set()

    with pytest.raises(NotAuthenticatedError):
        await opening
    assert tracker.closed
    assert tracker._consumer is None
    assert bus.subscriber_count() == 0


async def test_thread_closed_while_loading_sends_no_read_receipt(seeded_db, chat_service, bus, bob):
    message_id = await insert_message(seeded_db, "T1", "alice", "bob", "still there?", at(0))
    gated = GatedChatService(chat_service)
    view = ThreadView(bob, "T1", gated, bus)

    opening = asyncio.create_task(view.open())
    await gated.entered.wait()
    await bob.close()
    gated.release.set()

    with pytest.raises(NotAuthenticatedError):
        await opening
    await asyncio.sleep(0)
    row = await seeded_db["chats"].find_one({"_id": ObjectId(message_id)})
    assert row["is_read"] is False
    assert not view._pending

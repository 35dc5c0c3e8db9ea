"""
End-to-end flows across the thread, inbox and unread views of two users.
"""
from app.views.inbox import InboxView
from app.views.thread import ThreadView
from app.views.unread import UnreadTracker


async def test_first_message_flows_to_inbox_badge_and_read_receipt(chat_service, bus, alice, bob):
    await chat_service.send_message("alice", "bob", "T1", "hi")

    async with InboxView(alice, chat_service, bus) as inbox:
        assert len(inbox.summaries) == 1
        summary = inbox.summaries[0]
        assert summary.peer_id == "bob"
        assert summary.peer_display_name == "Bob"
        assert summary.last_message_body == "hi"
        assert summary.last_message_from_self is True

    async with UnreadTracker(bob, chat_service, bus) as badge:
        assert badge.state.has_unread is True
        assert badge.state.display_count == "1"

        async with ThreadView(bob, "T1", chat_service, bus) as thread:
            await thread.settle()
            assert thread.messages[0].is_read is True

        await badge.settle()
        assert badge.count == 0
        assert badge.state.has_unread is False


async def test_reply_updates_both_inboxes_live(chat_service, bus, alice, bob):
    await chat_service.send_message("alice", "bob", "T1", "is the 50ml still available?")

    async with InboxView(alice, chat_service, bus) as alice_inbox, \
            InboxView(bob, chat_service, bus) as bob_inbox, \
            ThreadView(bob, "T1", chat_service, bus) as bob_thread:
        await bob_thread.send("yes, shipping tomorrow")
        await bob_thread.settle()
        await alice_inbox.settle()
        await bob_inbox.settle()

        assert alice_inbox.summaries[0].last_message_body == "yes, shipping tomorrow"
        assert alice_inbox.summaries[0].last_message_from_self is False
        assert bob_inbox.summaries[0].last_message_body == "yes, shipping tomorrow"
        assert bob_inbox.summaries[0].last_message_from_self is True
        assert [m.body for m in bob_thread.messages] == ["is the 50ml still available?", "yes, shipping tomorrow"]


async def test_start_conversation_reuses_existing_thread(chat_service, bus, alice):
    first = await chat_service.start_conversation("alice", "dave")
    again = await chat_service.start_conversation("dave", "alice")

    assert first.created is True
    assert again.created is False
    assert again.conversation_id == first.conversation_id

    async with ThreadView(alice, first.conversation_id, chat_service, bus) as thread:
        assert [m.body for m in thread.messages] == ["👋"]
        assert thread.peer.name == "Dave"

"""Tests for ConversationIndex."""

from messenger.models import MessageType, Receiver, ReceiverKind


async def _send(store, sender_id, receiver, text="hi"):
    return await store.create_message(sender_id, receiver, MessageType.TEXT, text)


class TestUnreadCount:
    """Tests for ConversationIndex.get_unread_count()."""

    async def test_counts_sent_and_delivered(self, store, index, users):
        """Test three messages with one read leave two unread."""
        alice, bob = users["alice"].id, users["bob"].id
        messages = [await _send(store, alice, Receiver.user(bob)) for _ in range(3)]
        await store.mark_delivered(messages[1].id)
        await store.mark_read([messages[0].id], bob)

        assert await index.get_unread_count(bob, alice) == 2

    async def test_counts_only_incoming(self, store, index, users):
        """Test that the user's own messages are not unread for them."""
        alice, bob = users["alice"].id, users["bob"].id
        await _send(store, alice, Receiver.user(bob))
        await _send(store, bob, Receiver.user(alice))

        assert await index.get_unread_count(bob, alice) == 1
        assert await index.get_unread_count(alice, bob) == 1

    async def test_excludes_hidden_messages(self, store, index, users):
        """Test that messages the user deleted for themselves are not counted."""
        alice, bob = users["alice"].id, users["bob"].id
        message = await _send(store, alice, Receiver.user(bob))
        await _send(store, alice, Receiver.user(bob))
        await store.delete_for_user(message.id, bob)

        assert await index.get_unread_count(bob, alice) == 1

    async def test_group_unread(self, store, index, group, users):
        """Test group unread counts exclude the viewer's own messages."""
        alice, bob = users["alice"].id, users["bob"].id
        await _send(store, alice, Receiver.group(group.id))
        await _send(store, alice, Receiver.group(group.id))
        await _send(store, bob, Receiver.group(group.id))

        assert await index.get_unread_count(bob, group.id, ReceiverKind.GROUP) == 2
        assert await index.get_unread_count(alice, group.id, ReceiverKind.GROUP) == 1

    async def test_zero_for_empty_conversation(self, index, users):
        """Test no messages means zero unread."""
        assert await index.get_unread_count(users["alice"].id, users["bob"].id) == 0


class TestUnreadSummary:
    """Tests for ConversationIndex.get_unread_summary()."""

    async def test_summary_totals(self, store, index, group, users):
        """Test the per-conversation breakdown and total."""
        alice, bob, carol = (users[n].id for n in ("alice", "bob", "carol"))
        await _send(store, alice, Receiver.user(bob))
        await _send(store, carol, Receiver.user(bob))
        await _send(store, carol, Receiver.user(bob))
        await _send(store, alice, Receiver.group(group.id))

        summary = await index.get_unread_summary(bob)
        assert summary.by_users == {alice: 1, carol: 2}
        assert summary.by_groups == {group.id: 1}
        assert summary.total == 4


class TestRecentConversations:
    """Tests for ConversationIndex.list_recent_conversations()."""

    async def test_most_recent_first(self, store, index, clock, group, users):
        """Test ordering by last activity across direct and group chats."""
        alice, bob, carol = (users[n].id for n in ("alice", "bob", "carol"))
        await _send(store, bob, Receiver.user(alice))
        clock.advance(minutes=1)
        await _send(store, alice, Receiver.group(group.id))
        clock.advance(minutes=1)
        await _send(store, carol, Receiver.user(alice), "latest")

        summaries = await index.list_recent_conversations(alice)
        assert [s.conversation_id for s in summaries] == [
            f"user:{carol}",
            f"group:{group.id}",
            f"user:{bob}",
        ]
        assert summaries[0].last_message.content == "latest"
        assert summaries[0].unread_count == 1

    async def test_equal_timestamps_are_deterministic(self, store, index, users):
        """Test that ties are broken by conversation id."""
        alice, bob, carol = (users[n].id for n in ("alice", "bob", "carol"))
        await _send(store, bob, Receiver.user(alice))
        await _send(store, carol, Receiver.user(alice))

        summaries = await index.list_recent_conversations(alice)
        ids = [s.conversation_id for s in summaries]
        assert ids == sorted(ids)

    async def test_limit(self, store, index, users):
        """Test the limit is applied after sorting."""
        alice, bob, carol = (users[n].id for n in ("alice", "bob", "carol"))
        await _send(store, bob, Receiver.user(alice))
        await _send(store, carol, Receiver.user(alice))

        assert len(await index.list_recent_conversations(alice, limit=1)) == 1
        assert await index.list_recent_conversations(alice, limit=0) == []

    async def test_deleted_message_is_redacted(self, store, index, users):
        """Test that a globally deleted last message carries no body."""
        alice, bob = users["alice"].id, users["bob"].id
        message = await _send(store, alice, Receiver.user(bob), "oops")
        await store.delete_for_everyone(message.id, alice)

        summaries = await index.list_recent_conversations(bob)
        assert summaries[0].last_message.is_deleted
        assert summaries[0].last_message.content is None

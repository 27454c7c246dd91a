"""Tests for MessageStore."""

import asyncio
import uuid

import pytest

from messenger.errors import (
    Expired,
    Forbidden,
    NotAuthorized,
    NotFound,
    NotMember,
    ValidationError,
)
from messenger.message_store import validate_payload
from messenger.models import (
    ContactPayload,
    LocationPayload,
    MediaPayload,
    Message,
    MessageStatus,
    MessageType,
    Receiver,
)


async def _send(store, sender, receiver_id, text="hello"):
    return await store.create_message(
        sender.id, Receiver.user(receiver_id), MessageType.TEXT, text
    )


class TestValidatePayload:
    """Tests for payload validation."""

    def test_text_requires_content(self):
        """Test that text messages need non-empty content."""
        assert validate_payload(MessageType.TEXT, "hi") == {"content": "hi"}
        with pytest.raises(ValidationError):
            validate_payload(MessageType.TEXT, "   ")

    def test_media_requires_descriptor(self):
        """Test that media types need a media descriptor with a url."""
        media = MediaPayload(url="https://cdn/v.mp4", duration=3.5)
        assert validate_payload(MessageType.VIDEO, media) == {"media": media}
        with pytest.raises(ValidationError):
            validate_payload(MessageType.IMAGE, "not media")
        with pytest.raises(ValidationError):
            validate_payload(MessageType.AUDIO, MediaPayload(url=""))

    def test_location_range(self):
        """Test coordinate bounds."""
        with pytest.raises(ValidationError):
            validate_payload(MessageType.LOCATION, LocationPayload(lat=91, lng=0))

    def test_type_mismatch(self):
        """Test that a payload for another type is rejected."""
        with pytest.raises(ValidationError):
            validate_payload(MessageType.CONTACT, LocationPayload(lat=0, lng=0))


class TestCreateMessage:
    """Tests for MessageStore.create_message()."""

    async def test_creates_sent_message(self, store, storage, users):
        """Test a valid text message is persisted with status sent."""
        message = await _send(store, users["alice"], users["bob"].id)

        assert message.status == MessageStatus.SENT
        stored = await storage.get_message(message.id)
        assert stored.content == "hello"
        assert stored.seq is not None

    async def test_contact_message(self, store, users):
        """Test structured payloads are stored in their own field."""
        message = await store.create_message(
            users["alice"].id,
            Receiver.user(users["bob"].id),
            MessageType.CONTACT,
            ContactPayload(name="Dan", handle="+1(212) 555-0199"),
        )
        assert message.contact.name == "Dan"
        assert message.content is None

    async def test_invalid_payload_not_persisted(self, store, storage, users):
        """Test that validation failures leave no trace."""
        with pytest.raises(ValidationError):
            await store.create_message(
                users["alice"].id, Receiver.user(users["bob"].id), MessageType.IMAGE, "x"
            )
        assert await storage.get_conversation(users["alice"].id, users["bob"].id, 10) == []

    async def test_unknown_receiver(self, store, users):
        """Test sending to an unknown user."""
        with pytest.raises(NotFound):
            await _send(store, users["alice"], "missing")

    async def test_blocked_either_direction(self, store, directory, users):
        """Test that a block in either direction prevents sending."""
        await directory.block(users["bob"].id, users["alice"].id)
        with pytest.raises(NotAuthorized):
            await _send(store, users["alice"], users["bob"].id)
        with pytest.raises(NotAuthorized):
            await _send(store, users["bob"], users["alice"].id)

    async def test_group_non_member(self, store, group, users):
        """Test that outsiders cannot send to a group."""
        with pytest.raises(NotMember):
            await store.create_message(
                users["carol"].id, Receiver.group(group.id), MessageType.TEXT, "hi"
            )

    async def test_reply_in_same_conversation(self, store, users):
        """Test replies referencing a message of the same conversation."""
        original = await _send(store, users["alice"], users["bob"].id)
        reply = await store.create_message(
            users["bob"].id,
            Receiver.user(users["alice"].id),
            MessageType.TEXT,
            "re",
            reply_to=original.id,
        )
        assert reply.reply_to == original.id

    async def test_reply_to_other_conversation(self, store, users):
        """Test that replies cannot point into another conversation."""
        elsewhere = await _send(store, users["alice"], users["carol"].id)
        with pytest.raises(NotFound):
            await store.create_message(
                users["alice"].id,
                Receiver.user(users["bob"].id),
                MessageType.TEXT,
                "re",
                reply_to=elsewhere.id,
            )

    async def test_timestamps_never_go_backwards(self, store, clock, users):
        """Test that a clock step back does not reorder messages."""
        first = await _send(store, users["alice"], users["bob"].id)
        clock.advance(seconds=-30)
        second = await _send(store, users["alice"], users["bob"].id)
        assert second.created_at >= first.created_at
        assert second.seq > first.seq

    async def test_tracks_creation(self, store, storage, users):
        """Test that creation is audited."""
        message = await _send(store, users["alice"], users["bob"].id)
        events = await storage.get_trace_events(event_types=["message_created"])
        assert events[0].data["message_id"] == message.id


class TestStatusTransitions:
    """Tests for forward-only status changes."""

    async def test_mark_delivered(self, store, users):
        """Test sent -> delivered."""
        message = await _send(store, users["alice"], users["bob"].id)
        assert await store.mark_delivered(message.id) is True
        assert (await store.get_message(message.id)).status == MessageStatus.DELIVERED

    async def test_mark_delivered_after_read_is_noop(self, store, users):
        """Test that a late delivered ack does not regress read."""
        message = await _send(store, users["alice"], users["bob"].id)
        await store.mark_read([message.id], users["bob"].id)

        assert await store.mark_delivered(message.id) is False
        assert (await store.get_message(message.id)).status == MessageStatus.READ

    @pytest.mark.parametrize("read_first", [True, False])
    async def test_concurrent_delivered_and_read(self, store, users, read_first):
        """Test that racing delivered and read acks always settle on read."""
        message = await _send(store, users["alice"], users["bob"].id)
        read = store.mark_read([message.id], users["bob"].id)
        delivered = store.mark_delivered(message.id)

        await asyncio.gather(*((read, delivered) if read_first else (delivered, read)))

        assert (await store.get_message(message.id)).status == MessageStatus.READ

    async def test_mark_read_from_sent(self, store, users):
        """Test that read can skip delivered and fills both timestamps."""
        message = await _send(store, users["alice"], users["bob"].id)
        assert await store.mark_read([message.id], users["bob"].id) == [message.id]

        stored = await store.get_message(message.id)
        assert stored.status == MessageStatus.READ
        assert stored.delivered_at is not None
        assert stored.read_at is not None

    async def test_mark_read_idempotent(self, store, users):
        """Test that reading twice changes nothing."""
        message = await _send(store, users["alice"], users["bob"].id)
        await store.mark_read([message.id], users["bob"].id)
        assert await store.mark_read([message.id], users["bob"].id) == []

    async def test_mark_read_only_by_addressee(self, store, users):
        """Test that senders and third parties cannot mark read."""
        message = await _send(store, users["alice"], users["bob"].id)
        assert await store.mark_read([message.id], users["alice"].id) == []
        assert await store.mark_read([message.id], users["carol"].id) == []
        assert (await store.get_message(message.id)).status == MessageStatus.SENT

    async def test_mark_delivered_unknown(self, store):
        """Test delivered ack for an unknown message."""
        with pytest.raises(NotFound):
            await store.mark_delivered("missing")

    async def test_failed_is_terminal(self, store, storage, clock, users):
        """Test that no transition leaves failed."""
        failed = Message(
            id=str(uuid.uuid4()),
            sender_id=users["alice"].id,
            receiver=Receiver.user(users["bob"].id),
            type=MessageType.TEXT,
            created_at=clock(),
            content="lost",
            status=MessageStatus.FAILED,
        )
        await storage.insert_message(failed)

        assert await store.mark_delivered(failed.id) is False
        assert await store.mark_read([failed.id], users["bob"].id) == []
        assert (await store.get_message(failed.id)).status == MessageStatus.FAILED


class TestReactions:
    """Tests for reactions."""

    async def test_reaction_replaced(self, store, users):
        """Test that a user has at most one reaction per message."""
        message = await _send(store, users["alice"], users["bob"].id)
        await store.add_reaction(message.id, users["bob"].id, "👍")
        updated = await store.add_reaction(message.id, users["bob"].id, "😂")
        assert updated.reactions == {users["bob"].id: "😂"}

    async def test_reactions_from_both_participants(self, store, users):
        """Test that each participant keeps their own reaction."""
        message = await _send(store, users["alice"], users["bob"].id)
        await store.add_reaction(message.id, users["bob"].id, "👍")
        updated = await store.add_reaction(message.id, users["alice"].id, "❤️")
        assert len(updated.reactions) == 2

    async def test_remove_reaction(self, store, users):
        """Test removing a reaction."""
        message = await _send(store, users["alice"], users["bob"].id)
        await store.add_reaction(message.id, users["bob"].id, "👍")
        await store.remove_reaction(message.id, users["bob"].id)
        assert (await store.get_message(message.id)).reactions == {}

    async def test_outsider_cannot_react(self, store, users):
        """Test that only participants react."""
        message = await _send(store, users["alice"], users["bob"].id)
        with pytest.raises(Forbidden):
            await store.add_reaction(message.id, users["carol"].id, "👍")

    async def test_empty_emoji(self, store, users):
        """Test that an emoji is required."""
        message = await _send(store, users["alice"], users["bob"].id)
        with pytest.raises(ValidationError):
            await store.add_reaction(message.id, users["bob"].id, "")


class TestDeleteForUser:
    """Tests for MessageStore.delete_for_user()."""

    async def test_hidden_only_for_that_user(self, store, users):
        """Test soft delete affects one participant's view."""
        alice, bob = users["alice"], users["bob"]
        message = await _send(store, alice, bob.id)
        await store.delete_for_user(message.id, bob.id)

        assert await store.get_conversation(bob.id, alice.id) == []
        assert [m.id for m in await store.get_conversation(alice.id, bob.id)] == [message.id]
        with pytest.raises(NotFound):
            await store.get_message(message.id, viewer_id=bob.id)


class TestDeleteForEveryone:
    """Tests for MessageStore.delete_for_everyone()."""

    async def test_within_window(self, store, clock, users):
        """Test the sender can delete within 15 minutes."""
        message = await _send(store, users["alice"], users["bob"].id)
        clock.advance(minutes=14)

        deleted = await store.delete_for_everyone(message.id, users["alice"].id)
        assert deleted.is_deleted
        assert deleted.content is None

        page = await store.get_conversation(users["bob"].id, users["alice"].id)
        assert page[0].is_deleted
        assert page[0].content is None

    async def test_after_window_expired(self, store, clock, storage, users):
        """Test that a 16-minute-old message can no longer be deleted."""
        message = await _send(store, users["alice"], users["bob"].id)
        clock.advance(minutes=16)

        with pytest.raises(Expired):
            await store.delete_for_everyone(message.id, users["alice"].id)
        assert (await storage.get_message(message.id)).is_deleted is False

    async def test_only_sender(self, store, users):
        """Test that recipients cannot delete for everyone."""
        message = await _send(store, users["alice"], users["bob"].id)
        with pytest.raises(Forbidden):
            await store.delete_for_everyone(message.id, users["bob"].id)

    async def test_cannot_react_to_deleted(self, store, users):
        """Test reactions on globally deleted messages are rejected."""
        message = await _send(store, users["alice"], users["bob"].id)
        await store.delete_for_everyone(message.id, users["alice"].id)
        with pytest.raises(ValidationError):
            await store.add_reaction(message.id, users["bob"].id, "👍")


class TestGroupMessages:
    """Tests for group history access."""

    async def test_member_reads_history(self, store, group, users):
        """Test members see group messages in order."""
        for text in ("one", "two"):
            await store.create_message(
                users["alice"].id, Receiver.group(group.id), MessageType.TEXT, text
            )
        messages = await store.get_group_messages(group.id, users["bob"].id)
        assert [m.content for m in messages] == ["one", "two"]

    async def test_outsider_cannot_read(self, store, group, users):
        """Test that non-members are refused."""
        with pytest.raises(NotMember):
            await store.get_group_messages(group.id, users["carol"].id)

    async def test_group_read_receipt_requires_membership(self, store, group, users):
        """Test that only members can mark group messages read."""
        message = await store.create_message(
            users["alice"].id, Receiver.group(group.id), MessageType.TEXT, "hi"
        )
        assert await store.mark_read([message.id], users["carol"].id) == []
        assert await store.mark_read([message.id], users["bob"].id) == [message.id]

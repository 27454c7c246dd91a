"""Message Store: owns the message lifecycle."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol, Union

from ..config import DEFAULT_PAGE_SIZE, DELETE_FOR_EVERYONE_WINDOW
from ..directory import IUserDirectory
from ..errors import Expired, Forbidden, NotAuthorized, NotFound, ValidationError
from ..logging_config import get_logger
from ..membership import IMembershipGate
from ..models import (
    MEDIA_TYPES,
    AuditEvent,
    ContactPayload,
    LocationPayload,
    MediaPayload,
    Message,
    MessageStatus,
    MessageType,
    Receiver,
    ReceiverKind,
)
from ..storage import IStorage
from ..tracker import ITracker

logger = get_logger(__name__)

Payload = Union[str, MediaPayload, LocationPayload, ContactPayload]
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IMessageStore(Protocol):
    """Persists messages and applies forward-only status transitions."""

    async def create_message(
        self,
        sender_id: str,
        receiver: Receiver,
        type: MessageType,
        payload: Payload,
        reply_to: str | None = None,
        is_forwarded: bool = False,
    ) -> Message:
        """Validate and persist a new message with status sent."""
        ...

    async def mark_delivered(self, message_id: str) -> bool:
        """Advance to delivered. No-op if already delivered or read."""
        ...

    async def mark_read(self, message_ids: list[str], reader_id: str) -> list[str]:
        """Advance messages addressed to reader to read."""
        ...

    async def add_reaction(self, message_id: str, user_id: str, emoji: str) -> Message:
        """Set the user's single reaction on a message."""
        ...

    async def remove_reaction(self, message_id: str, user_id: str) -> None:
        """Remove the user's reaction."""
        ...

    async def delete_for_user(self, message_id: str, user_id: str) -> None:
        """Hide a message for one participant."""
        ...

    async def delete_for_everyone(self, message_id: str, requester_id: str) -> Message:
        """Sender-only, time-boxed global delete."""
        ...


def validate_payload(type: MessageType, payload: Payload | None) -> dict:
    """Check payload matches type; return the Message field it populates."""
    if type == MessageType.TEXT:
        if not isinstance(payload, str) or not payload.strip():
            raise ValidationError("Text messages require non-empty content")
        return {"content": payload}

    if type in MEDIA_TYPES:
        if not isinstance(payload, MediaPayload) or not payload.url:
            raise ValidationError(f"{type.value} messages require a media descriptor")
        return {"media": payload}

    if type == MessageType.LOCATION:
        if not isinstance(payload, LocationPayload):
            raise ValidationError("Location messages require a location")
        if not -90 <= payload.lat <= 90 or not -180 <= payload.lng <= 180:
            raise ValidationError("Location coordinates out of range")
        return {"location": payload}

    if type == MessageType.CONTACT:
        if not isinstance(payload, ContactPayload) or not payload.name:
            raise ValidationError("Contact messages require a contact card")
        return {"contact": payload}

    raise ValidationError(f"Unsupported message type {type!r}")


def _same_conversation(message: Message, sender_id: str, receiver: Receiver) -> bool:
    if receiver.kind == ReceiverKind.GROUP:
        return message.receiver == receiver
    return message.receiver.kind == ReceiverKind.USER and {
        message.sender_id,
        message.receiver.id,
    } == {sender_id, receiver.id}


class MessageStore:
    """Storage-backed Message Store."""

    def __init__(
        self,
        storage: IStorage,
        directory: IUserDirectory,
        gate: IMembershipGate,
        tracker: ITracker,
        clock: Clock = utcnow,
        delete_window: timedelta = DELETE_FOR_EVERYONE_WINDOW,
    ):
        self._storage = storage
        self._directory = directory
        self._gate = gate
        self._tracker = tracker
        self._clock = clock
        self._delete_window = delete_window
        self._last_created_at: datetime | None = None
        self._clock_lock = asyncio.Lock()

    async def _next_timestamp(self) -> datetime:
        """Creation timestamps never go backwards; equal ones tie-break on seq."""
        async with self._clock_lock:
            now = self._clock()
            if self._last_created_at and now < self._last_created_at:
                now = self._last_created_at
            self._last_created_at = now
            return now

    async def _get(self, message_id: str) -> Message:
        message = await self._storage.get_message(message_id)
        if not message:
            raise NotFound(f"Message {message_id} not found")
        return message

    async def _require_participant(self, message: Message, user_id: str) -> None:
        """Sender, addressed user, or member of the addressed group."""
        if message.sender_id == user_id:
            return
        if message.receiver.kind == ReceiverKind.USER:
            if message.receiver.id != user_id:
                raise Forbidden("You are not a participant of this conversation")
            return
        await self._gate.authorize_read(message.receiver.id, user_id)

    async def create_message(
        self,
        sender_id: str,
        receiver: Receiver,
        type: MessageType,
        payload: Payload,
        reply_to: str | None = None,
        is_forwarded: bool = False,
    ) -> Message:
        """Validate and persist a new message with status sent."""
        fields = validate_payload(type, payload)

        if receiver.kind == ReceiverKind.USER:
            if not await self._directory.exists(receiver.id):
                raise NotFound(f"Receiver {receiver.id} not found")
            if await self._directory.is_blocked(sender_id, receiver.id):
                raise NotAuthorized("Cannot send message to this user")
        else:
            await self._gate.authorize_send(receiver.id, sender_id)

        if reply_to is not None:
            original = await self._storage.get_message(reply_to)
            if not original or not _same_conversation(original, sender_id, receiver):
                raise NotFound(f"Reply target {reply_to} not found in this conversation")

        message = Message(
            id=str(uuid.uuid4()),
            sender_id=sender_id,
            receiver=receiver,
            type=type,
            created_at=await self._next_timestamp(),
            reply_to=reply_to,
            is_forwarded=is_forwarded,
            **fields,
        )
        await self._storage.insert_message(message)

        logger.info(
            "Message %s created: %s -> %s:%s",
            message.id,
            sender_id,
            receiver.kind.value,
            receiver.id,
            extra={"message_id": message.id, "user_id": sender_id},
        )
        await self._tracker.track(
            event_type=AuditEvent.MESSAGE_CREATED,
            actor=sender_id,
            data={
                "message_id": message.id,
                "receiver_type": receiver.kind.value,
                "receiver_id": receiver.id,
                "type": type.value,
            },
        )
        return message

    async def get_message(self, message_id: str, viewer_id: str | None = None) -> Message:
        """Get a message; with a viewer, enforce visibility and redact."""
        message = await self._get(message_id)
        if viewer_id is None:
            return message
        await self._require_participant(message, viewer_id)
        if message.is_hidden_for(viewer_id):
            raise NotFound(f"Message {message_id} not found")
        return message.redacted()

    async def get_conversation(
        self,
        user_id: str,
        peer_id: str,
        limit: int = DEFAULT_PAGE_SIZE,
        before: datetime | None = None,
        after: datetime | None = None,
    ) -> list[Message]:
        """Direct messages between user and peer, oldest first."""
        if not await self._directory.exists(peer_id):
            raise NotFound(f"User {peer_id} not found")
        messages = await self._storage.get_conversation(
            user_id, peer_id, limit, before, after
        )
        return [m.redacted() for m in messages]

    async def get_group_messages(
        self,
        group_id: str,
        viewer_id: str,
        limit: int = DEFAULT_PAGE_SIZE,
        before: datetime | None = None,
        after: datetime | None = None,
    ) -> list[Message]:
        """Group messages visible to a member, oldest first."""
        await self._gate.authorize_read(group_id, viewer_id)
        messages = await self._storage.get_group_messages(
            group_id, viewer_id, limit, before, after
        )
        return [m.redacted() for m in messages]

    async def mark_delivered(self, message_id: str) -> bool:
        """Advance to delivered. No-op if already delivered or read."""
        await self._get(message_id)
        advanced = await self._storage.advance_status(
            [message_id], MessageStatus.DELIVERED, self._clock()
        )
        return bool(advanced)

    async def mark_delivered_for(
        self, message_ids: list[str], recipient_id: str
    ) -> list[str]:
        """Bulk delivered acknowledgement from a recipient.

        Only messages addressed to the recipient (directly or through a
        group they belong to, and not sent by them) are affected.
        """
        eligible = await self._addressed_to(message_ids, recipient_id)
        if not eligible:
            return []
        return await self._storage.advance_status(
            eligible, MessageStatus.DELIVERED, self._clock()
        )

    async def mark_read(self, message_ids: list[str], reader_id: str) -> list[str]:
        """Advance messages addressed to reader to read; returns ids changed."""
        eligible = await self._addressed_to(message_ids, reader_id)
        if not eligible:
            return []
        advanced = await self._storage.advance_status(
            eligible, MessageStatus.READ, self._clock()
        )
        logger.debug("Reader %s marked %d messages read", reader_id, len(advanced))
        return advanced

    async def _addressed_to(self, message_ids: list[str], user_id: str) -> list[str]:
        messages = await self._storage.get_messages(list(dict.fromkeys(message_ids)))
        eligible = []
        member_of: dict[str, bool] = {}
        for message in messages:
            if message.sender_id == user_id:
                continue
            if message.receiver.kind == ReceiverKind.USER:
                if message.receiver.id == user_id:
                    eligible.append(message.id)
                continue
            group_id = message.receiver.id
            if group_id not in member_of:
                group = await self._storage.get_group(group_id)
                member_of[group_id] = bool(group and group.is_member(user_id))
            if member_of[group_id]:
                eligible.append(message.id)
        return eligible

    async def add_reaction(self, message_id: str, user_id: str, emoji: str) -> Message:
        """Set the user's single reaction on a message (last write wins)."""
        if not emoji or not emoji.strip():
            raise ValidationError("Emoji is required")
        message = await self._get(message_id)
        await self._require_participant(message, user_id)
        if message.is_deleted:
            raise ValidationError("Cannot react to a deleted message")

        await self._storage.set_reaction(message_id, user_id, emoji.strip(), self._clock())
        return await self._get(message_id)

    async def remove_reaction(self, message_id: str, user_id: str) -> None:
        """Remove the user's reaction."""
        await self._get(message_id)
        await self._storage.delete_reaction(message_id, user_id)

    async def delete_for_user(self, message_id: str, user_id: str) -> None:
        """Hide a message for one participant."""
        message = await self._get(message_id)
        await self._require_participant(message, user_id)
        await self._storage.add_deletion(message_id, user_id, self._clock())

    async def delete_for_everyone(self, message_id: str, requester_id: str) -> Message:
        """Sender-only global delete within the delete window."""
        message = await self._get(message_id)
        if message.sender_id != requester_id:
            raise Forbidden("Only the sender can delete messages for everyone")

        now = self._clock()
        if now - message.created_at > self._delete_window:
            minutes = int(self._delete_window.total_seconds() // 60)
            raise Expired(
                f"Messages can only be deleted within {minutes} minutes of sending"
            )

        if await self._storage.mark_deleted(message_id):
            await self._tracker.track(
                event_type=AuditEvent.MESSAGE_DELETED_FOR_EVERYONE,
                actor=requester_id,
                data={
                    "message_id": message_id,
                    "receiver_type": message.receiver.kind.value,
                    "receiver_id": message.receiver.id,
                    "created_at": message.created_at.isoformat(),
                },
            )
            logger.info("Message %s deleted for everyone", message_id)

        return (await self._get(message_id)).redacted()

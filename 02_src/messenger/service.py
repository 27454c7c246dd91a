"""MessagingService: the send pipeline and receipt handling."""

from dataclasses import replace
from datetime import datetime

from .config import DEFAULT_PAGE_SIZE, RECENT_CONVERSATIONS_LIMIT
from .conversations import ConversationIndex
from .directory import UserDirectory
from .logging_config import get_logger
from .membership import MembershipGate
from .message_store import MessageStore, Payload
from .models import (
    ConversationSummary,
    Message,
    MessageStatus,
    MessageType,
    Receiver,
    ReceiverKind,
    RoutingResult,
    SessionHandle,
    UnreadSummary,
    WireEvent,
    wire_payload,
)
from .models.delivery import CloseCallable, SendCallable
from .presence import PresenceTracker, can_see_presence
from .router import DeliveryRouter
from .storage import IStorage
from .transport import SessionRegistry

logger = get_logger(__name__)


class MessagingService:
    """Coordinates gate, store, router and index for client operations."""

    def __init__(
        self,
        storage: IStorage,
        store: MessageStore,
        index: ConversationIndex,
        presence: PresenceTracker,
        router: DeliveryRouter,
        gate: MembershipGate,
        directory: UserDirectory,
        sessions: SessionRegistry,
    ):
        self._storage = storage
        self._store = store
        self._index = index
        self._presence = presence
        self._router = router
        self._gate = gate
        self._directory = directory
        self._sessions = sessions

    # Sending
    async def send_message(
        self,
        sender_id: str,
        receiver: Receiver,
        type: MessageType,
        payload: Payload,
        reply_to: str | None = None,
        is_forwarded: bool = False,
    ) -> tuple[Message, RoutingResult]:
        """Authorize, persist, then fan out.

        Persistence is the durability boundary: a failed fan-out is logged
        and never undoes the stored message.
        """
        await self._presence.touch(sender_id)

        async with self._router.sequenced(sender_id, receiver):
            message = await self._store.create_message(
                sender_id, receiver, type, payload, reply_to, is_forwarded
            )
            try:
                result = await self._router.route(message)
            except Exception as e:
                logger.error("Routing of message %s failed: %s", message.id, e, exc_info=True)
                result = RoutingResult(message_id=message.id)

        return message, result

    # Fetching
    async def fetch_conversation(
        self,
        user_id: str,
        peer_id: str,
        limit: int = DEFAULT_PAGE_SIZE,
        before: datetime | None = None,
        after: datetime | None = None,
    ) -> list[Message]:
        """Direct conversation page; pending messages become delivered."""
        await self._presence.touch(user_id)
        messages = await self._store.get_conversation(user_id, peer_id, limit, before, after)
        return await self._deliver_fetched(user_id, messages)

    async def fetch_group_messages(
        self,
        group_id: str,
        user_id: str,
        limit: int = DEFAULT_PAGE_SIZE,
        before: datetime | None = None,
        after: datetime | None = None,
    ) -> list[Message]:
        """Group page; pending messages from others become delivered."""
        await self._presence.touch(user_id)
        messages = await self._store.get_group_messages(
            group_id, user_id, limit, before, after
        )
        return await self._deliver_fetched(user_id, messages)

    async def _deliver_fetched(self, user_id: str, messages: list[Message]) -> list[Message]:
        pending = [
            m.id
            for m in messages
            if m.sender_id != user_id and m.status == MessageStatus.SENT
        ]
        if not pending:
            return messages

        advanced = set(await self._store.mark_delivered_for(pending, user_id))
        if not advanced:
            return messages

        updated = [
            replace(m, status=MessageStatus.DELIVERED) if m.id in advanced else m
            for m in messages
        ]
        await self._router.notify_status(
            [m for m in updated if m.id in advanced], MessageStatus.DELIVERED, user_id
        )
        return updated

    # Receipts
    async def acknowledge_delivery(self, user_id: str, message_ids: list[str]) -> list[str]:
        """Client confirmed receipt of pushed messages."""
        advanced = await self._store.mark_delivered_for(message_ids, user_id)
        await self._notify(advanced, MessageStatus.DELIVERED, user_id)
        return advanced

    async def mark_read(self, user_id: str, message_ids: list[str]) -> list[str]:
        await self._presence.touch(user_id)
        advanced = await self._store.mark_read(message_ids, user_id)
        await self._notify(advanced, MessageStatus.READ, user_id)
        return advanced

    async def _notify(self, message_ids: list[str], status: MessageStatus, by_user: str) -> None:
        if not message_ids:
            return
        messages = await self._storage.get_messages(message_ids)
        await self._router.notify_status(messages, status, by_user)

    # Reactions and deletes
    async def add_reaction(self, message_id: str, user_id: str, emoji: str) -> Message:
        return await self._store.add_reaction(message_id, user_id, emoji)

    async def remove_reaction(self, message_id: str, user_id: str) -> None:
        await self._store.remove_reaction(message_id, user_id)

    async def delete_for_user(self, message_id: str, user_id: str) -> None:
        await self._store.delete_for_user(message_id, user_id)

    async def delete_for_everyone(self, message_id: str, user_id: str) -> Message:
        """Global delete; live participants get the redacted message."""
        message = await self._store.delete_for_everyone(message_id, user_id)
        try:
            await self._router.route(message)
        except Exception as e:
            logger.error("Routing of deletion %s failed: %s", message_id, e, exc_info=True)
        return message

    # Index
    async def unread_count(
        self, user_id: str, peer_id: str, kind: ReceiverKind = ReceiverKind.USER
    ) -> int:
        if kind == ReceiverKind.GROUP:
            await self._gate.authorize_read(peer_id, user_id)
        return await self._index.get_unread_count(user_id, peer_id, kind)

    async def unread_summary(self, user_id: str) -> UnreadSummary:
        return await self._index.get_unread_summary(user_id)

    async def recent_conversations(
        self, user_id: str, limit: int = RECENT_CONVERSATIONS_LIMIT
    ) -> list[ConversationSummary]:
        await self._presence.touch(user_id)
        return await self._index.list_recent_conversations(user_id, limit)

    # Presence
    async def presence_of(self, viewer_id: str, subject_id: str) -> dict:
        """Online/last-seen of subject as the viewer may see it."""
        subject = await self._directory.get_user(subject_id)
        if not can_see_presence(viewer_id, subject):
            return {"user_id": subject_id, "online": None, "last_seen": None}
        return {
            "user_id": subject_id,
            "online": await self._presence.is_online(subject_id),
            "last_seen": subject.last_seen,
        }

    # Sessions
    async def connect(
        self,
        user_id: str,
        send: SendCallable,
        close: CloseCallable | None = None,
    ) -> SessionHandle:
        """Register a live session and flush messages that waited for it."""
        await self._directory.get_user(user_id)
        session = self._sessions.connect(user_id, send, close)
        await self._presence.touch(user_id)
        await self._flush_pending(session)
        return session

    async def disconnect(self, session: SessionHandle) -> None:
        self._sessions.disconnect(session)
        await self._presence.touch(session.user_id)

    async def _flush_pending(self, session: SessionHandle) -> None:
        """Store-and-forward: hand still-undelivered messages to a new session.

        Messages are marked delivered before the push, so the transition does
        not depend on the session staying open while frames are written. A
        push that fails leaves the rest for the next fetch.
        """
        user_id = session.user_id
        group_ids = await self._storage.get_user_group_ids(user_id)
        pending_ids = await self._storage.get_undelivered_ids(user_id, group_ids)
        if not pending_ids:
            return

        messages = [
            m
            for m in await self._storage.get_messages(pending_ids)
            if not m.is_hidden_for(user_id)
        ]
        blocked = await self._directory.blocked_among(
            user_id, list({m.sender_id for m in messages})
        )
        messages = [m for m in messages if m.sender_id not in blocked]
        if not messages:
            return

        advanced = set(
            await self._store.mark_delivered_for([m.id for m in messages], user_id)
        )
        pushed = 0
        for message in messages:
            if message.id not in advanced:
                continue
            payload = wire_payload(
                WireEvent.RECEIVE_MESSAGE,
                replace(message, status=MessageStatus.DELIVERED).to_payload(),
            )
            if not await self._sessions.push(session, payload):
                break
            pushed += 1

        logger.info(
            "Flushed %d of %d pending messages to session %s",
            pushed,
            len(advanced),
            session.id,
            extra={"session_id": session.id, "user_id": user_id},
        )
        await self._notify(
            [m.id for m in messages if m.id in advanced], MessageStatus.DELIVERED, user_id
        )

    # Ephemeral events
    async def typing(self, user_id: str, receiver: Receiver, is_typing: bool) -> None:
        if receiver.kind == ReceiverKind.GROUP:
            await self._gate.authorize_read(receiver.id, user_id)
        await self._router.relay_typing(user_id, receiver, is_typing)

    async def call_signal(
        self, event: WireEvent, from_id: str, to_id: str, data: dict
    ) -> str | None:
        return await self._router.relay_call_signal(event, from_id, to_id, data)

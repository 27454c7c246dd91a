"""Conversation Index: derived unread counts and recent-conversation ordering.

Nothing here is persisted. Every call recomputes its view from the
Message Store tables, so the aggregates can never drift from the messages.
"""

from typing import Protocol

from ..config import RECENT_CONVERSATIONS_LIMIT
from ..models import (
    ConversationSummary,
    ReceiverKind,
    UnreadSummary,
    conversation_id,
)
from ..storage import IStorage


class IConversationIndex(Protocol):
    """Read model over messages."""

    async def get_unread_count(
        self, user_id: str, peer_id: str, kind: ReceiverKind = ReceiverKind.USER
    ) -> int:
        """Unread messages from a peer (or group) to user."""
        ...

    async def list_recent_conversations(
        self, user_id: str, limit: int = RECENT_CONVERSATIONS_LIMIT
    ) -> list[ConversationSummary]:
        """Direct and group conversations, most recent first."""
        ...


class ConversationIndex:
    """Computes conversation aggregates on demand."""

    def __init__(self, storage: IStorage):
        self._storage = storage

    async def get_unread_count(
        self, user_id: str, peer_id: str, kind: ReceiverKind = ReceiverKind.USER
    ) -> int:
        """Messages with status sent/delivered, excluding ones the user hid."""
        if kind == ReceiverKind.GROUP:
            return await self._storage.count_unread_group(user_id, peer_id)
        return await self._storage.count_unread_direct(user_id, peer_id)

    async def get_unread_summary(self, user_id: str) -> UnreadSummary:
        """Unread counters for every conversation of the user."""
        group_ids = await self._storage.get_user_group_ids(user_id)
        by_users = await self._storage.unread_by_sender(user_id)
        by_groups = await self._storage.unread_by_group(user_id, group_ids)
        return UnreadSummary(
            total=sum(by_users.values()) + sum(by_groups.values()),
            by_users=by_users,
            by_groups=by_groups,
        )

    async def list_recent_conversations(
        self, user_id: str, limit: int = RECENT_CONVERSATIONS_LIMIT
    ) -> list[ConversationSummary]:
        """Merge direct and group conversations.

        Sorted by last activity descending; equal timestamps are ordered by
        conversation id so the result is deterministic.
        """
        if limit <= 0:
            return []

        group_ids = await self._storage.get_user_group_ids(user_id)
        latest_direct = await self._storage.latest_direct_messages(user_id)
        latest_group = await self._storage.latest_group_messages(user_id, group_ids)
        unread_users = await self._storage.unread_by_sender(user_id)
        unread_groups = await self._storage.unread_by_group(user_id, group_ids)

        summaries = [
            ConversationSummary(
                conversation_id=conversation_id(ReceiverKind.USER, peer_id),
                kind=ReceiverKind.USER,
                peer_id=peer_id,
                last_activity=message.created_at,
                unread_count=unread_users.get(peer_id, 0),
                last_message=message.redacted(),
            )
            for peer_id, message in latest_direct.items()
        ]
        summaries.extend(
            ConversationSummary(
                conversation_id=conversation_id(ReceiverKind.GROUP, group_id),
                kind=ReceiverKind.GROUP,
                peer_id=group_id,
                last_activity=message.created_at,
                unread_count=unread_groups.get(group_id, 0),
                last_message=message.redacted(),
            )
            for group_id, message in latest_group.items()
        )

        # Two stable sorts: tie-break key first, then primary key
        summaries.sort(key=lambda s: s.conversation_id)
        summaries.sort(key=lambda s: s.last_activity, reverse=True)
        return summaries[:limit]

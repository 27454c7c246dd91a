"""Derived conversation views."""

from dataclasses import dataclass, field
from datetime import datetime

from .messages import Message, ReceiverKind


@dataclass
class ConversationSummary:
    """One row of the recent-conversations list."""

    conversation_id: str  # "user:<peer_id>" or "group:<group_id>"
    kind: ReceiverKind
    peer_id: str
    last_activity: datetime
    unread_count: int = 0
    last_message: Message | None = None


@dataclass
class UnreadSummary:
    """Unread counters across all conversations of a user."""

    total: int = 0
    by_users: dict[str, int] = field(default_factory=dict)
    by_groups: dict[str, int] = field(default_factory=dict)


def conversation_id(kind: ReceiverKind, peer_id: str) -> str:
    return f"{kind.value}:{peer_id}"

"""Core data models for the messenger."""

from .conversations import ConversationSummary, UnreadSummary, conversation_id
from .delivery import (
    CALL_SIGNAL_EVENTS,
    DeliveryOutcome,
    RoutingResult,
    RoutingState,
    SessionHandle,
    WireEvent,
    wire_payload,
)
from .groups import Group, GroupMember, GroupRole, SendPolicy
from .messages import (
    MEDIA_TYPES,
    STATUS_RANK,
    UNREAD_STATUSES,
    ContactPayload,
    LocationPayload,
    MediaPayload,
    Message,
    MessageStatus,
    MessageType,
    Receiver,
    ReceiverKind,
)
from .tracing import AuditEvent, TraceEvent
from .users import PrivacyLevel, UserProfile

__all__ = [
    # Messages
    "Message",
    "MessageStatus",
    "MessageType",
    "Receiver",
    "ReceiverKind",
    "MediaPayload",
    "LocationPayload",
    "ContactPayload",
    "MEDIA_TYPES",
    "STATUS_RANK",
    "UNREAD_STATUSES",
    # Groups
    "Group",
    "GroupMember",
    "GroupRole",
    "SendPolicy",
    # Users
    "UserProfile",
    "PrivacyLevel",
    # Conversations
    "ConversationSummary",
    "UnreadSummary",
    "conversation_id",
    # Delivery
    "SessionHandle",
    "RoutingResult",
    "RoutingState",
    "DeliveryOutcome",
    "WireEvent",
    "CALL_SIGNAL_EVENTS",
    "wire_payload",
    # Tracing
    "AuditEvent",
    "TraceEvent",
]

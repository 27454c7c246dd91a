"""Messenger core: real-time message delivery and status tracking."""

from .app import Application, IApplication
from .conversations import ConversationIndex, IConversationIndex
from .directory import IUserDirectory, UserDirectory
from .errors import (
    Expired,
    Forbidden,
    MessengerError,
    NotAuthorized,
    NotFound,
    NotMember,
    TransportFailure,
    ValidationError,
)
from .membership import GroupManager, IMembershipGate, MembershipGate
from .message_store import IMessageStore, MessageStore
from .models import (
    Group,
    Message,
    MessageStatus,
    MessageType,
    Receiver,
    ReceiverKind,
    RoutingResult,
    TraceEvent,
    UserProfile,
)
from .presence import IPresenceTracker, PresenceTracker
from .router import DeliveryRouter, IDeliveryRouter
from .service import MessagingService
from .storage import IStorage, Storage
from .tracker import ITracker, Tracker
from .transport import ITransport, SessionRegistry

__all__ = [
    # Application
    "Application",
    "IApplication",
    "MessagingService",
    # Models
    "Message",
    "MessageStatus",
    "MessageType",
    "Receiver",
    "ReceiverKind",
    "Group",
    "UserProfile",
    "RoutingResult",
    "TraceEvent",
    # Errors
    "MessengerError",
    "ValidationError",
    "NotAuthorized",
    "Forbidden",
    "NotMember",
    "Expired",
    "NotFound",
    "TransportFailure",
    # Components
    "IStorage",
    "Storage",
    "ITracker",
    "Tracker",
    "IUserDirectory",
    "UserDirectory",
    "IMembershipGate",
    "MembershipGate",
    "GroupManager",
    "IMessageStore",
    "MessageStore",
    "IConversationIndex",
    "ConversationIndex",
    "IPresenceTracker",
    "PresenceTracker",
    "ITransport",
    "SessionRegistry",
    "IDeliveryRouter",
    "DeliveryRouter",
]

"""Message-related data models."""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum


class ReceiverKind(str, Enum):
    """Who a message is addressed to."""

    USER = "user"
    GROUP = "group"


class MessageType(str, Enum):
    """Kind of payload carried by a message."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    LOCATION = "location"
    CONTACT = "contact"


MEDIA_TYPES = frozenset(
    {MessageType.IMAGE, MessageType.VIDEO, MessageType.AUDIO, MessageType.DOCUMENT}
)


class MessageStatus(str, Enum):
    """Delivery status. Moves forward only; FAILED is terminal."""

    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return STATUS_RANK[self]


# FAILED outranks everything so no forward update can leave it
STATUS_RANK = {
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
    MessageStatus.FAILED: 4,
}

UNREAD_STATUSES = (MessageStatus.SENT, MessageStatus.DELIVERED)


@dataclass(frozen=True)
class Receiver:
    """Receiver descriptor: a user or a group."""

    kind: ReceiverKind
    id: str

    @classmethod
    def user(cls, user_id: str) -> "Receiver":
        return cls(ReceiverKind.USER, user_id)

    @classmethod
    def group(cls, group_id: str) -> "Receiver":
        return cls(ReceiverKind.GROUP, group_id)


@dataclass
class MediaPayload:
    """Opaque media descriptor resolved by the media storage component."""

    url: str
    thumbnail: str | None = None
    size: int | None = None
    duration: float | None = None  # audio/video only
    file_name: str | None = None
    mime_type: str | None = None
    width: int | None = None
    height: int | None = None


@dataclass
class LocationPayload:
    """A shared location."""

    lat: float
    lng: float
    address: str | None = None
    name: str | None = None


@dataclass
class ContactPayload:
    """A shared contact card."""

    name: str
    handle: str | None = None
    user_id: str | None = None


@dataclass
class Message:
    """A single persisted message."""

    id: str
    sender_id: str
    receiver: Receiver
    type: MessageType
    created_at: datetime
    content: str | None = None
    media: MediaPayload | None = None
    location: LocationPayload | None = None
    contact: ContactPayload | None = None
    status: MessageStatus = MessageStatus.SENT
    reactions: dict[str, str] = field(default_factory=dict)  # user_id -> emoji
    reply_to: str | None = None
    deleted_for: set[str] = field(default_factory=set)
    is_deleted: bool = False
    is_forwarded: bool = False
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    seq: int | None = None  # insertion sequence, tie-break for equal timestamps

    def is_hidden_for(self, user_id: str) -> bool:
        """True if the user soft-deleted this message."""
        return user_id in self.deleted_for

    def redacted(self) -> "Message":
        """Copy with the body removed if the message was deleted for everyone."""
        if not self.is_deleted:
            return self
        return replace(
            self,
            content=None,
            media=None,
            location=None,
            contact=None,
            reactions={},
        )

    def to_payload(self) -> dict:
        """JSON-ready representation used on the wire and in API responses."""
        message = self.redacted()
        return {
            "id": message.id,
            "sender_id": message.sender_id,
            "receiver_type": message.receiver.kind.value,
            "receiver_id": message.receiver.id,
            "type": message.type.value,
            "content": message.content,
            "media": asdict(message.media) if message.media else None,
            "location": asdict(message.location) if message.location else None,
            "contact": asdict(message.contact) if message.contact else None,
            "status": message.status.value,
            "reactions": dict(message.reactions),
            "reply_to": message.reply_to,
            "is_deleted": message.is_deleted,
            "is_forwarded": message.is_forwarded,
            "created_at": message.created_at.isoformat(),
            "delivered_at": (
                message.delivered_at.isoformat() if message.delivered_at else None
            ),
            "read_at": message.read_at.isoformat() if message.read_at else None,
        }

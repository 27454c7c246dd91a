"""Request/response models shared by REST and WebSocket routes."""

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..errors import ValidationError
from ..message_store import Payload
from ..models import (
    MEDIA_TYPES,
    ContactPayload,
    ConversationSummary,
    LocationPayload,
    MediaPayload,
    Message,
    MessageType,
    ReceiverKind,
)


class MediaModel(BaseModel):
    """Media descriptor as resolved by the media storage component."""

    url: str
    thumbnail: str | None = None
    size: int | None = None
    duration: float | None = None
    file_name: str | None = None
    mime_type: str | None = None
    width: int | None = None
    height: int | None = None


class LocationModel(BaseModel):
    lat: float
    lng: float
    address: str | None = None
    name: str | None = None


class ContactModel(BaseModel):
    name: str
    handle: str | None = None
    user_id: str | None = None


class SendMessageRequest(BaseModel):
    """Request model for sending a message."""

    type: MessageType = MessageType.TEXT
    content: str | None = None
    media: MediaModel | None = None
    location: LocationModel | None = None
    contact: ContactModel | None = None
    reply_to: str | None = None
    is_forwarded: bool = False

    def payload(self) -> Payload | None:
        """Domain payload for the declared type; exactly one may be set."""
        provided = [
            name
            for name in ("content", "media", "location", "contact")
            if getattr(self, name) is not None
        ]
        if len(provided) > 1:
            raise ValidationError(
                f"Only one payload may be set, got {', '.join(provided)}"
            )

        if self.type == MessageType.TEXT:
            return self.content
        if self.type in MEDIA_TYPES:
            return MediaPayload(**self.media.model_dump()) if self.media else None
        if self.type == MessageType.LOCATION:
            return LocationPayload(**self.location.model_dump()) if self.location else None
        return ContactPayload(**self.contact.model_dump()) if self.contact else None


class MessageResponse(BaseModel):
    """Response model for a message."""

    id: str
    sender_id: str
    receiver_type: ReceiverKind
    receiver_id: str
    type: MessageType
    content: str | None = None
    media: dict[str, Any] | None = None
    location: dict[str, Any] | None = None
    contact: dict[str, Any] | None = None
    status: str
    reactions: dict[str, str]
    reply_to: str | None = None
    is_deleted: bool
    is_forwarded: bool
    created_at: datetime
    delivered_at: datetime | None = None
    read_at: datetime | None = None

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(**message.to_payload())


class SendMessageResponse(BaseModel):
    message: MessageResponse
    delivered_to: list[str]
    undelivered: list[str]


class ConversationResponse(BaseModel):
    conversation_id: str
    kind: ReceiverKind
    peer_id: str
    last_activity: datetime
    unread_count: int
    last_message: MessageResponse | None = None

    @classmethod
    def from_summary(cls, summary: ConversationSummary) -> "ConversationResponse":
        return cls(
            conversation_id=summary.conversation_id,
            kind=summary.kind,
            peer_id=summary.peer_id,
            last_activity=summary.last_activity,
            unread_count=summary.unread_count,
            last_message=(
                MessageResponse.from_message(summary.last_message)
                if summary.last_message
                else None
            ),
        )


class MarkReadRequest(BaseModel):
    message_ids: list[str] = Field(min_length=1)


class ReactionRequest(BaseModel):
    emoji: str


# WebSocket event bodies. Aliases accept the field names of the web client.


class WireEnvelope(BaseModel):
    event: str
    data: dict[str, Any] = Field(default_factory=dict)


class SendMessageEvent(SendMessageRequest):
    model_config = ConfigDict(populate_by_name=True)

    receiver_type: ReceiverKind = ReceiverKind.USER
    receiver_id: str = Field(validation_alias=AliasChoices("receiver_id", "chatId"))
    client_message_id: str | None = Field(
        default=None, validation_alias=AliasChoices("client_message_id", "clientId")
    )


class TypingEvent(BaseModel):
    receiver_type: ReceiverKind = ReceiverKind.USER
    receiver_id: str = Field(validation_alias=AliasChoices("receiver_id", "chatId"))


class ReceiptEvent(BaseModel):
    message_ids: list[str] = Field(
        min_length=1, validation_alias=AliasChoices("message_ids", "messageIds")
    )


class CallSignalEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    to: str
    call_id: str | None = Field(
        default=None, validation_alias=AliasChoices("call_id", "callId")
    )
    type: str | None = None  # "audio" / "video" on call-initiate

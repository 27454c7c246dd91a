"""Transport and routing data models."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable


SendCallable = Callable[[str], Awaitable[None]]
CloseCallable = Callable[[], Awaitable[None]]


class WireEvent(str, Enum):
    """Event names exchanged with clients over a live session."""

    # client -> server
    SEND_MESSAGE = "send-message"
    MESSAGE_DELIVERED = "message-delivered"
    MESSAGE_READ = "message-read"
    # both directions
    TYPING_START = "typing-start"
    TYPING_STOP = "typing-stop"
    CALL_INITIATE = "call-initiate"
    CALL_ACCEPT = "call-accept"
    CALL_REJECT = "call-reject"
    CALL_END = "call-end"
    WEBRTC_OFFER = "webrtc-offer"
    WEBRTC_ANSWER = "webrtc-answer"
    WEBRTC_ICE_CANDIDATE = "webrtc-ice-candidate"
    # server -> client
    RECEIVE_MESSAGE = "receive-message"
    MESSAGE_STATUS = "message-status"
    INCOMING_CALL = "incoming-call"
    CALL_ACCEPTED = "call-accepted"
    CALL_REJECTED = "call-rejected"
    CALL_ENDED = "call-ended"
    ERROR = "error"


# Inbound call signal -> event pushed to the other party
CALL_SIGNAL_EVENTS = {
    WireEvent.CALL_INITIATE: WireEvent.INCOMING_CALL,
    WireEvent.CALL_ACCEPT: WireEvent.CALL_ACCEPTED,
    WireEvent.CALL_REJECT: WireEvent.CALL_REJECTED,
    WireEvent.CALL_END: WireEvent.CALL_ENDED,
    # WebRTC negotiation is relayed under its own name
    WireEvent.WEBRTC_OFFER: WireEvent.WEBRTC_OFFER,
    WireEvent.WEBRTC_ANSWER: WireEvent.WEBRTC_ANSWER,
    WireEvent.WEBRTC_ICE_CANDIDATE: WireEvent.WEBRTC_ICE_CANDIDATE,
}


@dataclass(eq=False)
class SessionHandle:
    """A live client connection. Hashes by identity."""

    user_id: str
    send: SendCallable
    close: CloseCallable | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RoutingState(str, Enum):
    """Per-message routing state machine."""

    CREATED = "created"
    FANNED_OUT = "fanned_out"


class DeliveryOutcome(str, Enum):
    """Per-recipient result of a fan-out."""

    DELIVERED = "delivered"  # pushed to at least one live session
    UNDELIVERED = "undelivered"  # no live session; left for store-and-forward


@dataclass
class RoutingResult:
    """Result of routing one message."""

    message_id: str
    state: RoutingState = RoutingState.CREATED
    recipients: dict[str, DeliveryOutcome] = field(default_factory=dict)
    failed_sessions: list[str] = field(default_factory=list)

    @property
    def delivered_to(self) -> list[str]:
        return [
            user_id
            for user_id, outcome in self.recipients.items()
            if outcome == DeliveryOutcome.DELIVERED
        ]

    @property
    def undelivered(self) -> list[str]:
        return [
            user_id
            for user_id, outcome in self.recipients.items()
            if outcome == DeliveryOutcome.UNDELIVERED
        ]


def wire_payload(event: WireEvent, data: dict) -> dict:
    """Envelope for a wire event."""
    return {"event": event.value, "data": data}

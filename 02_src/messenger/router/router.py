"""Delivery Router: fan-out of persisted messages to live sessions."""

import asyncio
import uuid
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol

from ..directory import IUserDirectory
from ..errors import TransportFailure
from ..logging_config import get_logger
from ..models import (
    CALL_SIGNAL_EVENTS,
    AuditEvent,
    DeliveryOutcome,
    Message,
    MessageStatus,
    Receiver,
    ReceiverKind,
    RoutingResult,
    RoutingState,
    SessionHandle,
    WireEvent,
    wire_payload,
)
from ..storage import IStorage
from ..tracker import ITracker
from ..transport import ITransport

logger = get_logger(__name__)


class IDeliveryRouter(Protocol):
    """Routes messages and ephemeral events to recipients' live sessions."""

    async def route(self, message: Message) -> RoutingResult:
        """Push a persisted message to every live recipient session."""
        ...

    async def relay_typing(self, sender_id: str, receiver: Receiver, is_typing: bool) -> None:
        """Fire-and-forget typing indicator."""
        ...

    async def relay_call_signal(
        self, event: WireEvent, from_id: str, to_id: str, data: dict
    ) -> str | None:
        """Fire-and-forget call signaling."""
        ...


class DeliveryRouter:
    """Fan-out with independent, best-effort pushes per session.

    The router never persists message state. Recipients without a live
    session are reported as undelivered and pick the message up on their
    next fetch or reconnect.
    """

    def __init__(
        self,
        transport: ITransport,
        storage: IStorage,
        directory: IUserDirectory,
        tracker: ITracker,
    ):
        self._transport = transport
        self._storage = storage
        self._directory = directory
        self._tracker = tracker
        self._pair_locks: "weakref.WeakValueDictionary[tuple, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    @asynccontextmanager
    async def sequenced(self, sender_id: str, receiver: Receiver) -> AsyncIterator[None]:
        """Serialize persist+route for one sender->receiver pair.

        Holding this around create and route keeps live delivery in
        creation order within the pair.
        """
        key = (sender_id, receiver.kind, receiver.id)
        lock = self._pair_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._pair_locks[key] = lock
        async with lock:
            yield

    async def recipients_for(self, sender_id: str, receiver: Receiver) -> list[str]:
        """Users a message from sender to receiver should reach."""
        if receiver.kind == ReceiverKind.USER:
            if await self._directory.is_blocked(sender_id, receiver.id):
                return []
            return [receiver.id]

        group = await self._storage.get_group(receiver.id)
        if not group:
            return []
        candidates = [uid for uid in group.member_ids if uid != sender_id]
        blocked = await self._directory.blocked_among(sender_id, candidates)
        return [uid for uid in candidates if uid not in blocked]

    async def _fan_out(
        self, user_ids: list[str], payload: dict
    ) -> list[tuple[str, SessionHandle, bool]]:
        targets = [
            (user_id, session)
            for user_id in user_ids
            for session in self._transport.get_live_sessions(user_id)
        ]
        if not targets:
            return []

        results = await asyncio.gather(
            *[self._transport.push(session, payload) for _, session in targets],
            return_exceptions=True,
        )
        return [
            (user_id, session, result is True)
            for (user_id, session), result in zip(targets, results)
        ]

    async def route(self, message: Message) -> RoutingResult:
        """Push a persisted message to every live recipient session."""
        result = RoutingResult(message_id=message.id)
        recipients = await self.recipients_for(message.sender_id, message.receiver)
        for user_id in recipients:
            result.recipients[user_id] = DeliveryOutcome.UNDELIVERED

        payload = wire_payload(WireEvent.RECEIVE_MESSAGE, message.to_payload())
        for user_id, session, ok in await self._fan_out(recipients, payload):
            if ok:
                result.recipients[user_id] = DeliveryOutcome.DELIVERED
                continue
            result.failed_sessions.append(session.id)
            logger.warning(
                "%s: push of message %s to session %s failed",
                TransportFailure.code,
                message.id,
                session.id,
                extra={"message_id": message.id, "user_id": user_id, "session_id": session.id},
            )
            await self._tracker.track(
                event_type=AuditEvent.TRANSPORT_FAILURE,
                actor="delivery_router",
                data={
                    "message_id": message.id,
                    "user_id": user_id,
                    "session_id": session.id,
                },
            )

        result.state = RoutingState.FANNED_OUT
        await self._tracker.track(
            event_type=AuditEvent.MESSAGE_ROUTED,
            actor="delivery_router",
            data={
                "message_id": message.id,
                "delivered_to": result.delivered_to,
                "undelivered": result.undelivered,
                "failed_sessions": len(result.failed_sessions),
            },
        )
        return result

    async def notify_status(
        self, messages: list[Message], status: MessageStatus, by_user: str
    ) -> None:
        """Push delivered/read receipts to the senders' live sessions."""
        for message in messages:
            payload = wire_payload(
                WireEvent.MESSAGE_STATUS,
                {
                    "message_id": message.id,
                    "receiver_type": message.receiver.kind.value,
                    "receiver_id": message.receiver.id,
                    "status": status.value,
                    "by": by_user,
                },
            )
            await self._fan_out([message.sender_id], payload)

    async def relay_typing(self, sender_id: str, receiver: Receiver, is_typing: bool) -> None:
        """Fire-and-forget typing indicator. Never persisted or retried."""
        event = WireEvent.TYPING_START if is_typing else WireEvent.TYPING_STOP
        payload = wire_payload(
            event,
            {
                "user_id": sender_id,
                "receiver_type": receiver.kind.value,
                "receiver_id": receiver.id,
            },
        )
        recipients = await self.recipients_for(sender_id, receiver)
        await self._fan_out(recipients, payload)

    async def relay_call_signal(
        self, event: WireEvent, from_id: str, to_id: str, data: dict
    ) -> str | None:
        """Fire-and-forget call signaling; lost if the callee is offline.

        Returns the call id carried by the signal.
        """
        outbound = CALL_SIGNAL_EVENTS.get(event)
        if outbound is None:
            raise ValueError(f"{event.value} is not a call signal")
        if await self._directory.is_blocked(from_id, to_id):
            logger.debug("Dropping %s between blocked users", event.value)
            return data.get("call_id")

        body = {**data, "from": from_id}
        if event == WireEvent.CALL_INITIATE and not body.get("call_id"):
            body["call_id"] = str(uuid.uuid4())
        await self._fan_out([to_id], wire_payload(outbound, body))
        return body.get("call_id")

"""WebSocket endpoint: live sessions and wire-event dispatch."""

import json
from functools import partial

import pydantic
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from ...app import Application
from ...errors import MessengerError
from ...logging_config import get_logger
from ...models import (
    CALL_SIGNAL_EVENTS,
    MessageStatus,
    Receiver,
    SessionHandle,
    WireEvent,
    wire_payload,
)
from ..schemas import (
    CallSignalEvent,
    ReceiptEvent,
    SendMessageEvent,
    TypingEvent,
    WireEnvelope,
)

logger = get_logger(__name__)


def error_event(code: str, message: str, event: str | None = None) -> dict:
    return wire_payload(WireEvent.ERROR, {"code": code, "message": message, "event": event})


async def handle_send_message(app: Application, session: SessionHandle, data: dict) -> dict:
    request = SendMessageEvent.model_validate(data)
    message, result = await app.service.send_message(
        session.user_id,
        Receiver(request.receiver_type, request.receiver_id),
        request.type,
        request.payload(),
        reply_to=request.reply_to,
        is_forwarded=request.is_forwarded,
    )
    # Acknowledge to the sender's own session
    return wire_payload(
        WireEvent.MESSAGE_STATUS,
        {
            "message_id": message.id,
            "client_message_id": request.client_message_id,
            "status": MessageStatus.SENT.value,
            "created_at": message.created_at.isoformat(),
            "delivered_to": result.delivered_to,
        },
    )


async def handle_event(app: Application, session: SessionHandle, raw: dict) -> dict | None:
    """Dispatch one inbound wire event. Returns a reply for the session, if any."""
    envelope = WireEnvelope.model_validate(raw)
    try:
        event = WireEvent(envelope.event)
    except ValueError:
        return error_event("unknown_event", f"Unknown event: {envelope.event}", envelope.event)

    data = envelope.data
    if event == WireEvent.SEND_MESSAGE:
        return await handle_send_message(app, session, data)

    if event in (WireEvent.TYPING_START, WireEvent.TYPING_STOP):
        typing = TypingEvent.model_validate(data)
        await app.service.typing(
            session.user_id,
            Receiver(typing.receiver_type, typing.receiver_id),
            event == WireEvent.TYPING_START,
        )
        return None

    if event in CALL_SIGNAL_EVENTS:
        signal = CallSignalEvent.model_validate(data)
        body = signal.model_dump(exclude={"to", "call_id"}, exclude_none=True)
        if signal.call_id:
            body["call_id"] = signal.call_id
        call_id = await app.service.call_signal(event, session.user_id, signal.to, body)
        if event == WireEvent.CALL_INITIATE:
            # Caller needs the id to send accept/reject/end for this call
            return wire_payload(event, {"call_id": call_id, "to": signal.to})
        return None

    if event == WireEvent.MESSAGE_DELIVERED:
        receipt = ReceiptEvent.model_validate(data)
        await app.service.acknowledge_delivery(session.user_id, receipt.message_ids)
        return None

    if event == WireEvent.MESSAGE_READ:
        receipt = ReceiptEvent.model_validate(data)
        await app.service.mark_read(session.user_id, receipt.message_ids)
        return None

    return error_event(
        "unsupported_event", f"{event.value} cannot be sent by clients", event.value
    )


def create_realtime_router(app: Application) -> APIRouter:
    """Create realtime router."""
    router = APIRouter(tags=["realtime"])

    @router.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket, user_id: str | None = None):
        if not user_id:
            await websocket.close(code=1008, reason="user_id required")
            return

        await websocket.accept()
        try:
            session = await app.service.connect(
                user_id,
                websocket.send_text,
                close=partial(websocket.close, code=1001, reason="Session closed by server"),
            )
        except MessengerError as e:
            await websocket.close(code=1008, reason=e.message)
            return

        try:
            while websocket.application_state == WebSocketState.CONNECTED:
                text = await websocket.receive_text()
                event_name = None
                try:
                    raw = json.loads(text)
                    if isinstance(raw, dict):
                        event_name = raw.get("event")
                    reply = await handle_event(app, session, raw)
                except json.JSONDecodeError:
                    reply = error_event("invalid_json", "Invalid JSON format")
                except pydantic.ValidationError as e:
                    reply = error_event(
                        "validation_error", str(e.errors(include_url=False)), event_name
                    )
                except MessengerError as e:
                    reply = error_event(e.code, e.message, event_name)
                except Exception as e:
                    logger.error("Wire event %s failed: %s", event_name, e, exc_info=True)
                    reply = error_event("internal_error", "Error processing event", event_name)

                if reply is not None:
                    await app.sessions.push(session, reply)
        except WebSocketDisconnect:
            logger.debug("Session %s closed by client", session.id)
        finally:
            await app.service.disconnect(session)

    return router

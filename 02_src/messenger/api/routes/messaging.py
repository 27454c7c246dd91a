"""Messaging API routes."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from ...app import Application
from ...config import DEFAULT_PAGE_SIZE, RECENT_CONVERSATIONS_LIMIT
from ...models import Receiver, ReceiverKind
from ..deps import current_user_id
from ..schemas import (
    ConversationResponse,
    MarkReadRequest,
    MessageResponse,
    ReactionRequest,
    SendMessageRequest,
    SendMessageResponse,
)


def create_messaging_router(app: Application) -> APIRouter:
    """Create messaging router."""
    router = APIRouter(prefix="/api", tags=["messaging"])

    async def _send(user_id: str, receiver: Receiver, request: SendMessageRequest) -> dict:
        message, result = await app.service.send_message(
            user_id,
            receiver,
            request.type,
            request.payload(),
            reply_to=request.reply_to,
            is_forwarded=request.is_forwarded,
        )
        return {
            "message": MessageResponse.from_message(message),
            "delivered_to": result.delivered_to,
            "undelivered": result.undelivered,
        }

    @router.post(
        "/messages/user/{receiver_id}",
        response_model=SendMessageResponse,
        status_code=201,
    )
    async def send_direct_message(
        receiver_id: str,
        request: SendMessageRequest,
        user_id: str = Depends(current_user_id),
    ) -> dict:
        """Send a message to a user."""
        return await _send(user_id, Receiver.user(receiver_id), request)

    @router.post(
        "/messages/group/{group_id}",
        response_model=SendMessageResponse,
        status_code=201,
    )
    async def send_group_message(
        group_id: str,
        request: SendMessageRequest,
        user_id: str = Depends(current_user_id),
    ) -> dict:
        """Send a message to a group."""
        return await _send(user_id, Receiver.group(group_id), request)

    @router.get("/conversations/{peer_id}", response_model=list[MessageResponse])
    async def get_conversation(
        peer_id: str,
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=200),
        before: datetime | None = Query(None, description="ISO timestamp cursor"),
        after: datetime | None = Query(None, description="ISO timestamp cursor"),
        user_id: str = Depends(current_user_id),
    ) -> list[MessageResponse]:
        """Direct conversation history, oldest first."""
        messages = await app.service.fetch_conversation(user_id, peer_id, limit, before, after)
        return [MessageResponse.from_message(m) for m in messages]

    @router.get("/groups/{group_id}/messages", response_model=list[MessageResponse])
    async def get_group_messages(
        group_id: str,
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=200),
        before: datetime | None = Query(None, description="ISO timestamp cursor"),
        after: datetime | None = Query(None, description="ISO timestamp cursor"),
        user_id: str = Depends(current_user_id),
    ) -> list[MessageResponse]:
        """Group history, oldest first. Members only."""
        messages = await app.service.fetch_group_messages(
            group_id, user_id, limit, before, after
        )
        return [MessageResponse.from_message(m) for m in messages]

    @router.put("/messages/read")
    async def mark_read(
        request: MarkReadRequest,
        user_id: str = Depends(current_user_id),
    ) -> dict:
        advanced = await app.service.mark_read(user_id, request.message_ids)
        return {"updated": advanced}

    @router.post("/messages/{message_id}/reaction", response_model=MessageResponse)
    async def add_reaction(
        message_id: str,
        request: ReactionRequest,
        user_id: str = Depends(current_user_id),
    ) -> MessageResponse:
        message = await app.service.add_reaction(message_id, user_id, request.emoji)
        return MessageResponse.from_message(message)

    @router.delete("/messages/{message_id}/reaction", status_code=204)
    async def remove_reaction(
        message_id: str,
        user_id: str = Depends(current_user_id),
    ) -> None:
        await app.service.remove_reaction(message_id, user_id)

    @router.delete("/messages/{message_id}/for-me", status_code=204)
    async def delete_for_me(
        message_id: str,
        user_id: str = Depends(current_user_id),
    ) -> None:
        await app.service.delete_for_user(message_id, user_id)

    @router.delete("/messages/{message_id}/for-everyone", response_model=MessageResponse)
    async def delete_for_everyone(
        message_id: str,
        user_id: str = Depends(current_user_id),
    ) -> MessageResponse:
        message = await app.service.delete_for_everyone(message_id, user_id)
        return MessageResponse.from_message(message)

    @router.get("/unread")
    async def get_unread(user_id: str = Depends(current_user_id)) -> dict:
        """Unread totals across all conversations."""
        summary = await app.service.unread_summary(user_id)
        return {
            "total": summary.total,
            "by_users": summary.by_users,
            "by_groups": summary.by_groups,
        }

    @router.get("/unread/{kind}/{peer_id}")
    async def get_unread_count(
        kind: ReceiverKind,
        peer_id: str,
        user_id: str = Depends(current_user_id),
    ) -> dict:
        count = await app.service.unread_count(user_id, peer_id, kind)
        return {"kind": kind.value, "peer_id": peer_id, "unread_count": count}

    @router.get("/conversations", response_model=list[ConversationResponse])
    async def list_conversations(
        limit: int = Query(RECENT_CONVERSATIONS_LIMIT, ge=1, le=200),
        user_id: str = Depends(current_user_id),
    ) -> list[ConversationResponse]:
        """Conversations ordered by most recent activity."""
        summaries = await app.service.recent_conversations(user_id, limit)
        return [ConversationResponse.from_summary(s) for s in summaries]

    return router

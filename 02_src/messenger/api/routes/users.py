"""User directory and presence routes."""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ...app import Application
from ...models import PrivacyLevel
from ..deps import current_user_id


class RegisterRequest(BaseModel):
    username: str


class UserResponse(BaseModel):
    id: str
    username: str
    handle: str
    created_at: datetime


class PrivacyRequest(BaseModel):
    last_seen: PrivacyLevel


class PresenceResponse(BaseModel):
    """Presence of a user; null fields mean hidden by privacy settings."""

    user_id: str
    online: bool | None = None
    last_seen: datetime | None = None


def create_users_router(app: Application) -> APIRouter:
    """Create users router."""
    router = APIRouter(prefix="/api/users", tags=["users"])

    @router.post("", response_model=UserResponse, status_code=201)
    async def register(request: RegisterRequest) -> dict:
        user = await app.directory.register(request.username)
        return {
            "id": user.id,
            "username": user.username,
            "handle": user.handle,
            "created_at": user.created_at,
        }

    @router.get("/{subject_id}/presence", response_model=PresenceResponse)
    async def get_presence(
        subject_id: str,
        user_id: str = Depends(current_user_id),
    ) -> dict:
        return await app.service.presence_of(user_id, subject_id)

    @router.put("/me/privacy", status_code=204)
    async def set_privacy(
        request: PrivacyRequest,
        user_id: str = Depends(current_user_id),
    ) -> None:
        await app.directory.set_privacy(user_id, request.last_seen)

    @router.post("/{target_id}/block", status_code=204)
    async def block(target_id: str, user_id: str = Depends(current_user_id)) -> None:
        await app.directory.block(user_id, target_id)

    @router.delete("/{target_id}/block", status_code=204)
    async def unblock(target_id: str, user_id: str = Depends(current_user_id)) -> None:
        await app.directory.unblock(user_id, target_id)

    @router.post("/{target_id}/contact", status_code=204)
    async def add_contact(target_id: str, user_id: str = Depends(current_user_id)) -> None:
        await app.directory.add_contact(user_id, target_id)

    @router.delete("/{target_id}/contact", status_code=204)
    async def remove_contact(target_id: str, user_id: str = Depends(current_user_id)) -> None:
        await app.directory.remove_contact(user_id, target_id)

    return router

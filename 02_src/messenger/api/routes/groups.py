"""Group administration routes."""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ...app import Application
from ...models import Group, GroupRole, SendPolicy
from ..deps import current_user_id


class CreateGroupRequest(BaseModel):
    name: str
    description: str = ""
    member_ids: list[str] = Field(default_factory=list)
    send_messages: SendPolicy = SendPolicy.ALL


class AddMemberRequest(BaseModel):
    user_id: str
    role: GroupRole = GroupRole.MEMBER


class UpdateRoleRequest(BaseModel):
    role: GroupRole


class UpdateSettingsRequest(BaseModel):
    send_messages: SendPolicy


class GroupMemberResponse(BaseModel):
    user_id: str
    role: GroupRole
    joined_at: datetime


class GroupResponse(BaseModel):
    """Response model for a group."""

    id: str
    name: str
    description: str
    created_by: str
    send_messages: SendPolicy
    members: list[GroupMemberResponse]
    message_count: int
    last_message_id: str | None = None
    last_activity: datetime


def _group_response(group: Group) -> GroupResponse:
    return GroupResponse(
        id=group.id,
        name=group.name,
        description=group.description,
        created_by=group.created_by,
        send_messages=group.send_messages,
        members=[
            GroupMemberResponse(user_id=m.user_id, role=m.role, joined_at=m.joined_at)
            for m in group.members
        ],
        message_count=group.message_count,
        last_message_id=group.last_message_id,
        last_activity=group.last_activity,
    )


def create_groups_router(app: Application) -> APIRouter:
    """Create groups router."""
    router = APIRouter(prefix="/api/groups", tags=["groups"])

    @router.post("", response_model=GroupResponse, status_code=201)
    async def create_group(
        request: CreateGroupRequest,
        user_id: str = Depends(current_user_id),
    ) -> GroupResponse:
        group = await app.groups.create_group(
            user_id,
            request.name,
            request.member_ids,
            description=request.description,
            send_messages=request.send_messages,
        )
        return _group_response(group)

    @router.post("/{group_id}/members", response_model=GroupResponse)
    async def add_member(
        group_id: str,
        request: AddMemberRequest,
        user_id: str = Depends(current_user_id),
    ) -> GroupResponse:
        group = await app.groups.add_member(group_id, user_id, request.user_id, request.role)
        return _group_response(group)

    @router.delete("/{group_id}/members/{member_id}", response_model=GroupResponse)
    async def remove_member(
        group_id: str,
        member_id: str,
        user_id: str = Depends(current_user_id),
    ) -> GroupResponse:
        group = await app.groups.remove_member(group_id, user_id, member_id)
        return _group_response(group)

    @router.put("/{group_id}/members/{member_id}/role", response_model=GroupResponse)
    async def update_member_role(
        group_id: str,
        member_id: str,
        request: UpdateRoleRequest,
        user_id: str = Depends(current_user_id),
    ) -> GroupResponse:
        group = await app.groups.update_member_role(group_id, user_id, member_id, request.role)
        return _group_response(group)

    @router.put("/{group_id}/settings", response_model=GroupResponse)
    async def update_settings(
        group_id: str,
        request: UpdateSettingsRequest,
        user_id: str = Depends(current_user_id),
    ) -> GroupResponse:
        group = await app.groups.update_settings(group_id, user_id, request.send_messages)
        return _group_response(group)

    return router

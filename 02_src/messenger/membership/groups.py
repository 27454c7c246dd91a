"""Group administration: creation, membership and settings changes."""

import sqlite3
import uuid
from datetime import datetime, timezone

from ..errors import Forbidden, NotFound, ValidationError
from ..logging_config import get_logger
from ..models import AuditEvent, Group, GroupMember, GroupRole, SendPolicy
from ..storage import IStorage
from ..tracker import ITracker
from .gate import IMembershipGate

logger = get_logger(__name__)

MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500


class GroupManager:
    """Admin-only mutations of groups."""

    def __init__(self, storage: IStorage, gate: IMembershipGate, tracker: ITracker):
        self._storage = storage
        self._gate = gate
        self._tracker = tracker

    async def create_group(
        self,
        creator_id: str,
        name: str,
        member_ids: list[str] | None = None,
        description: str = "",
        send_messages: SendPolicy = SendPolicy.ALL,
    ) -> Group:
        """Create a group with the creator as admin."""
        name = name.strip()
        if not name or len(name) > MAX_NAME_LENGTH:
            raise ValidationError(
                f"Group name must be 1-{MAX_NAME_LENGTH} characters"
            )
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters"
            )

        now = datetime.now(timezone.utc)
        members = [GroupMember(creator_id, GroupRole.ADMIN, now)]
        seen = {creator_id}
        for member_id in member_ids or []:
            if member_id in seen:
                continue
            await self._require_user(member_id)
            seen.add(member_id)
            members.append(GroupMember(member_id, GroupRole.MEMBER, now, creator_id))

        group = Group(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            created_by=creator_id,
            created_at=now,
            last_activity=now,
            send_messages=send_messages,
            members=members,
        )
        await self._storage.save_group(group)

        await self._tracker.track(
            event_type=AuditEvent.GROUP_CREATED,
            actor=creator_id,
            data={"group_id": group.id, "member_count": len(members)},
        )
        logger.info("Group %s created by %s", group.id, creator_id)
        return group

    async def _require_user(self, user_id: str) -> None:
        if await self._storage.get_user(user_id) is None:
            raise NotFound(f"User {user_id} not found")

    async def _require_admin(self, group_id: str, actor_id: str) -> Group:
        group = await self._gate.authorize_read(group_id, actor_id)
        if not group.is_admin(actor_id):
            raise Forbidden("Only admins can manage this group")
        return group

    async def add_member(
        self,
        group_id: str,
        actor_id: str,
        user_id: str,
        role: GroupRole = GroupRole.MEMBER,
    ) -> Group:
        await self._require_admin(group_id, actor_id)
        await self._require_user(user_id)
        now = datetime.now(timezone.utc)
        try:
            await self._storage.add_group_member(
                group_id, GroupMember(user_id, role, now, actor_id), now
            )
        except sqlite3.IntegrityError as e:
            raise ValidationError("User is already a member of this group") from e

        await self._tracker.track(
            event_type=AuditEvent.GROUP_MEMBER_ADDED,
            actor=actor_id,
            data={"group_id": group_id, "user_id": user_id, "role": role.value},
        )
        return await self._storage.get_group(group_id)

    async def remove_member(self, group_id: str, actor_id: str, user_id: str) -> Group:
        """Admins remove anyone; members may remove themselves (leave)."""
        if actor_id == user_id:
            await self._gate.authorize_read(group_id, actor_id)
        else:
            await self._require_admin(group_id, actor_id)

        removed = await self._storage.remove_group_member(
            group_id, user_id, datetime.now(timezone.utc)
        )
        if not removed:
            raise NotFound(f"User {user_id} is not a member of group {group_id}")

        await self._tracker.track(
            event_type=AuditEvent.GROUP_MEMBER_REMOVED,
            actor=actor_id,
            data={"group_id": group_id, "user_id": user_id},
        )
        return await self._storage.get_group(group_id)

    async def update_member_role(
        self, group_id: str, actor_id: str, user_id: str, role: GroupRole
    ) -> Group:
        await self._require_admin(group_id, actor_id)
        updated = await self._storage.update_member_role(
            group_id, user_id, role, datetime.now(timezone.utc)
        )
        if not updated:
            raise NotFound(f"User {user_id} is not a member of group {group_id}")
        return await self._storage.get_group(group_id)

    async def update_settings(
        self, group_id: str, actor_id: str, send_messages: SendPolicy
    ) -> Group:
        await self._require_admin(group_id, actor_id)
        await self._storage.update_group_settings(
            group_id, send_messages, datetime.now(timezone.utc)
        )
        return await self._storage.get_group(group_id)

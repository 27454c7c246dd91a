"""Group Membership Gate."""

from typing import Protocol

from ..errors import Forbidden, NotFound, NotMember
from ..models import Group, SendPolicy
from ..storage import IStorage


class IMembershipGate(Protocol):
    """Authorizes group sends and reads against membership and role."""

    async def authorize_send(self, group_id: str, user_id: str) -> Group:
        """Raise NotMember / Forbidden unless user may send to the group."""
        ...

    async def authorize_read(self, group_id: str, user_id: str) -> Group:
        """Raise NotMember unless user may read the group."""
        ...


class MembershipGate:
    """Checks against a fresh membership snapshot on every call."""

    def __init__(self, storage: IStorage):
        self._storage = storage

    async def _load(self, group_id: str) -> Group:
        group = await self._storage.get_group(group_id)
        if not group or not group.is_active:
            raise NotFound(f"Group {group_id} not found")
        return group

    async def authorize_send(self, group_id: str, user_id: str) -> Group:
        """Raise NotMember / Forbidden unless user may send to the group."""
        group = await self._load(group_id)
        if not group.is_member(user_id):
            raise NotMember(f"User {user_id} is not a member of group {group_id}")
        if group.send_messages == SendPolicy.ADMINS and not group.is_admin(user_id):
            raise Forbidden("Only admins can send messages in this group")
        return group

    async def authorize_read(self, group_id: str, user_id: str) -> Group:
        """Raise NotMember unless user may read the group."""
        group = await self._load(group_id)
        if not group.is_member(user_id):
            raise NotMember(f"User {user_id} is not a member of group {group_id}")
        return group

"""Group-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class GroupRole(str, Enum):
    """Role of a member inside a group."""

    ADMIN = "admin"
    MEMBER = "member"


class SendPolicy(str, Enum):
    """Who may send messages to a group."""

    ALL = "all"
    ADMINS = "admins"


@dataclass
class GroupMember:
    """Membership record."""

    user_id: str
    role: GroupRole
    joined_at: datetime
    added_by: str | None = None


@dataclass
class Group:
    """A group conversation with its member list snapshot."""

    id: str
    name: str
    created_by: str
    created_at: datetime
    last_activity: datetime
    description: str = ""
    send_messages: SendPolicy = SendPolicy.ALL
    members: list[GroupMember] = field(default_factory=list)
    message_count: int = 0
    last_message_id: str | None = None
    is_active: bool = True

    def member(self, user_id: str) -> GroupMember | None:
        for member in self.members:
            if member.user_id == user_id:
                return member
        return None

    def is_member(self, user_id: str) -> bool:
        return self.member(user_id) is not None

    def is_admin(self, user_id: str) -> bool:
        member = self.member(user_id)
        return member is not None and member.role == GroupRole.ADMIN

    @property
    def member_ids(self) -> list[str]:
        return [member.user_id for member in self.members]

"""Audit trail data models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class AuditEvent(str, Enum):
    """Lifecycle events recorded by the tracker."""

    MESSAGE_CREATED = "message_created"
    MESSAGE_ROUTED = "message_routed"
    MESSAGE_DELETED_FOR_EVERYONE = "message_deleted_for_everyone"
    TRANSPORT_FAILURE = "transport_failure"
    GROUP_CREATED = "group_created"
    GROUP_MEMBER_ADDED = "group_member_added"
    GROUP_MEMBER_REMOVED = "group_member_removed"


@dataclass
class TraceEvent:
    """One audit record. data is self-contained for display."""

    id: str
    event_type: str
    actor: str  # user id, or component name for router events
    data: dict
    timestamp: datetime

    @property
    def message_id(self) -> str | None:
        return self.data.get("message_id")

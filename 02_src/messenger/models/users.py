"""User directory data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PrivacyLevel(str, Enum):
    """Audience allowed to see a user's last-seen / online state."""

    EVERYONE = "everyone"
    CONTACTS = "contacts"
    NOBODY = "nobody"


@dataclass
class UserProfile:
    """A user as seen by the messaging core (owned by the auth component)."""

    id: str
    username: str
    handle: str  # +1(XXX) YYY-ZZZZ, unique
    created_at: datetime
    last_seen: datetime | None = None
    privacy_last_seen: PrivacyLevel = PrivacyLevel.EVERYONE
    contacts: set[str] = field(default_factory=set)
    blocked: set[str] = field(default_factory=set)

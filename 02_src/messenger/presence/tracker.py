"""Presence Tracker: last-active timestamps and online state."""

from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from ..config import ONLINE_THRESHOLD
from ..logging_config import get_logger
from ..models import PrivacyLevel, UserProfile
from ..storage import IStorage

logger = get_logger(__name__)


class IPresenceTracker(Protocol):
    """Raw presence. Visibility filtering is up to the caller."""

    async def touch(self, user_id: str) -> None:
        """Record activity now."""
        ...

    async def is_online(self, user_id: str) -> bool:
        """Active within the online threshold."""
        ...


class PresenceTracker:
    """Storage-backed presence tracker."""

    def __init__(
        self,
        storage: IStorage,
        threshold: timedelta = ONLINE_THRESHOLD,
        clock: Callable[[], datetime] | None = None,
    ):
        self._storage = storage
        self._threshold = threshold
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def touch(self, user_id: str) -> None:
        """Record activity now."""
        if not await self._storage.update_last_seen(user_id, self._clock()):
            logger.warning("Presence touch for unknown user %s", user_id)

    async def last_seen(self, user_id: str) -> datetime | None:
        seen = await self._storage.get_last_seen([user_id])
        return seen.get(user_id)

    def _is_recent(self, last_seen: datetime | None) -> bool:
        return last_seen is not None and self._clock() - last_seen < self._threshold

    async def is_online(self, user_id: str) -> bool:
        """Active within the online threshold."""
        return self._is_recent(await self.last_seen(user_id))

    async def online_among(self, user_ids: list[str]) -> set[str]:
        seen = await self._storage.get_last_seen(user_ids)
        return {user_id for user_id, at in seen.items() if self._is_recent(at)}


def can_see_presence(viewer_id: str, subject: UserProfile) -> bool:
    """Apply the subject's last-seen privacy setting to a viewer."""
    if viewer_id == subject.id:
        return True
    if subject.privacy_last_seen == PrivacyLevel.EVERYONE:
        return True
    if subject.privacy_last_seen == PrivacyLevel.CONTACTS:
        return viewer_id in subject.contacts
    return False

"""User directory: the slice of the auth component the messaging core consumes."""

import random
import re
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Callable, Protocol

from ..errors import NotFound, ValidationError
from ..logging_config import get_logger
from ..models import PrivacyLevel, UserProfile
from ..storage import IStorage

logger = get_logger(__name__)

HANDLE_PATTERN = re.compile(r"^\+1\((\d{3})\) (\d{3})-(\d{4})$")
MAX_HANDLE_ATTEMPTS = 100


def generate_handle(rng: random.Random | None = None) -> str:
    """Random handle in the form +1(XXX) YYY-ZZZZ.

    Area code and prefix never start with 0 or 1.
    """
    rng = rng or random.SystemRandom()
    area = f"{rng.randint(2, 9)}{rng.randint(0, 99):02d}"
    prefix = f"{rng.randint(2, 9)}{rng.randint(0, 99):02d}"
    line = f"{rng.randint(0, 9999):04d}"
    return f"+1({area}) {prefix}-{line}"


def is_valid_handle(handle: str) -> bool:
    return HANDLE_PATTERN.match(handle) is not None


class IUserDirectory(Protocol):
    """User records, contacts and block relationships."""

    async def register(self, username: str) -> UserProfile:
        """Create a user with a unique handle."""
        ...

    async def get_user(self, user_id: str) -> UserProfile:
        """Get a user or raise NotFound."""
        ...

    async def exists(self, user_id: str) -> bool:
        """True if the user is known."""
        ...

    async def is_blocked(self, user_a: str, user_b: str) -> bool:
        """True if either user blocks the other."""
        ...

    async def blocked_among(self, user_id: str, candidates: list[str]) -> set[str]:
        """Subset of candidates with a block relationship to user_id."""
        ...


class UserDirectory:
    """Storage-backed user directory."""

    def __init__(
        self,
        storage: IStorage,
        handle_factory: Callable[[], str] = generate_handle,
    ):
        self._storage = storage
        self._handle_factory = handle_factory

    async def register(self, username: str) -> UserProfile:
        """Create a user with a unique handle.

        Uniqueness is enforced by the storage unique index; collisions are
        retried with a fresh handle.
        """
        username = username.strip().lower()
        if not username:
            raise ValidationError("Username is required")

        for _ in range(MAX_HANDLE_ATTEMPTS):
            user = UserProfile(
                id=str(uuid.uuid4()),
                username=username,
                handle=self._handle_factory(),
                created_at=datetime.now(timezone.utc),
            )
            try:
                await self._storage.save_user(user)
            except sqlite3.IntegrityError as e:
                if "users.username" in str(e):
                    raise ValidationError(f"Username {username!r} is taken") from e
                logger.debug("Handle collision for %s, retrying", user.handle)
                continue
            logger.info("Registered user %s (%s)", user.id, user.handle)
            return user

        raise RuntimeError("Could not allocate a unique handle")

    async def get_user(self, user_id: str) -> UserProfile:
        """Get a user or raise NotFound."""
        user = await self._storage.get_user(user_id)
        if not user:
            raise NotFound(f"User {user_id} not found")
        return user

    async def exists(self, user_id: str) -> bool:
        return await self._storage.get_user(user_id) is not None

    async def is_blocked(self, user_a: str, user_b: str) -> bool:
        """True if either user blocks the other."""
        return await self._storage.is_blocked(user_a, user_b)

    async def blocked_among(self, user_id: str, candidates: list[str]) -> set[str]:
        """Subset of candidates with a block relationship to user_id."""
        return await self._storage.get_blocked_among(user_id, candidates)

    async def block(self, blocker_id: str, blocked_id: str) -> None:
        if blocker_id == blocked_id:
            raise ValidationError("Cannot block yourself")
        await self.get_user(blocked_id)
        await self._storage.add_block(blocker_id, blocked_id, datetime.now(timezone.utc))

    async def unblock(self, blocker_id: str, blocked_id: str) -> None:
        await self._storage.remove_block(blocker_id, blocked_id)

    async def add_contact(self, owner_id: str, contact_id: str) -> None:
        if owner_id == contact_id:
            raise ValidationError("Cannot add yourself as a contact")
        await self.get_user(contact_id)
        if await self._storage.is_blocked(owner_id, contact_id):
            raise ValidationError("Cannot add a blocked user as a contact")
        added = await self._storage.add_contact(
            owner_id, contact_id, datetime.now(timezone.utc)
        )
        if not added:
            raise ValidationError("User is already in your contacts")

    async def is_contact(self, owner_id: str, contact_id: str) -> bool:
        user = await self.get_user(owner_id)
        return contact_id in user.contacts

    async def remove_contact(self, owner_id: str, contact_id: str) -> None:
        await self._storage.remove_contact(owner_id, contact_id)

    async def set_privacy(self, user_id: str, level: PrivacyLevel) -> None:
        if not await self._storage.set_privacy_last_seen(user_id, level):
            raise NotFound(f"User {user_id} not found")

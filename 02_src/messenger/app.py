"""Application bootstrap and lifecycle management."""

import os
from datetime import datetime
from typing import Callable, Protocol

from .config import resolve_db_path
from .conversations import ConversationIndex
from .directory import UserDirectory
from .logging_config import get_logger
from .membership import GroupManager, MembershipGate
from .message_store import MessageStore, utcnow
from .presence import PresenceTracker
from .router import DeliveryRouter
from .service import MessagingService
from .storage import IStorage, Storage
from .tracker import ITracker, Tracker
from .transport import SessionRegistry

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self, drop_sessions: bool = False) -> int:
        """Reset data between test runs. Returns the number of sessions dropped."""
        ...


class Application:
    """Main application bootstrap."""

    def __init__(
        self,
        db_path: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        env_db_path = os.getenv("DATABASE_URL") if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._clock = clock

        # Components (will be initialized in start())
        self._storage: IStorage | None = None
        self._tracker: ITracker | None = None
        self._directory: UserDirectory | None = None
        self._gate: MembershipGate | None = None
        self._groups: GroupManager | None = None
        self._sessions: SessionRegistry | None = None
        self._router: DeliveryRouter | None = None
        self._service: MessagingService | None = None

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")

        # 1. Storage (no dependencies)
        self._storage = Storage(self._db_path)
        await self._storage.init()
        logger.info("Storage initialized")

        # 2. Tracker (depends on Storage)
        self._tracker = Tracker(self._storage)

        # 3. Directory and membership (depend on Storage)
        self._directory = UserDirectory(self._storage)
        self._gate = MembershipGate(self._storage)
        self._groups = GroupManager(self._storage, self._gate, self._tracker)

        # 4. Message store and read-side components
        store = MessageStore(
            self._storage,
            self._directory,
            self._gate,
            self._tracker,
            clock=self._clock,
        )
        index = ConversationIndex(self._storage)
        presence = PresenceTracker(self._storage, clock=self._clock)
        logger.info("Message store initialized")

        # 5. Transport and router
        self._sessions = SessionRegistry()
        self._router = DeliveryRouter(
            self._sessions, self._storage, self._directory, self._tracker
        )

        # 6. Service (depends on everything above)
        self._service = MessagingService(
            storage=self._storage,
            store=store,
            index=index,
            presence=presence,
            router=self._router,
            gate=self._gate,
            directory=self._directory,
            sessions=self._sessions,
        )
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        if self._sessions:
            dropped = await self._sessions.disconnect_all()
            logger.info("Dropped %d live sessions", dropped)
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")

    async def reset(self, drop_sessions: bool = False) -> int:
        """Reset data between test runs.

        Live sessions are kept unless drop_sessions is set.
        """
        dropped = 0
        if drop_sessions and self._sessions:
            dropped = await self._sessions.disconnect_all()
        if self._storage:
            await self._storage.clear()
            logger.info("Storage cleared")
        return dropped

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def service(self) -> MessagingService:
        """Get messaging service instance."""
        if not self._service:
            raise RuntimeError("Application not started")
        return self._service

    @property
    def directory(self) -> UserDirectory:
        if not self._directory:
            raise RuntimeError("Application not started")
        return self._directory

    @property
    def groups(self) -> GroupManager:
        if not self._groups:
            raise RuntimeError("Application not started")
        return self._groups

    @property
    def sessions(self) -> SessionRegistry:
        if not self._sessions:
            raise RuntimeError("Application not started")
        return self._sessions

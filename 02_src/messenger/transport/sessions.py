"""In-process session registry implementing the transport contract."""

import asyncio
import json
from typing import Protocol

from ..config import PUSH_TIMEOUT_SECONDS
from ..logging_config import get_logger
from ..models import SessionHandle
from ..models.delivery import CloseCallable, SendCallable

logger = get_logger(__name__)


class ITransport(Protocol):
    """Live session lookup and best-effort push."""

    def get_live_sessions(self, user_id: str) -> set[SessionHandle]:
        """Currently connected sessions of a user."""
        ...

    async def push(self, session: SessionHandle, payload: dict) -> bool:
        """Send payload to one session. Returns False on failure, never raises."""
        ...


class SessionRegistry:
    """Tracks live sessions per user and pushes JSON payloads to them.

    A push that does not finish within push_timeout seconds counts as a
    failure: the session is dropped and closed, and the recipient catches
    up through store-and-forward on the next connect or fetch.
    """

    def __init__(self, push_timeout: float = PUSH_TIMEOUT_SECONDS):
        self._push_timeout = push_timeout
        self._sessions: dict[str, set[SessionHandle]] = {}
        # One in-flight send per session keeps each socket's stream ordered
        self._send_locks: dict[str, asyncio.Lock] = {}

    def connect(
        self,
        user_id: str,
        send: SendCallable,
        close: CloseCallable | None = None,
    ) -> SessionHandle:
        """Register a new live session."""
        session = SessionHandle(user_id=user_id, send=send, close=close)
        self._sessions.setdefault(user_id, set()).add(session)
        self._send_locks[session.id] = asyncio.Lock()
        logger.info(
            "Session %s connected for user %s",
            session.id,
            user_id,
            extra={"session_id": session.id, "user_id": user_id},
        )
        return session

    def disconnect(self, session: SessionHandle) -> bool:
        """Drop a session. Returns True if it was the user's last one."""
        self._send_locks.pop(session.id, None)
        sessions = self._sessions.get(session.user_id)
        if not sessions:
            return False
        sessions.discard(session)
        if sessions:
            return False
        del self._sessions[session.user_id]
        logger.info("User %s has no live sessions", session.user_id)
        return True

    def get_live_sessions(self, user_id: str) -> set[SessionHandle]:
        """Currently connected sessions of a user."""
        return set(self._sessions.get(user_id, ()))

    def connected_users(self) -> list[str]:
        return list(self._sessions.keys())

    async def disconnect_all(self) -> int:
        """Drop and close every live session. Returns how many were dropped."""
        sessions = [s for user_sessions in self._sessions.values() for s in user_sessions]
        for session in sessions:
            self.disconnect(session)
        await asyncio.gather(*[self._close(session) for session in sessions])
        return len(sessions)

    async def _close(self, session: SessionHandle) -> None:
        if session.close is None:
            return
        try:
            await asyncio.wait_for(session.close(), self._push_timeout)
        except Exception as e:
            logger.debug("Closing session %s failed: %s", session.id, e)

    async def push(self, session: SessionHandle, payload: dict) -> bool:
        """Send payload to one session. Returns False on failure, never raises."""
        lock = self._send_locks.get(session.id)
        if lock is None:
            return False

        text = json.dumps(payload, default=str)
        try:
            await asyncio.wait_for(self._send(lock, session, text), self._push_timeout)
            return True
        except Exception as e:
            reason = "timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
            logger.warning(
                "Push to session %s failed: %s",
                session.id,
                reason,
                extra={"session_id": session.id, "user_id": session.user_id},
            )
            self.disconnect(session)
            await self._close(session)
            return False

    @staticmethod
    async def _send(lock: asyncio.Lock, session: SessionHandle, text: str) -> None:
        async with lock:
            await session.send(text)

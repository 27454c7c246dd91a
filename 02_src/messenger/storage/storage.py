"""SQLite storage implementation."""

import asyncio
import json
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Iterable, Protocol

import aiosqlite

from ..config import resolve_db_path
from ..models import (
    ContactPayload,
    Group,
    GroupMember,
    GroupRole,
    LocationPayload,
    MediaPayload,
    Message,
    MessageStatus,
    MessageType,
    PrivacyLevel,
    Receiver,
    ReceiverKind,
    SendPolicy,
    TraceEvent,
    UserProfile,
)

MESSAGE_COLUMNS = """
    m.seq, m.id, m.sender_id, m.receiver_kind, m.receiver_id, m.type,
    m.content, m.media, m.location, m.contact, m.status, m.reply_to,
    m.is_deleted, m.is_forwarded, m.created_at, m.delivered_at, m.read_at
"""

NOT_DELETED_FOR = """
    NOT EXISTS (
        SELECT 1 FROM message_deletions d
        WHERE d.message_id = m.id AND d.user_id = ?
    )
"""

UNREAD_RANKS = "(1, 2)"


def _ts(value: datetime | None) -> str | None:
    """Serialize a datetime as a sortable UTC ISO string."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _json(value) -> str | None:
    return json.dumps(asdict(value)) if value is not None else None


def _placeholders(values: list) -> str:
    return ",".join("?" * len(values))


class IStorage(Protocol):
    """Persistent storage for all messenger data (SQLite)."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    # Users
    async def save_user(self, user: UserProfile) -> None:
        """Insert a user. Raises sqlite3.IntegrityError on duplicate handle/username."""
        ...

    async def get_user(self, user_id: str) -> UserProfile | None:
        """Get a user with contacts and blocked sets."""
        ...

    async def update_last_seen(self, user_id: str, at: datetime) -> bool:
        """Set last-seen timestamp. Returns False for unknown users."""
        ...

    async def get_last_seen(self, user_ids: list[str]) -> dict[str, datetime | None]:
        """Get last-seen timestamps for several users."""
        ...

    async def set_privacy_last_seen(self, user_id: str, level: PrivacyLevel) -> bool:
        """Update last-seen privacy level."""
        ...

    async def add_contact(self, owner_id: str, contact_id: str, at: datetime) -> bool:
        """Add a contact. Returns False if already present."""
        ...

    async def remove_contact(self, owner_id: str, contact_id: str) -> bool:
        """Remove a contact."""
        ...

    async def add_block(self, blocker_id: str, blocked_id: str, at: datetime) -> bool:
        """Block a user. Returns False if already blocked."""
        ...

    async def remove_block(self, blocker_id: str, blocked_id: str) -> bool:
        """Unblock a user."""
        ...

    async def is_blocked(self, user_a: str, user_b: str) -> bool:
        """True if either user blocks the other."""
        ...

    async def get_blocked_among(self, user_id: str, candidates: list[str]) -> set[str]:
        """Candidates that block user_id or are blocked by user_id."""
        ...

    # Groups
    async def save_group(self, group: Group) -> None:
        """Insert a group with its initial members."""
        ...

    async def get_group(self, group_id: str) -> Group | None:
        """Get a consistent snapshot of a group and its members."""
        ...

    async def add_group_member(
        self, group_id: str, member: GroupMember, at: datetime
    ) -> None:
        """Add a member. Raises sqlite3.IntegrityError if already a member."""
        ...

    async def remove_group_member(
        self, group_id: str, user_id: str, at: datetime
    ) -> bool:
        """Remove a member."""
        ...

    async def update_member_role(
        self, group_id: str, user_id: str, role: GroupRole, at: datetime
    ) -> bool:
        """Change a member's role."""
        ...

    async def update_group_settings(
        self, group_id: str, send_messages: SendPolicy, at: datetime
    ) -> bool:
        """Change who may send to the group."""
        ...

    async def get_user_group_ids(self, user_id: str) -> list[str]:
        """Ids of active groups the user belongs to."""
        ...

    # Messages
    async def insert_message(self, message: Message) -> Message:
        """Persist a message; group counters update in the same transaction."""
        ...

    async def get_message(self, message_id: str) -> Message | None:
        """Get a message by ID."""
        ...

    async def get_messages(self, message_ids: list[str]) -> list[Message]:
        """Get several messages by ID."""
        ...

    async def advance_status(
        self, message_ids: Iterable[str], status: MessageStatus, at: datetime
    ) -> list[str]:
        """Compare-and-set status forward. Returns ids actually advanced."""
        ...

    async def set_reaction(
        self, message_id: str, user_id: str, emoji: str, at: datetime
    ) -> None:
        """Set a user's single reaction on a message."""
        ...

    async def delete_reaction(self, message_id: str, user_id: str) -> bool:
        """Remove a user's reaction."""
        ...

    async def add_deletion(self, message_id: str, user_id: str, at: datetime) -> None:
        """Hide a message for one user."""
        ...

    async def mark_deleted(self, message_id: str) -> bool:
        """Set the global-delete flag."""
        ...

    async def get_conversation(
        self,
        user_id: str,
        peer_id: str,
        limit: int,
        before: datetime | None = None,
        after: datetime | None = None,
    ) -> list[Message]:
        """Direct messages between two users, oldest first."""
        ...

    async def get_group_messages(
        self,
        group_id: str,
        viewer_id: str,
        limit: int,
        before: datetime | None = None,
        after: datetime | None = None,
    ) -> list[Message]:
        """Group messages visible to viewer, oldest first."""
        ...

    async def count_unread_direct(self, user_id: str, peer_id: str) -> int:
        """Unread direct messages from peer to user."""
        ...

    async def count_unread_group(self, user_id: str, group_id: str) -> int:
        """Unread group messages from other members."""
        ...

    async def unread_by_sender(self, user_id: str) -> dict[str, int]:
        """Unread direct message counts keyed by sender."""
        ...

    async def unread_by_group(self, user_id: str, group_ids: list[str]) -> dict[str, int]:
        """Unread group message counts keyed by group."""
        ...

    async def latest_direct_messages(self, user_id: str) -> dict[str, Message]:
        """Latest visible direct message per peer."""
        ...

    async def latest_group_messages(
        self, user_id: str, group_ids: list[str]
    ) -> dict[str, Message]:
        """Latest visible message per group."""
        ...

    async def get_undelivered_ids(self, user_id: str, group_ids: list[str]) -> list[str]:
        """Ids of messages addressed to user still in status sent."""
        ...

    # TraceEvents
    async def save_trace_event(self, event: TraceEvent) -> None:
        """Save a trace event."""
        ...

    async def get_trace_events(
        self,
        after: datetime | None = None,
        event_types: list[str] | None = None,
        actor: str | None = None,
        limit: int = 100,
    ) -> list[TraceEvent]:
        """Get trace events with optional filters."""
        ...

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        ...


class Storage:
    """SQLite storage implementation."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None
        # Serializes write transactions sharing the single connection
        self._write_lock = asyncio.Lock()

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _connection(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Storage not initialized")
        return self._conn

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = self._connection()
        async with self._write_lock:
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    async def _fetchall(self, sql: str, params: Iterable = ()) -> list[aiosqlite.Row]:
        cursor = await self._connection().execute(sql, tuple(params))
        rows = await cursor.fetchall()
        await cursor.close()
        return list(rows)

    async def _fetchone(self, sql: str, params: Iterable = ()) -> aiosqlite.Row | None:
        cursor = await self._connection().execute(sql, tuple(params))
        row = await cursor.fetchone()
        await cursor.close()
        return row

    # Users
    async def save_user(self, user: UserProfile) -> None:
        """Insert a user. Raises sqlite3.IntegrityError on duplicate handle/username."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO users (id, username, handle, created_at, last_seen, privacy_last_seen)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    user.id,
                    user.username,
                    user.handle,
                    _ts(user.created_at),
                    _ts(user.last_seen),
                    user.privacy_last_seen.value,
                ),
            )

    async def get_user(self, user_id: str) -> UserProfile | None:
        """Get a user with contacts and blocked sets."""
        row = await self._fetchone(
            """
            SELECT id, username, handle, created_at, last_seen, privacy_last_seen
            FROM users
            WHERE id = ?
            """,
            (user_id,),
        )
        if not row:
            return None

        contacts = await self._fetchall(
            "SELECT contact_id FROM contacts WHERE owner_id = ?", (user_id,)
        )
        blocked = await self._fetchall(
            "SELECT blocked_id FROM blocks WHERE blocker_id = ?", (user_id,)
        )

        return UserProfile(
            id=row["id"],
            username=row["username"],
            handle=row["handle"],
            created_at=_dt(row["created_at"]),
            last_seen=_dt(row["last_seen"]),
            privacy_last_seen=PrivacyLevel(row["privacy_last_seen"]),
            contacts={r[0] for r in contacts},
            blocked={r[0] for r in blocked},
        )

    async def update_last_seen(self, user_id: str, at: datetime) -> bool:
        """Set last-seen timestamp. Never moves it backwards."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE users SET last_seen = ?
                WHERE id = ? AND (last_seen IS NULL OR last_seen < ?)
                """,
                (_ts(at), user_id, _ts(at)),
            )
            updated = cursor.rowcount > 0
        if updated:
            return True
        return await self._fetchone("SELECT 1 FROM users WHERE id = ?", (user_id,)) is not None

    async def get_last_seen(self, user_ids: list[str]) -> dict[str, datetime | None]:
        """Get last-seen timestamps for several users."""
        if not user_ids:
            return {}
        rows = await self._fetchall(
            f"SELECT id, last_seen FROM users WHERE id IN ({_placeholders(user_ids)})",
            user_ids,
        )
        return {row["id"]: _dt(row["last_seen"]) for row in rows}

    async def set_privacy_last_seen(self, user_id: str, level: PrivacyLevel) -> bool:
        """Update last-seen privacy level."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                "UPDATE users SET privacy_last_seen = ? WHERE id = ?",
                (level.value, user_id),
            )
            return cursor.rowcount > 0

    async def add_contact(self, owner_id: str, contact_id: str, at: datetime) -> bool:
        """Add a contact. Returns False if already present."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT OR IGNORE INTO contacts (owner_id, contact_id, created_at)
                VALUES (?, ?, ?)
                """,
                (owner_id, contact_id, _ts(at)),
            )
            return cursor.rowcount > 0

    async def remove_contact(self, owner_id: str, contact_id: str) -> bool:
        """Remove a contact."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM contacts WHERE owner_id = ? AND contact_id = ?",
                (owner_id, contact_id),
            )
            return cursor.rowcount > 0

    async def add_block(self, blocker_id: str, blocked_id: str, at: datetime) -> bool:
        """Block a user. Returns False if already blocked."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT OR IGNORE INTO blocks (blocker_id, blocked_id, created_at)
                VALUES (?, ?, ?)
                """,
                (blocker_id, blocked_id, _ts(at)),
            )
            return cursor.rowcount > 0

    async def remove_block(self, blocker_id: str, blocked_id: str) -> bool:
        """Unblock a user."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM blocks WHERE blocker_id = ? AND blocked_id = ?",
                (blocker_id, blocked_id),
            )
            return cursor.rowcount > 0

    async def is_blocked(self, user_a: str, user_b: str) -> bool:
        """True if either user blocks the other."""
        row = await self._fetchone(
            """
            SELECT 1 FROM blocks
            WHERE (blocker_id = ? AND blocked_id = ?)
               OR (blocker_id = ? AND blocked_id = ?)
            LIMIT 1
            """,
            (user_a, user_b, user_b, user_a),
        )
        return row is not None

    async def get_blocked_among(self, user_id: str, candidates: list[str]) -> set[str]:
        """Candidates that block user_id or are blocked by user_id."""
        if not candidates:
            return set()
        marks = _placeholders(candidates)
        rows = await self._fetchall(
            f"""
            SELECT blocked_id FROM blocks
            WHERE blocker_id = ? AND blocked_id IN ({marks})
            UNION
            SELECT blocker_id FROM blocks
            WHERE blocked_id = ? AND blocker_id IN ({marks})
            """,
            [user_id, *candidates, user_id, *candidates],
        )
        return {row[0] for row in rows}

    # Groups
    async def save_group(self, group: Group) -> None:
        """Insert a group with its initial members."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO chat_groups
                (id, name, description, created_by, created_at, send_messages,
                 message_count, last_message_id, last_activity, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    group.id,
                    group.name,
                    group.description,
                    group.created_by,
                    _ts(group.created_at),
                    group.send_messages.value,
                    group.message_count,
                    group.last_message_id,
                    _ts(group.last_activity),
                    int(group.is_active),
                ),
            )
            for member in group.members:
                await conn.execute(
                    """
                    INSERT INTO group_members (group_id, user_id, role, joined_at, added_by)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        group.id,
                        member.user_id,
                        member.role.value,
                        _ts(member.joined_at),
                        member.added_by,
                    ),
                )

    async def get_group(self, group_id: str) -> Group | None:
        """Get a consistent snapshot of a group and its members."""
        row = await self._fetchone(
            """
            SELECT id, name, description, created_by, created_at, send_messages,
                   message_count, last_message_id, last_activity, is_active
            FROM chat_groups
            WHERE id = ?
            """,
            (group_id,),
        )
        if not row:
            return None

        member_rows = await self._fetchall(
            """
            SELECT user_id, role, joined_at, added_by
            FROM group_members
            WHERE group_id = ?
            ORDER BY joined_at ASC, user_id ASC
            """,
            (group_id,),
        )

        return Group(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            created_by=row["created_by"],
            created_at=_dt(row["created_at"]),
            send_messages=SendPolicy(row["send_messages"]),
            message_count=row["message_count"],
            last_message_id=row["last_message_id"],
            last_activity=_dt(row["last_activity"]),
            is_active=bool(row["is_active"]),
            members=[
                GroupMember(
                    user_id=m["user_id"],
                    role=GroupRole(m["role"]),
                    joined_at=_dt(m["joined_at"]),
                    added_by=m["added_by"],
                )
                for m in member_rows
            ],
        )

    async def add_group_member(
        self, group_id: str, member: GroupMember, at: datetime
    ) -> None:
        """Add a member. Raises sqlite3.IntegrityError if already a member."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO group_members (group_id, user_id, role, joined_at, added_by)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    group_id,
                    member.user_id,
                    member.role.value,
                    _ts(member.joined_at),
                    member.added_by,
                ),
            )
            await conn.execute(
                "UPDATE chat_groups SET last_activity = ? WHERE id = ?",
                (_ts(at), group_id),
            )

    async def remove_group_member(
        self, group_id: str, user_id: str, at: datetime
    ) -> bool:
        """Remove a member."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM group_members WHERE group_id = ? AND user_id = ?",
                (group_id, user_id),
            )
            removed = cursor.rowcount > 0
            if removed:
                await conn.execute(
                    "UPDATE chat_groups SET last_activity = ? WHERE id = ?",
                    (_ts(at), group_id),
                )
            return removed

    async def update_member_role(
        self, group_id: str, user_id: str, role: GroupRole, at: datetime
    ) -> bool:
        """Change a member's role."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                "UPDATE group_members SET role = ? WHERE group_id = ? AND user_id = ?",
                (role.value, group_id, user_id),
            )
            updated = cursor.rowcount > 0
            if updated:
                await conn.execute(
                    "UPDATE chat_groups SET last_activity = ? WHERE id = ?",
                    (_ts(at), group_id),
                )
            return updated

    async def update_group_settings(
        self, group_id: str, send_messages: SendPolicy, at: datetime
    ) -> bool:
        """Change who may send to the group."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE chat_groups SET send_messages = ?, last_activity = ?
                WHERE id = ?
                """,
                (send_messages.value, _ts(at), group_id),
            )
            return cursor.rowcount > 0

    async def get_user_group_ids(self, user_id: str) -> list[str]:
        """Ids of active groups the user belongs to."""
        rows = await self._fetchall(
            """
            SELECT g.id FROM chat_groups g
            JOIN group_members gm ON gm.group_id = g.id
            WHERE gm.user_id = ? AND g.is_active = 1
            ORDER BY g.id
            """,
            (user_id,),
        )
        return [row[0] for row in rows]

    # Messages
    async def insert_message(self, message: Message) -> Message:
        """Persist a message; group counters update in the same transaction."""
        msg_id = message.id or str(uuid.uuid4())

        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO messages
                (id, sender_id, receiver_kind, receiver_id, type, content, media,
                 location, contact, status, status_rank, reply_to, is_deleted,
                 is_forwarded, created_at, delivered_at, read_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    msg_id,
                    message.sender_id,
                    message.receiver.kind.value,
                    message.receiver.id,
                    message.type.value,
                    message.content,
                    _json(message.media),
                    _json(message.location),
                    _json(message.contact),
                    message.status.value,
                    message.status.rank,
                    message.reply_to,
                    int(message.is_deleted),
                    int(message.is_forwarded),
                    _ts(message.created_at),
                    _ts(message.delivered_at),
                    _ts(message.read_at),
                ),
            )
            seq = cursor.lastrowid

            if message.receiver.kind == ReceiverKind.GROUP:
                await conn.execute(
                    """
                    UPDATE chat_groups
                    SET message_count = message_count + 1,
                        last_message_id = ?,
                        last_activity = ?
                    WHERE id = ?
                    """,
                    (msg_id, _ts(message.created_at), message.receiver.id),
                )

        message.id = msg_id
        message.seq = seq
        return message

    async def get_message(self, message_id: str) -> Message | None:
        """Get a message by ID."""
        messages = await self.get_messages([message_id])
        return messages[0] if messages else None

    async def get_messages(self, message_ids: list[str]) -> list[Message]:
        """Get several messages by ID, ordered by creation."""
        if not message_ids:
            return []
        rows = await self._fetchall(
            f"""
            SELECT {MESSAGE_COLUMNS} FROM messages m
            WHERE m.id IN ({_placeholders(message_ids)})
            ORDER BY m.created_at ASC, m.seq ASC
            """,
            message_ids,
        )
        return await self._hydrate(rows)

    async def advance_status(
        self, message_ids: Iterable[str], status: MessageStatus, at: datetime
    ) -> list[str]:
        """Compare-and-set status forward. Returns ids actually advanced."""
        if status not in (MessageStatus.DELIVERED, MessageStatus.READ):
            raise ValueError(f"Cannot advance to status {status.value}")

        rank = status.rank
        if status == MessageStatus.READ:
            sql = """
                UPDATE messages
                SET status = ?, status_rank = ?,
                    delivered_at = COALESCE(delivered_at, ?),
                    read_at = COALESCE(read_at, ?)
                WHERE id = ? AND status_rank < ?
            """
        else:
            sql = """
                UPDATE messages
                SET status = ?, status_rank = ?,
                    delivered_at = COALESCE(delivered_at, ?)
                WHERE id = ? AND status_rank < ?
            """

        advanced = []
        async with self._transaction() as conn:
            for message_id in message_ids:
                if status == MessageStatus.READ:
                    params = (status.value, rank, _ts(at), _ts(at), message_id, rank)
                else:
                    params = (status.value, rank, _ts(at), message_id, rank)
                cursor = await conn.execute(sql, params)
                if cursor.rowcount > 0:
                    advanced.append(message_id)
        return advanced

    async def set_reaction(
        self, message_id: str, user_id: str, emoji: str, at: datetime
    ) -> None:
        """Set a user's single reaction on a message (last write wins)."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT OR REPLACE INTO message_reactions (message_id, user_id, emoji, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (message_id, user_id, emoji, _ts(at)),
            )

    async def delete_reaction(self, message_id: str, user_id: str) -> bool:
        """Remove a user's reaction."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM message_reactions WHERE message_id = ? AND user_id = ?",
                (message_id, user_id),
            )
            return cursor.rowcount > 0

    async def add_deletion(self, message_id: str, user_id: str, at: datetime) -> None:
        """Hide a message for one user."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT OR IGNORE INTO message_deletions (message_id, user_id, deleted_at)
                VALUES (?, ?, ?)
                """,
                (message_id, user_id, _ts(at)),
            )

    async def mark_deleted(self, message_id: str) -> bool:
        """Set the global-delete flag. Returns False if already set."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                "UPDATE messages SET is_deleted = 1 WHERE id = ? AND is_deleted = 0",
                (message_id,),
            )
            return cursor.rowcount > 0

    async def get_conversation(
        self,
        user_id: str,
        peer_id: str,
        limit: int,
        before: datetime | None = None,
        after: datetime | None = None,
    ) -> list[Message]:
        """Direct messages between two users, oldest first."""
        conditions = [
            "m.receiver_kind = 'user'",
            """((m.sender_id = ? AND m.receiver_id = ?)
                OR (m.sender_id = ? AND m.receiver_id = ?))""",
            NOT_DELETED_FOR,
        ]
        params: list = [user_id, peer_id, peer_id, user_id, user_id]
        return await self._page(conditions, params, limit, before, after)

    async def get_group_messages(
        self,
        group_id: str,
        viewer_id: str,
        limit: int,
        before: datetime | None = None,
        after: datetime | None = None,
    ) -> list[Message]:
        """Group messages visible to viewer, oldest first."""
        conditions = [
            "m.receiver_kind = 'group'",
            "m.receiver_id = ?",
            NOT_DELETED_FOR,
        ]
        params: list = [group_id, viewer_id]
        return await self._page(conditions, params, limit, before, after)

    async def _page(
        self,
        conditions: list[str],
        params: list,
        limit: int,
        before: datetime | None,
        after: datetime | None,
    ) -> list[Message]:
        if before:
            conditions.append("m.created_at < ?")
            params.append(_ts(before))
        if after:
            conditions.append("m.created_at > ?")
            params.append(_ts(after))
        params.append(limit)

        # Newest page first, then flip to chronological order
        rows = await self._fetchall(
            f"""
            SELECT {MESSAGE_COLUMNS} FROM messages m
            WHERE {' AND '.join(conditions)}
            ORDER BY m.created_at DESC, m.seq DESC
            LIMIT ?
            """,
            params,
        )
        messages = await self._hydrate(rows)
        messages.reverse()
        return messages

    async def count_unread_direct(self, user_id: str, peer_id: str) -> int:
        """Unread direct messages from peer to user."""
        row = await self._fetchone(
            f"""
            SELECT COUNT(*) FROM messages m
            WHERE m.receiver_kind = 'user'
              AND m.receiver_id = ?
              AND m.sender_id = ?
              AND m.status_rank IN {UNREAD_RANKS}
              AND {NOT_DELETED_FOR}
            """,
            (user_id, peer_id, user_id),
        )
        return row[0] if row else 0

    async def count_unread_group(self, user_id: str, group_id: str) -> int:
        """Unread group messages from other members."""
        row = await self._fetchone(
            f"""
            SELECT COUNT(*) FROM messages m
            WHERE m.receiver_kind = 'group'
              AND m.receiver_id = ?
              AND m.sender_id != ?
              AND m.status_rank IN {UNREAD_RANKS}
              AND {NOT_DELETED_FOR}
            """,
            (group_id, user_id, user_id),
        )
        return row[0] if row else 0

    async def unread_by_sender(self, user_id: str) -> dict[str, int]:
        """Unread direct message counts keyed by sender."""
        rows = await self._fetchall(
            f"""
            SELECT m.sender_id, COUNT(*) FROM messages m
            WHERE m.receiver_kind = 'user'
              AND m.receiver_id = ?
              AND m.status_rank IN {UNREAD_RANKS}
              AND {NOT_DELETED_FOR}
            GROUP BY m.sender_id
            """,
            (user_id, user_id),
        )
        return {row[0]: row[1] for row in rows}

    async def unread_by_group(self, user_id: str, group_ids: list[str]) -> dict[str, int]:
        """Unread group message counts keyed by group."""
        if not group_ids:
            return {}
        rows = await self._fetchall(
            f"""
            SELECT m.receiver_id, COUNT(*) FROM messages m
            WHERE m.receiver_kind = 'group'
              AND m.receiver_id IN ({_placeholders(group_ids)})
              AND m.sender_id != ?
              AND m.status_rank IN {UNREAD_RANKS}
              AND {NOT_DELETED_FOR}
            GROUP BY m.receiver_id
            """,
            [*group_ids, user_id, user_id],
        )
        return {row[0]: row[1] for row in rows}

    async def latest_direct_messages(self, user_id: str) -> dict[str, Message]:
        """Latest visible direct message per peer."""
        rows = await self._fetchall(
            f"""
            SELECT * FROM (
                SELECT {MESSAGE_COLUMNS},
                       CASE WHEN m.sender_id = ? THEN m.receiver_id ELSE m.sender_id END
                           AS peer_id,
                       ROW_NUMBER() OVER (
                           PARTITION BY
                               CASE WHEN m.sender_id = ? THEN m.receiver_id ELSE m.sender_id END
                           ORDER BY m.created_at DESC, m.seq DESC
                       ) AS rn
                FROM messages m
                WHERE m.receiver_kind = 'user'
                  AND (m.sender_id = ? OR m.receiver_id = ?)
                  AND {NOT_DELETED_FOR}
            )
            WHERE rn = 1
            """,
            (user_id, user_id, user_id, user_id, user_id),
        )
        messages = await self._hydrate(rows)
        return {row["peer_id"]: msg for row, msg in zip(rows, messages)}

    async def latest_group_messages(
        self, user_id: str, group_ids: list[str]
    ) -> dict[str, Message]:
        """Latest visible message per group."""
        if not group_ids:
            return {}
        rows = await self._fetchall(
            f"""
            SELECT * FROM (
                SELECT {MESSAGE_COLUMNS},
                       ROW_NUMBER() OVER (
                           PARTITION BY m.receiver_id
                           ORDER BY m.created_at DESC, m.seq DESC
                       ) AS rn
                FROM messages m
                WHERE m.receiver_kind = 'group'
                  AND m.receiver_id IN ({_placeholders(group_ids)})
                  AND {NOT_DELETED_FOR}
            )
            WHERE rn = 1
            """,
            [*group_ids, user_id],
        )
        messages = await self._hydrate(rows)
        return {msg.receiver.id: msg for msg in messages}

    async def get_undelivered_ids(self, user_id: str, group_ids: list[str]) -> list[str]:
        """Ids of messages addressed to user still in status sent."""
        rows = await self._fetchall(
            """
            SELECT m.id FROM messages m
            WHERE m.receiver_kind = 'user' AND m.receiver_id = ? AND m.status_rank = 1
            ORDER BY m.created_at ASC, m.seq ASC
            """,
            (user_id,),
        )
        ids = [row[0] for row in rows]

        if group_ids:
            rows = await self._fetchall(
                f"""
                SELECT m.id FROM messages m
                WHERE m.receiver_kind = 'group'
                  AND m.receiver_id IN ({_placeholders(group_ids)})
                  AND m.sender_id != ?
                  AND m.status_rank = 1
                ORDER BY m.created_at ASC, m.seq ASC
                """,
                [*group_ids, user_id],
            )
            ids.extend(row[0] for row in rows)

        return ids

    async def _hydrate(self, rows: list[aiosqlite.Row]) -> list[Message]:
        """Build Message objects, loading reactions and per-user deletions."""
        if not rows:
            return []

        ids = [row["id"] for row in rows]
        marks = _placeholders(ids)

        reactions: dict[str, dict[str, str]] = {}
        for r in await self._fetchall(
            f"""
            SELECT message_id, user_id, emoji FROM message_reactions
            WHERE message_id IN ({marks})
            ORDER BY created_at ASC
            """,
            ids,
        ):
            reactions.setdefault(r["message_id"], {})[r["user_id"]] = r["emoji"]

        deleted_for: dict[str, set[str]] = {}
        for d in await self._fetchall(
            f"SELECT message_id, user_id FROM message_deletions WHERE message_id IN ({marks})",
            ids,
        ):
            deleted_for.setdefault(d["message_id"], set()).add(d["user_id"])

        return [
            Message(
                id=row["id"],
                sender_id=row["sender_id"],
                receiver=Receiver(ReceiverKind(row["receiver_kind"]), row["receiver_id"]),
                type=MessageType(row["type"]),
                created_at=_dt(row["created_at"]),
                content=row["content"],
                media=MediaPayload(**json.loads(row["media"])) if row["media"] else None,
                location=(
                    LocationPayload(**json.loads(row["location"]))
                    if row["location"]
                    else None
                ),
                contact=(
                    ContactPayload(**json.loads(row["contact"]))
                    if row["contact"]
                    else None
                ),
                status=MessageStatus(row["status"]),
                reactions=reactions.get(row["id"], {}),
                reply_to=row["reply_to"],
                deleted_for=deleted_for.get(row["id"], set()),
                is_deleted=bool(row["is_deleted"]),
                is_forwarded=bool(row["is_forwarded"]),
                delivered_at=_dt(row["delivered_at"]),
                read_at=_dt(row["read_at"]),
                seq=row["seq"],
            )
            for row in rows
        ]

    # TraceEvents
    async def save_trace_event(self, event: TraceEvent) -> None:
        """Save a trace event."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO trace_events (id, event_type, actor, data, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    event.id or str(uuid.uuid4()),
                    event.event_type,
                    event.actor,
                    json.dumps(event.data, default=str),
                    _ts(event.timestamp),
                ),
            )

    async def get_trace_events(
        self,
        after: datetime | None = None,
        event_types: list[str] | None = None,
        actor: str | None = None,
        limit: int = 100,
    ) -> list[TraceEvent]:
        """Get trace events with optional filters."""
        conditions = []
        params: list = []

        if after:
            conditions.append("timestamp > ?")
            params.append(_ts(after))
        if event_types:
            conditions.append(f"event_type IN ({_placeholders(event_types)})")
            params.extend(event_types)
        if actor:
            conditions.append("actor = ?")
            params.append(actor)

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        query = f"""
            SELECT id, event_type, actor, data, timestamp
            FROM trace_events
            {where_clause}
            ORDER BY timestamp DESC
            LIMIT ?
        """
        params.append(limit)

        rows = await self._fetchall(query, params)

        return [
            TraceEvent(
                id=row[0],
                event_type=row[1],
                actor=row[2],
                data=json.loads(row[3]),
                timestamp=_dt(row[4]),
            )
            for row in rows
        ]

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        tables = [
            "message_reactions",
            "message_deletions",
            "messages",
            "group_members",
            "chat_groups",
            "contacts",
            "blocks",
            "users",
            "trace_events",
        ]

        async with self._transaction() as conn:
            for table in tables:
                await conn.execute(f"DELETE FROM {table}")

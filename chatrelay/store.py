"""ChatStore: aiosqlite persistence for users, profiles, conversations and messages."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import aiosqlite

from chatrelay.config import settings
from chatrelay.errors import PersistenceError
from chatrelay.models import (
    Conversation,
    CustomizationProfile,
    Message,
    Profile,
    User,
    make_id,
    utcnow,
)

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL DEFAULT '',
    credits INTEGER NOT NULL DEFAULT 0 CHECK (credits >= 0),
    is_premium INTEGER NOT NULL DEFAULT 0,
    byok_enabled INTEGER NOT NULL DEFAULT 0,
    active_profile_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS provider_keys (
    user_id TEXT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
    key TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS customizations (
    profile_id TEXT PRIMARY KEY REFERENCES profiles(id) ON DELETE CASCADE,
    name TEXT,
    bio TEXT,
    traits TEXT,
    instructions TEXT
);

CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    title TEXT NOT NULL DEFAULT '',
    summary TEXT,
    is_pinned INTEGER NOT NULL DEFAULT 0,
    is_archived INTEGER NOT NULL DEFAULT 0,
    is_temporary_chat INTEGER NOT NULL DEFAULT 0,
    expires_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    response TEXT NOT NULL,
    model_name TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages (conversation_id, created_at);
CREATE INDEX IF NOT EXISTS idx_conversations_expiry
    ON conversations (is_temporary_chat, expires_at);
"""

_USER_COLUMNS = (
    "u.id, u.email, u.credits, u.is_premium, u.byok_enabled, "
    "u.active_profile_id, u.created_at"
)
_MESSAGE_COLUMNS = "id, conversation_id, role, response, model_name, created_at"
_CONVERSATION_COLUMNS = (
    "id, profile_id, title, summary, is_pinned, is_archived, "
    "is_temporary_chat, expires_at, created_at, updated_at"
)


class ChatStore:
    """Persists chat state in SQLite.

    Singleton accessed via ``ChatStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).

    Messages are ordered by ``created_at`` with insertion order
    (``rowid``) breaking ties.
    """

    _instance: ChatStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    @classmethod
    def get(cls) -> ChatStore:
        """Return the shared ChatStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            db = await aiosqlite.connect(str(self._db_path))
            await db.execute("PRAGMA foreign_keys = ON")
            await db.execute("PRAGMA busy_timeout = 5000")
            if not self._initialised:
                await db.executescript(_SCHEMA)
                await db.commit()
                self._initialised = True
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Database unavailable: {exc}") from exc
        return db

    # -- Users / profiles ------------------------------------------------------

    async def create_user(self, user: User) -> User:
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO users
                    (id, email, credits, is_premium, byok_enabled, active_profile_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user.id,
                    user.email,
                    user.credits,
                    int(user.is_premium),
                    int(user.byok_enabled),
                    user.active_profile_id,
                    user.created_at,
                ),
            )
            if user.provider_key:
                await db.execute(
                    "INSERT INTO provider_keys (user_id, key, created_at) VALUES (?, ?, ?)",
                    (user.id, user.provider_key, utcnow()),
                )
            await db.commit()
            return user
        finally:
            await db.close()

    async def set_provider_key(self, user_id: str, key: str | None) -> None:
        """Store or clear the user's own provider credential."""
        db = await self._connect()
        try:
            if key:
                await db.execute(
                    """
                    INSERT INTO provider_keys (user_id, key, created_at) VALUES (?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET key = excluded.key
                    """,
                    (user_id, key, utcnow()),
                )
            else:
                await db.execute("DELETE FROM provider_keys WHERE user_id = ?", (user_id,))
            await db.commit()
        finally:
            await db.close()

    async def get_user_with_key(self, user_id: str) -> User | None:
        """Fetch a user together with their stored provider key, or None."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"""
                SELECT {_USER_COLUMNS}, k.key
                FROM users u LEFT JOIN provider_keys k ON k.user_id = u.id
                WHERE u.id = ?
                """,
                (user_id,),
            )
            row = await cursor.fetchone()
            return User.from_row(row) if row else None
        finally:
            await db.close()

    async def create_profile(self, profile: Profile, *, activate: bool = False) -> Profile:
        db = await self._connect()
        try:
            await db.execute(
                "INSERT INTO profiles (id, user_id, name, created_at) VALUES (?, ?, ?, ?)",
                (profile.id, profile.user_id, profile.name, profile.created_at),
            )
            if activate:
                await db.execute(
                    "UPDATE users SET active_profile_id = ? WHERE id = ?",
                    (profile.id, profile.user_id),
                )
            await db.commit()
            return profile
        finally:
            await db.close()

    async def get_profile(self, profile_id: str) -> Profile | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT id, user_id, name, created_at FROM profiles WHERE id = ?",
                (profile_id,),
            )
            row = await cursor.fetchone()
            return Profile.from_row(row) if row else None
        finally:
            await db.close()

    async def get_active_profile(self, user_id: str) -> Profile | None:
        """Return the user's active profile, or None if unset or dangling."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT p.id, p.user_id, p.name, p.created_at
                FROM users u JOIN profiles p ON p.id = u.active_profile_id
                WHERE u.id = ? AND p.user_id = u.id
                """,
                (user_id,),
            )
            row = await cursor.fetchone()
            return Profile.from_row(row) if row else None
        finally:
            await db.close()

    async def set_customization(self, profile_id: str, custom: CustomizationProfile) -> None:
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO customizations (profile_id, name, bio, traits, instructions)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(profile_id) DO UPDATE SET
                    name = excluded.name,
                    bio = excluded.bio,
                    traits = excluded.traits,
                    instructions = excluded.instructions
                """,
                (
                    profile_id,
                    custom.name,
                    custom.bio,
                    json.dumps(custom.traits),
                    custom.instructions,
                ),
            )
            await db.commit()
        finally:
            await db.close()

    async def get_customization(self, profile_id: str) -> CustomizationProfile | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT name, bio, traits, instructions FROM customizations WHERE profile_id = ?",
                (profile_id,),
            )
            row = await cursor.fetchone()
            return CustomizationProfile.from_row(row) if row else None
        finally:
            await db.close()

    async def decrement_credits(self, user_id: str) -> bool:
        """Atomically take one credit. Returns False if none were left."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "UPDATE users SET credits = credits - 1 WHERE id = ? AND credits > 0",
                (user_id,),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    # -- Conversations ---------------------------------------------------------

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        db = await self._connect()
        try:
            await db.execute(
                f"""
                INSERT INTO conversations ({_CONVERSATION_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                conversation.to_row(),
            )
            await db.commit()
            logger.info(
                "Created conversation %s (profile=%s, temporary=%s)",
                conversation.id,
                conversation.profile_id,
                conversation.is_temporary_chat,
            )
            return conversation
        finally:
            await db.close()

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            return Conversation.from_row(row) if row else None
        finally:
            await db.close()

    async def purge_expired_conversations(self, now: str | None = None) -> int:
        """Delete temporary conversations whose expiry has passed."""
        ts = now or utcnow()
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                DELETE FROM conversations
                WHERE is_temporary_chat = 1 AND expires_at IS NOT NULL AND expires_at <= ?
                """,
                (ts,),
            )
            await db.commit()
            return cursor.rowcount
        finally:
            await db.close()

    # -- Messages --------------------------------------------------------------

    async def add_message(
        self, conversation_id: str, role: str, response: str, model_name: str = ""
    ) -> Message:
        """Append a message and bump the conversation's ``updated_at``."""
        message = Message(
            id=make_id(),
            conversation_id=conversation_id,
            role=role,
            response=response,
            model_name=model_name,
        )
        db = await self._connect()
        try:
            await db.execute(
                f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                message.to_row(),
            )
            await db.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (message.created_at, conversation_id),
            )
            await db.commit()
            return message
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to store message: {exc}") from exc
        finally:
            await db.close()

    async def recent_messages(self, conversation_id: str, limit: int) -> list[Message]:
        """Return the newest *limit* messages in ascending order."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE conversation_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (conversation_id, limit),
            )
            rows = await cursor.fetchall()
            return [Message.from_row(row) for row in reversed(rows)]
        finally:
            await db.close()

    async def oldest_messages(self, conversation_id: str, limit: int) -> list[Message]:
        """Return the oldest *limit* messages in ascending order."""
        if limit <= 0:
            return []
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE conversation_id = ?
                ORDER BY created_at ASC, rowid ASC
                LIMIT ?
                """,
                (conversation_id, limit),
            )
            rows = await cursor.fetchall()
            return [Message.from_row(row) for row in rows]
        finally:
            await db.close()

    async def list_messages(self, conversation_id: str) -> list[Message]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE conversation_id = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (conversation_id,),
            )
            rows = await cursor.fetchall()
            return [Message.from_row(row) for row in rows]
        finally:
            await db.close()

    async def count_messages(self, conversation_id: str) -> int:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM messages WHERE conversation_id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            return row[0] if row else 0
        finally:
            await db.close()

    async def apply_compaction(
        self, conversation_id: str, summary: str, message_ids: list[str]
    ) -> int:
        """Replace the summary and delete summarized messages in one transaction.

        Returns the number of deleted messages. Nothing changes if any
        statement fails.
        """
        db = await self._connect()
        try:
            await db.execute(
                "UPDATE conversations SET summary = ?, updated_at = ? WHERE id = ?",
                (summary, utcnow(), conversation_id),
            )
            deleted = 0
            if message_ids:
                placeholders = ", ".join("?" for _ in message_ids)
                cursor = await db.execute(
                    f"DELETE FROM messages WHERE conversation_id = ? AND id IN ({placeholders})",
                    (conversation_id, *message_ids),
                )
                deleted = cursor.rowcount
            await db.commit()
            return deleted
        except aiosqlite.Error as exc:
            await db.rollback()
            raise PersistenceError(f"Compaction failed: {exc}") from exc
        finally:
            await db.close()


def expiry_from_now(hours: int) -> str:
    """ISO timestamp *hours* from now, for temporary conversations."""
    return (datetime.now(UTC) + timedelta(hours=hours)).isoformat()

"""Persisted records: users, profiles, conversations, messages."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

ROLE_USER = "user"
ROLE_AI = "ai"


def make_id() -> str:
    """Generate a new record ID."""
    return uuid.uuid4().hex


def utcnow() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class User:
    """Identity plus billing flags.

    Attributes:
        id: Unique identifier.
        email: Contact address.
        credits: Metered turn budget. Never negative.
        is_premium: Premium users are not metered.
        byok_enabled: Use the user's own provider key when one is stored.
        active_profile_id: Profile new conversations are created under.
        provider_key: The user's stored provider credential, if any.
    """

    id: str
    email: str = ""
    credits: int = 0
    is_premium: bool = False
    byok_enabled: bool = False
    active_profile_id: str | None = None
    provider_key: str | None = None
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utcnow()

    @classmethod
    def from_row(cls, row: tuple) -> User:
        """Deserialize a ``users`` row optionally joined with its provider key."""
        return cls(
            id=row[0],
            email=row[1] or "",
            credits=row[2],
            is_premium=bool(row[3]),
            byok_enabled=bool(row[4]),
            active_profile_id=row[5],
            created_at=row[6],
            provider_key=row[7] if len(row) > 7 else None,
        )


@dataclass
class Profile:
    id: str
    user_id: str
    name: str
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utcnow()

    @classmethod
    def from_row(cls, row: tuple) -> Profile:
        return cls(id=row[0], user_id=row[1], name=row[2], created_at=row[3])


@dataclass
class CustomizationProfile:
    """Per-profile persona details injected into the system prompt.

    All fields are optional; an empty record renders like no record.
    """

    name: str | None = None
    bio: str | None = None
    traits: list[str] = field(default_factory=list)
    instructions: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "bio": self.bio,
            "traits": list(self.traits),
            "instructions": self.instructions,
        }

    @classmethod
    def from_dict(cls, data: dict) -> CustomizationProfile:
        traits = data.get("traits") or []
        if not isinstance(traits, list):
            traits = []
        return cls(
            name=data.get("name") or None,
            bio=data.get("bio") or None,
            traits=[str(t) for t in traits if str(t).strip()],
            instructions=data.get("instructions") or None,
        )

    @classmethod
    def from_row(cls, row: tuple) -> CustomizationProfile:
        """Deserialize ``(name, bio, traits_json, instructions)``."""
        traits = json.loads(row[2]) if row[2] else []
        return cls.from_dict(
            {"name": row[0], "bio": row[1], "traits": traits, "instructions": row[3]}
        )


@dataclass
class Conversation:
    """A conversation owned by exactly one profile.

    ``summary`` is the rolling compacted memory of messages that have
    been summarized and deleted.
    """

    id: str
    profile_id: str
    title: str = ""
    summary: str | None = None
    is_pinned: bool = False
    is_archived: bool = False
    is_temporary_chat: bool = False
    expires_at: str | None = None
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utcnow()
        if not self.updated_at:
            self.updated_at = self.created_at

    def to_row(self) -> tuple:
        return (
            self.id,
            self.profile_id,
            self.title,
            self.summary,
            int(self.is_pinned),
            int(self.is_archived),
            int(self.is_temporary_chat),
            self.expires_at,
            self.created_at,
            self.updated_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Conversation:
        return cls(
            id=row[0],
            profile_id=row[1],
            title=row[2] or "",
            summary=row[3],
            is_pinned=bool(row[4]),
            is_archived=bool(row[5]),
            is_temporary_chat=bool(row[6]),
            expires_at=row[7],
            created_at=row[8],
            updated_at=row[9],
        )


@dataclass
class Message:
    """A single stored turn half. Immutable once written."""

    id: str
    conversation_id: str
    role: str  # "user" or "ai"
    response: str
    model_name: str = ""
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = utcnow()

    @property
    def api_role(self) -> str:
        """Role name expected by the completion API."""
        return "assistant" if self.role == ROLE_AI else "user"

    def to_row(self) -> tuple:
        return (
            self.id,
            self.conversation_id,
            self.role,
            self.response,
            self.model_name,
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Message:
        return cls(
            id=row[0],
            conversation_id=row[1],
            role=row[2],
            response=row[3],
            model_name=row[4] or "",
            created_at=row[5],
        )

"""Test doubles and seeding helpers shared across test modules."""

from __future__ import annotations

from chatrelay.cache import CustomizationCache
from chatrelay.chat.compactor import MemoryCompactor
from chatrelay.chat.pipeline import TurnService
from chatrelay.errors import UpstreamError
from chatrelay.llm.client import StreamChunk
from chatrelay.models import Profile, User, make_id
from chatrelay.store import ChatStore

SYSTEM_KEY = "sk-system"
MODEL_ID = "openai/gpt-5"


class FakeProvider:
    """Stands in for the upstream completion provider.

    ``fail_at`` raises ``UpstreamError`` when the stream reaches that chunk
    index; ``open_error`` is raised before any chunk is produced.
    """

    def __init__(
        self,
        chunks: list[StreamChunk] | None = None,
        *,
        summary: str = "They talked about greetings.",
        open_error: Exception | None = None,
        fail_at: int | None = None,
        summary_error: Exception | None = None,
    ) -> None:
        self.chunks = chunks if chunks is not None else [
            StreamChunk(delta="Hel"),
            StreamChunk(delta="lo"),
            StreamChunk(usage={"prompt_tokens": 6, "completion_tokens": 4, "total_tokens": 10}),
        ]
        self.summary = summary
        self.open_error = open_error
        self.fail_at = fail_at
        self.summary_error = summary_error
        self.opened: list[dict] = []
        self.completions: list[dict] = []

    async def open_stream(self, messages, *, model, api_key):
        self.opened.append({"messages": messages, "model": model, "api_key": api_key})
        if self.open_error is not None:
            raise self.open_error
        return self._iter()

    async def _iter(self):
        for i, chunk in enumerate(self.chunks):
            if self.fail_at is not None and i == self.fail_at:
                raise UpstreamError("Upstream stream interrupted: connection reset")
            yield chunk

    async def complete_text(self, messages, *, model, api_key, max_tokens=None):
        self.completions.append({"messages": messages, "model": model, "api_key": api_key})
        if self.summary_error is not None:
            raise self.summary_error
        return self.summary


class ListSink:
    """Collects events; raises ConnectionResetError once *fail_after* were taken."""

    def __init__(self, fail_after: int | None = None) -> None:
        self.events = []
        self.fail_after = fail_after

    async def send(self, event) -> None:
        if self.fail_after is not None and len(self.events) >= self.fail_after:
            raise ConnectionResetError("client went away")
        self.events.append(event)

    @property
    def names(self) -> list[str]:
        return [e.event for e in self.events]


def make_service(
    store: ChatStore,
    cache: CustomizationCache,
    provider: FakeProvider,
    *,
    threshold: int = 8,
    retain_window: int = 5,
) -> TurnService:
    compactor = MemoryCompactor(
        store,
        provider,
        threshold=threshold,
        retain_window=retain_window,
        model="summarizer-model",
        max_tokens=256,
    )
    return TurnService(
        store,
        cache,
        provider,
        system_key=SYSTEM_KEY,
        context_window=5,
        compactor=compactor,
    )


async def seed_user(
    store: ChatStore,
    *,
    credits: int = 5,
    is_premium: bool = False,
    byok_enabled: bool = False,
    provider_key: str | None = None,
    with_profile: bool = True,
) -> tuple[User, Profile | None]:
    """Insert a user and (optionally) an active profile."""
    user = await store.create_user(
        User(
            id=make_id(),
            email="someone@example.com",
            credits=credits,
            is_premium=is_premium,
            byok_enabled=byok_enabled,
            provider_key=provider_key,
        )
    )
    profile = None
    if with_profile:
        profile = await store.create_profile(
            Profile(id=make_id(), user_id=user.id, name="Default"), activate=True
        )
    return user, profile


async def count_rows(store: ChatStore, table: str) -> int:
    db = await store._connect()
    try:
        cursor = await db.execute(f"SELECT COUNT(*) FROM {table}")
        row = await cursor.fetchone()
        return row[0]
    finally:
        await db.close()

"""Async OpenRouter client: streamed chat completions and single-shot calls."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import openai
from openai import AsyncOpenAI

from chatrelay.config import settings
from chatrelay.errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class StreamChunk:
    """One upstream chunk: an optional content delta and optional usage totals."""

    delta: str | None = None
    usage: dict[str, Any] | None = None

    @property
    def total_tokens(self) -> int:
        if not self.usage:
            return 0
        return int(self.usage.get("total_tokens") or 0)


@dataclass
class TextContent:
    text: str


@dataclass
class OtherContent:
    """A non-text content block (image, reasoning, ...); ignored for text."""

    type: str


ContentBlock = TextContent | OtherContent


def parse_content(content: Any) -> list[ContentBlock]:
    """Normalise a completion's ``message.content`` into typed blocks."""
    if content is None:
        return []
    if isinstance(content, str):
        return [TextContent(content)]
    blocks: list[ContentBlock] = []
    for part in content:
        if isinstance(part, dict):
            part_type = part.get("type", "")
            text = part.get("text")
        else:
            part_type = getattr(part, "type", "")
            text = getattr(part, "text", None)
        if isinstance(text, str) and part_type in ("text", ""):
            blocks.append(TextContent(text))
        else:
            blocks.append(OtherContent(part_type or "unknown"))
    return blocks


def extract_text(content: Any) -> str:
    """Join the text pieces of *content* and strip surrounding whitespace."""
    return "".join(b.text for b in parse_content(content) if isinstance(b, TextContent)).strip()


def _usage_dict(usage: Any) -> dict[str, Any]:
    if isinstance(usage, dict):
        return usage
    return usage.model_dump(exclude_none=True)


def _to_chunk(raw: Any) -> StreamChunk:
    delta = None
    if raw.choices:
        delta = raw.choices[0].delta.content
    usage = getattr(raw, "usage", None)
    return StreamChunk(delta=delta or None, usage=_usage_dict(usage) if usage else None)


class CompletionProvider:
    """OpenAI-compatible completion provider.

    The system key's ``AsyncOpenAI`` client is shared across turns. BYOK
    credentials get a fresh client per call, closed once the call or its
    stream ends.
    """

    def __init__(self, base_url: str | None = None, system_key: str | None = None) -> None:
        self.base_url = base_url or settings.openrouter_base_url
        self.system_key = settings.openrouter_api_key if system_key is None else system_key
        self._shared: AsyncOpenAI | None = None

    def _client_for(self, api_key: str) -> tuple[AsyncOpenAI, bool]:
        """Return ``(client, owned)``. Owned clients must be closed by the caller."""
        if self.system_key and api_key == self.system_key:
            if self._shared is None:
                self._shared = AsyncOpenAI(api_key=api_key, base_url=self.base_url)
            return self._shared, False
        return AsyncOpenAI(api_key=api_key, base_url=self.base_url), True

    async def open_stream(
        self,
        messages: list[dict[str, str]],
        *,
        model: str,
        api_key: str,
    ) -> AsyncIterator[StreamChunk]:
        """Open a streamed completion.

        Failures while opening raise ``UpstreamError`` here, before any
        chunk is consumed. Failures while iterating raise ``UpstreamError``
        from the returned iterator.
        """
        client, owned = self._client_for(api_key)
        try:
            stream = await client.chat.completions.create(
                model=model,
                messages=messages,
                stream=True,
                stream_options={"include_usage": True},
            )
        except openai.OpenAIError as exc:
            if owned:
                await client.close()
            logger.warning("Upstream stream open failed (model=%s): %s", model, exc)
            raise UpstreamError(f"Upstream provider error: {exc}") from exc
        return self._iter_chunks(stream, model, client if owned else None)

    async def _iter_chunks(
        self, stream: Any, model: str, owned_client: AsyncOpenAI | None
    ) -> AsyncIterator[StreamChunk]:
        try:
            async for raw in stream:
                yield _to_chunk(raw)
        except openai.OpenAIError as exc:
            logger.warning("Upstream stream broke mid-response (model=%s): %s", model, exc)
            raise UpstreamError(f"Upstream stream interrupted: {exc}") from exc
        finally:
            if owned_client is not None:
                await owned_client.close()

    async def complete_text(
        self,
        messages: list[dict[str, str]],
        *,
        model: str,
        api_key: str,
        max_tokens: int | None = None,
    ) -> str:
        """Single-shot, non-streamed call. Returns the joined text content."""
        client, owned = self._client_for(api_key)
        kwargs: dict[str, Any] = {"model": model, "messages": messages, "stream": False}
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        try:
            response = await client.chat.completions.create(**kwargs)
        except openai.OpenAIError as exc:
            raise UpstreamError(f"Upstream provider error: {exc}") from exc
        finally:
            if owned:
                await client.close()
        if not response.choices:
            return ""
        return extract_text(response.choices[0].message.content)

    async def close(self) -> None:
        if self._shared is not None:
            await self._shared.close()
            self._shared = None

"""Stream relay: republishes upstream completion chunks as client events."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from chatrelay.chat import events

if TYPE_CHECKING:
    from chatrelay.chat.events import EventEmitter
    from chatrelay.llm.client import StreamChunk

logger = logging.getLogger(__name__)


class RelayState(str, Enum):
    START = "START"
    STREAMING = "STREAMING"
    COMPLETED = "COMPLETED"
    UPSTREAM_FAILED = "UPSTREAM_FAILED"
    CLIENT_DISCONNECTED = "CLIENT_DISCONNECTED"


@dataclass
class RelayResult:
    """What the relay accumulated for persistence.

    ``state`` is the terminal relay state. ``CLIENT_DISCONNECTED`` still
    means the upstream response was read to the end.
    """

    state: RelayState
    text: str = ""
    total_tokens: int = 0
    usage: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @property
    def upstream_completed(self) -> bool:
        return self.state in (RelayState.COMPLETED, RelayState.CLIENT_DISCONNECTED)


class StreamRelay:
    """Drives one turn's event stream.

    Transitions ``START → STREAMING → COMPLETED | UPSTREAM_FAILED |
    CLIENT_DISCONNECTED``. Deltas are emitted one event per chunk, in
    arrival order, never batched.
    """

    def __init__(self, emitter: EventEmitter) -> None:
        self.emitter = emitter
        self.state = RelayState.START

    async def start(self, conversation_id: str) -> None:
        """Emit ``message_start`` and the conversation ID."""
        await self.emitter.emit(events.MESSAGE_START, events.MESSAGE_START)
        await self.emitter.emit(
            events.CONVERSATION_ID, json.dumps({"conversationId": conversation_id})
        )

    async def pump(self, chunks: AsyncIterator[StreamChunk]) -> RelayResult:
        """Consume *chunks* to the end, emitting and accumulating as they arrive.

        The upstream is read fully even if the client goes away, so the
        complete response can still be persisted.
        """
        self.state = RelayState.STREAMING
        parts: list[str] = []
        usage: list[dict[str, Any]] = []
        total_tokens = 0

        try:
            async for chunk in chunks:
                if chunk.delta:
                    parts.append(chunk.delta)
                    await self.emitter.emit(events.CONTENT_BLOCK_DELTA, chunk.delta)
                if chunk.usage:
                    total_tokens += chunk.total_tokens
                    usage.append(chunk.usage)
                    await self.emitter.emit(events.USAGE, json.dumps(chunk.usage))
        except Exception as exc:
            logger.exception("Upstream failed after %d delta(s)", len(parts))
            self.state = RelayState.UPSTREAM_FAILED
            return RelayResult(
                state=self.state,
                text="".join(parts),
                total_tokens=total_tokens,
                usage=usage,
                error=str(exc) or exc.__class__.__name__,
            )

        self.state = (
            RelayState.COMPLETED if self.emitter.connected else RelayState.CLIENT_DISCONNECTED
        )
        return RelayResult(
            state=self.state, text="".join(parts), total_tokens=total_tokens, usage=usage
        )

    async def stop(self) -> None:
        await self.emitter.emit(events.MESSAGE_STOP, events.MESSAGE_STOP)

    async def fail(self, message: str) -> None:
        """Terminal event for a response the upstream cut short."""
        await self.emitter.emit(events.ERROR, json.dumps({"message": message}))

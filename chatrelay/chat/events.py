"""Server-sent event framing and delivery tracking."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

MESSAGE_START = "message_start"
CONVERSATION_ID = "conversation_id"
CONTENT_BLOCK_DELTA = "content_block_delta"
USAGE = "usage"
MESSAGE_STOP = "message_stop"
ERROR = "error"

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class SSEEvent:
    event: str
    data: str
    id: str

    def encode(self) -> bytes:
        """Wire format: ``id``, ``event`` and one ``data`` line per payload line."""
        lines = [f"id: {self.id}", f"event: {self.event}"]
        lines.extend(f"data: {line}" for line in _LINE_BREAK.split(self.data))
        return ("\n".join(lines) + "\n\n").encode("utf-8")


class EventSink(Protocol):
    """Destination for a turn's events (an HTTP response, a test list, ...)."""

    async def send(self, event: SSEEvent) -> None: ...


class EventEmitter:
    """Numbers events and tracks whether the client is still receiving them.

    IDs are decimal strings starting at ``"0"``, one per emitted event.
    A ``ConnectionError`` from the sink marks the client as gone; later
    events are dropped instead of raised so the turn can keep going.
    """

    def __init__(self, sink: EventSink) -> None:
        self._sink = sink
        self._next_id = 0
        self.connected = True

    @property
    def emitted(self) -> int:
        return self._next_id

    async def emit(self, event: str, data: str) -> bool:
        """Send one event. Returns True if the sink accepted it."""
        sse = SSEEvent(event=event, data=data, id=str(self._next_id))
        self._next_id += 1
        if not self.connected:
            return False
        try:
            await self._sink.send(sse)
        except ConnectionError as exc:
            self.connected = False
            logger.info("Client disconnected at event %s (%s): %s", sse.id, event, exc)
            return False
        return True

"""Rolling-summary compaction of long conversations.

Once a conversation holds ``threshold`` or more messages, everything but
the newest ``retain_window`` messages is merged into the conversation's
summary by a lightweight model, and the merged messages are deleted.
Compaction is best-effort: if the summarizer fails or returns nothing,
the summary and messages are left as they were.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from chatrelay.config import settings

if TYPE_CHECKING:
    from chatrelay.llm.client import CompletionProvider
    from chatrelay.models import Message
    from chatrelay.store import ChatStore

logger = logging.getLogger(__name__)

SUMMARIZER_INSTRUCTION = (
    "You are a conversation memory summarizer. Merge the existing summary "
    "with the new messages into a concise updated summary under 120 words. "
    "Remove redundancy. Return ONLY the summary text."
)


def build_summary_request(existing: str | None, batch: list[Message]) -> list[dict[str, str]]:
    """Messages for the summarizer: instruction, then old summary plus the batch."""
    transcript = "\n".join(f"{m.role}: {m.response}" for m in batch)
    return [
        {"role": "system", "content": SUMMARIZER_INSTRUCTION},
        {
            "role": "user",
            "content": (
                f"Existing summary:\n{existing or 'None'}\n\n"
                f"New messages:\n{transcript}\n"
            ),
        },
    ]


@dataclass
class CompactionResult:
    compacted: bool
    summarized: int = 0
    summary: str | None = None


class MemoryCompactor:
    def __init__(
        self,
        store: ChatStore,
        provider: CompletionProvider,
        *,
        threshold: int | None = None,
        retain_window: int | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.threshold = threshold or settings.compaction_threshold
        self.retain_window = (
            retain_window if retain_window is not None else settings.compaction_retain_window
        )
        self.model = model or settings.summary_model
        self.max_tokens = max_tokens or settings.summary_max_tokens

    async def compact(self, conversation_id: str, api_key: str) -> CompactionResult:
        """Summarize and prune *conversation_id* if it has grown past the threshold.

        Summarizer failures are logged and leave state untouched. Store
        failures while applying the result propagate to the caller.
        """
        count = await self.store.count_messages(conversation_id)
        if count < self.threshold:
            return CompactionResult(compacted=False)

        batch = await self.store.oldest_messages(conversation_id, count - self.retain_window)
        if not batch:
            return CompactionResult(compacted=False)

        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            logger.warning("Conversation %s vanished before compaction", conversation_id)
            return CompactionResult(compacted=False)

        request = build_summary_request(conversation.summary, batch)
        try:
            summary = await self.provider.complete_text(
                request, model=self.model, api_key=api_key, max_tokens=self.max_tokens
            )
        except Exception:
            logger.exception("Summarizer call failed for conversation %s", conversation_id)
            return CompactionResult(compacted=False)

        if not summary:
            logger.warning("Summarizer returned empty text for conversation %s", conversation_id)
            return CompactionResult(compacted=False)

        deleted = await self.store.apply_compaction(
            conversation_id, summary, [m.id for m in batch]
        )
        logger.info(
            "Compacted conversation %s: %d message(s) folded into summary",
            conversation_id,
            deleted,
        )
        return CompactionResult(compacted=True, summarized=deleted, summary=summary)

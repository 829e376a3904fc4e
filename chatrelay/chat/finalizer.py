"""Post-stream bookkeeping for a turn."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from chatrelay.models import ROLE_AI

if TYPE_CHECKING:
    from chatrelay.chat.billing import BillingDecision
    from chatrelay.chat.compactor import MemoryCompactor
    from chatrelay.chat.relay import RelayResult, StreamRelay
    from chatrelay.context import RequestContext
    from chatrelay.store import ChatStore

logger = logging.getLogger(__name__)


@dataclass
class TurnOutcome:
    """Whether each bookkeeping step succeeded. Independent of delivery."""

    assistant_message_id: str | None = None
    compacted: bool = False
    debited: bool = False


async def finalize_turn(
    *,
    ctx: RequestContext,
    store: ChatStore,
    compactor: MemoryCompactor,
    relay: StreamRelay,
    result: RelayResult,
    billing: BillingDecision,
    conversation_id: str,
    model_id: str,
) -> TurnOutcome:
    """Persist the response, compact memory, charge the turn, close the stream.

    Saving the assistant message is attempted first and always. Compaction
    and the credit debit are best-effort: their failures are logged and do
    not undo the saved message. A response the upstream cut short is
    saved as far as it got, is neither compacted nor charged, and ends
    with an ``error`` event instead of ``message_stop``.
    """
    outcome = TurnOutcome()

    if result.text or result.upstream_completed:
        try:
            message = await store.add_message(conversation_id, ROLE_AI, result.text, model_id)
            outcome.assistant_message_id = message.id
        except Exception:
            logger.exception(
                "Failed to store assistant message (request=%s, conversation=%s)",
                ctx.request_id,
                conversation_id,
            )

    if not result.upstream_completed:
        await relay.fail("The model stopped responding before finishing.")
        return outcome

    if outcome.assistant_message_id:
        try:
            compaction = await compactor.compact(conversation_id, billing.api_key)
            outcome.compacted = compaction.compacted
        except Exception:
            logger.exception(
                "Compaction failed (request=%s, conversation=%s)",
                ctx.request_id,
                conversation_id,
            )

    if billing.is_metered:
        try:
            outcome.debited = await store.decrement_credits(ctx.user_id)
            if not outcome.debited:
                logger.warning("No credit left to debit for user %s", ctx.user_id)
        except Exception:
            logger.exception("Credit debit failed (request=%s)", ctx.request_id)

    await relay.stop()
    return outcome

"""Conversation turn pipeline: billing, context, streaming, compaction."""

from chatrelay.chat.billing import BillingDecision, BillingMode, resolve_billing
from chatrelay.chat.compactor import MemoryCompactor
from chatrelay.chat.pipeline import PreparedTurn, TurnRequest, TurnResult, TurnService
from chatrelay.chat.relay import RelayState, StreamRelay

__all__ = [
    "BillingDecision",
    "BillingMode",
    "MemoryCompactor",
    "PreparedTurn",
    "RelayState",
    "StreamRelay",
    "TurnRequest",
    "TurnResult",
    "TurnService",
    "resolve_billing",
]

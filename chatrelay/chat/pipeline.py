"""Conversation turn pipeline.

A turn runs in two phases:

1. ``prepare()`` does everything that may still reject the request (model
   check, billing, ownership, persisting the user's prompt and opening
   the upstream stream). Raises a ``ChatRelayError`` subclass; no client
   stream exists yet.
2. ``run()`` relays the stream to an ``EventSink`` and finalizes the
   turn. Never raises for internal failures; they are logged and the
   stream ends as cleanly as possible.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING

from chatrelay.cache import load_customization
from chatrelay.chat.assembler import assemble_context
from chatrelay.chat.billing import BillingDecision, resolve_billing
from chatrelay.chat.compactor import MemoryCompactor
from chatrelay.chat.events import EventEmitter
from chatrelay.chat.finalizer import TurnOutcome, finalize_turn
from chatrelay.chat.relay import RelayResult, StreamRelay
from chatrelay.config import settings
from chatrelay.errors import AuthorizationError, NotFoundError, ValidationError
from chatrelay.llm.models import ModelInfo, resolve_model
from chatrelay.models import ROLE_USER, Conversation, make_id
from chatrelay.store import expiry_from_now

if TYPE_CHECKING:
    from chatrelay.cache import CustomizationCache
    from chatrelay.chat.events import EventSink
    from chatrelay.context import RequestContext
    from chatrelay.llm.client import CompletionProvider, StreamChunk
    from chatrelay.store import ChatStore

logger = logging.getLogger(__name__)

TITLE_LENGTH = 20


@dataclass
class TurnRequest:
    prompt: str
    model: str
    conversation_id: str | None = None
    temporary: bool = False


@dataclass
class PreparedTurn:
    """A validated turn whose upstream stream is already open."""

    ctx: RequestContext
    model: ModelInfo
    billing: BillingDecision
    conversation: Conversation
    messages: list[dict[str, str]]
    chunks: AsyncIterator[StreamChunk]


@dataclass
class TurnResult:
    """Delivery and bookkeeping results of a finished turn, kept separate."""

    relay: RelayResult
    outcome: TurnOutcome
    delivered: bool


def make_title(prompt: str) -> str:
    return prompt[:TITLE_LENGTH] + "..."


class TurnService:
    """Runs chat turns against a store, a cache and a completion provider."""

    def __init__(
        self,
        store: ChatStore,
        cache: CustomizationCache,
        provider: CompletionProvider,
        *,
        system_key: str | None = None,
        context_window: int | None = None,
        compactor: MemoryCompactor | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.provider = provider
        self.system_key = system_key if system_key is not None else settings.openrouter_api_key
        self.context_window = context_window or settings.context_window_size
        self.compactor = compactor or MemoryCompactor(store, provider)

    async def prepare(self, ctx: RequestContext, request: TurnRequest) -> PreparedTurn:
        if not request.prompt or not request.prompt.strip():
            raise ValidationError("Prompt must not be empty")
        model = resolve_model(request.model)

        user = await self.store.get_user_with_key(ctx.user_id)
        if user is None:
            raise NotFoundError("User not found")

        billing = resolve_billing(user, self.system_key)

        profile = await self.store.get_active_profile(user.id)
        if profile is None:
            raise NotFoundError("No active profile found")

        if request.conversation_id:
            conversation = await self._load_owned_conversation(ctx, request.conversation_id)
        else:
            conversation = await self.store.create_conversation(
                Conversation(
                    id=make_id(),
                    profile_id=profile.id,
                    title=make_title(request.prompt),
                    is_temporary_chat=request.temporary,
                    expires_at=(
                        expiry_from_now(settings.temporary_chat_ttl_hours)
                        if request.temporary
                        else None
                    ),
                )
            )

        recent = await self.store.recent_messages(conversation.id, self.context_window)
        await self.store.add_message(conversation.id, ROLE_USER, request.prompt, model.id)

        custom = await load_customization(self.store, self.cache, conversation.profile_id)
        messages = assemble_context(
            prompt=request.prompt,
            summary=conversation.summary,
            recent=recent,
            custom=custom,
        )

        chunks = await self.provider.open_stream(
            messages, model=model.id, api_key=billing.api_key
        )
        logger.info(
            "Turn opened (request=%s, user=%s, conversation=%s, model=%s, billing=%s)",
            ctx.request_id,
            user.id,
            conversation.id,
            model.id,
            billing.mode.value,
        )
        return PreparedTurn(
            ctx=ctx,
            model=model,
            billing=billing,
            conversation=conversation,
            messages=messages,
            chunks=chunks,
        )

    async def _load_owned_conversation(
        self, ctx: RequestContext, conversation_id: str
    ) -> Conversation:
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is not None:
            owner = await self.store.get_profile(conversation.profile_id)
            if owner is not None and owner.user_id == ctx.user_id:
                return conversation
        logger.warning(
            "Conversation access denied (request=%s, user=%s, conversation=%s)",
            ctx.request_id,
            ctx.user_id,
            conversation_id,
        )
        raise AuthorizationError("Conversation does not exist or does not belong to you")

    async def run(self, turn: PreparedTurn, sink: EventSink) -> TurnResult:
        """Relay *turn* to *sink* and finalize it."""
        emitter = EventEmitter(sink)
        relay = StreamRelay(emitter)

        await relay.start(turn.conversation.id)
        result = await relay.pump(turn.chunks)
        outcome = await finalize_turn(
            ctx=turn.ctx,
            store=self.store,
            compactor=self.compactor,
            relay=relay,
            result=result,
            billing=turn.billing,
            conversation_id=turn.conversation.id,
            model_id=turn.model.id,
        )
        logger.info(
            "Turn finished (request=%s, state=%s, tokens=%d, delivered=%s, compacted=%s)",
            turn.ctx.request_id,
            result.state.value,
            result.total_tokens,
            emitter.connected,
            outcome.compacted,
        )
        return TurnResult(relay=result, outcome=outcome, delivered=emitter.connected)

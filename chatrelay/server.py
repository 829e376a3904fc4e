"""aiohttp HTTP surface: turn submission over server-sent events.

The identity provider in front of this service authenticates callers and
forwards the user ID in a trusted header (``AUTH_USER_HEADER``).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from typing import TYPE_CHECKING

import pydantic
from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field

from chatrelay.cache import CustomizationCache
from chatrelay.chat.pipeline import TurnRequest, TurnService
from chatrelay.config import settings
from chatrelay.context import RequestContext
from chatrelay.errors import AuthenticationError, ChatRelayError, ValidationError
from chatrelay.llm.client import CompletionProvider
from chatrelay.llm.models import enabled_models
from chatrelay.store import ChatStore
from chatrelay.sweeper import start_sweeper

if TYPE_CHECKING:
    from chatrelay.chat.events import SSEEvent

logger = logging.getLogger(__name__)

TURN_SERVICE = web.AppKey("turn_service", TurnService)
CONTEXT_KEY = web.RequestKey("ctx", RequestContext)

# Turns outlive their request handlers when a client disconnects.
_running_turns: set[asyncio.Task] = set()


class ChatTurnBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str | None = Field(default=None, alias="conversationId")
    model: str = Field(min_length=1)
    prompt: str = Field(min_length=1)
    is_temporary_chat_enabled: bool = Field(default=False, alias="isTemporaryChatEnabled")


class SSEResponseSink:
    """Writes events to an aiohttp ``StreamResponse``."""

    def __init__(self, response: web.StreamResponse, prepared: bool = True) -> None:
        self._response = response
        self._prepared = prepared

    async def send(self, event: SSEEvent) -> None:
        if not self._prepared:
            raise ConnectionResetError("Event stream was never opened")
        await self._response.write(event.encode())


# -- Middlewares ---------------------------------------------------------------


@web.middleware
async def _error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Turn pre-stream failures into ``{"success": false, "message": ...}``."""
    try:
        return await handler(request)
    except ChatRelayError as exc:
        return web.json_response(exc.to_dict(), status=exc.status)
    except web.HTTPException:
        raise
    except Exception as exc:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        body: dict[str, object] = {"success": False, "message": "Internal server error"}
        if settings.debug:
            body["error"] = repr(exc)
        return web.json_response(body, status=500)


@web.middleware
async def _request_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Attach a RequestContext and log the request with its duration."""
    request_id = uuid.uuid4().hex
    client_ip = request.remote or ""
    start = time.monotonic()
    logger.info(
        "Incoming request %s %s (request=%s, ip=%s)",
        request.method,
        request.path,
        request_id,
        client_ip,
    )

    if request.path.startswith("/api/"):
        user_id = request.headers.get(settings.auth_user_header, "").strip()
        if not user_id:
            raise AuthenticationError("Unauthorized")
        request[CONTEXT_KEY] = RequestContext(
            user_id=user_id, request_id=request_id, client_ip=client_ip
        )

    response = await handler(request)
    logger.info(
        "Request completed %s %s -> %d in %.0f ms (request=%s)",
        request.method,
        request.path,
        response.status,
        (time.monotonic() - start) * 1000,
        request_id,
    )
    return response


# -- Handlers ------------------------------------------------------------------


async def _health(request: web.Request) -> web.Response:
    """GET /health: basic liveness check."""
    return web.json_response({"status": "ok"})


async def _list_models(request: web.Request) -> web.Response:
    data = [{"id": m.id, "name": m.name, "isPaid": m.is_paid} for m in enabled_models()]
    return web.json_response({"success": True, "data": data})


def _parse_body(payload: object) -> ChatTurnBody:
    try:
        return ChatTurnBody.model_validate(payload)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "body"
        raise ValidationError(f"{field}: {first.get('msg', 'invalid value')}") from exc


async def _handle_chat(request: web.Request) -> web.StreamResponse:
    """POST /api/v1/conversations/chat: run one turn as an event stream."""
    try:
        payload = await request.json()
    except Exception as exc:
        raise ValidationError("Invalid JSON body") from exc
    body = _parse_body(payload)

    ctx = request[CONTEXT_KEY]
    service = request.app[TURN_SERVICE]
    turn = await service.prepare(
        ctx,
        TurnRequest(
            prompt=body.prompt,
            model=body.model,
            conversation_id=body.conversation_id,
            temporary=body.is_temporary_chat_enabled,
        ),
    )

    response = web.StreamResponse(
        status=200,
        headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
    prepared = True
    try:
        await response.prepare(request)
    except ConnectionError:
        logger.info("Client left before the stream opened (request=%s)", ctx.request_id)
        prepared = False

    task = asyncio.create_task(service.run(turn, SSEResponseSink(response, prepared)))
    _running_turns.add(task)
    task.add_done_callback(_running_turns.discard)
    await asyncio.shield(task)

    if prepared:
        with contextlib.suppress(ConnectionError):
            await response.write_eof()
    return response


def create_web_app(service: TurnService) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(middlewares=[_error_middleware, _request_middleware])
    app[TURN_SERVICE] = service
    app.router.add_get("/health", _health)
    app.router.add_get("/api/v1/models", _list_models)
    app.router.add_post("/api/v1/conversations/chat", _handle_chat)
    return app


class RelayServer:
    """Manages the aiohttp server lifecycle and background cleanup."""

    def __init__(self, host: str | None = None, port: int | None = None) -> None:
        self.host = host or settings.host
        self.port = port or settings.port
        self.store = ChatStore.get()
        self.cache = CustomizationCache.get_shared()
        self.provider = CompletionProvider()
        self._runner: web.AppRunner | None = None
        self._sweeper: asyncio.Task | None = None

    async def start(self) -> None:
        if not settings.openrouter_api_key:
            logger.warning("OPENROUTER_API_KEY empty, only BYOK users can chat")

        app = create_web_app(TurnService(self.store, self.cache, self.provider))
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        self._sweeper = start_sweeper(self.store)
        logger.info("Chat relay listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server, letting in-flight turns finish first."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        if _running_turns:
            logger.info("Waiting for %d in-flight turn(s)", len(_running_turns))
            await asyncio.gather(*_running_turns, return_exceptions=True)
        await self.provider.close()
        await self.cache.close()
        logger.info("Chat relay stopped")

"""Chat relay entry point."""

import asyncio
import contextlib
import logging
import signal

from chatrelay.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


async def _serve() -> None:
    from chatrelay.server import RelayServer

    server = RelayServer()
    await server.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        await server.stop()


def main() -> None:
    """Start the chat relay HTTP server."""
    logger.info("Starting chat relay on %s:%d", settings.host, settings.port)
    asyncio.run(_serve())


if __name__ == "__main__":
    main()

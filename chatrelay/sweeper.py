"""Periodic deletion of expired temporary conversations."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from chatrelay.config import settings

if TYPE_CHECKING:
    from chatrelay.store import ChatStore

logger = logging.getLogger(__name__)


async def sweep_once(store: ChatStore) -> int:
    """Delete expired temporary chats once. Returns the number removed."""
    try:
        count = await store.purge_expired_conversations()
    except Exception:
        logger.exception("Temporary chat cleanup failed")
        return 0
    if count:
        logger.info("Temporary chat cleanup removed %d conversation(s)", count)
    return count


async def sweep_loop(store: ChatStore, interval: int | None = None) -> None:
    """Run ``sweep_once`` forever, sleeping *interval* seconds between runs."""
    interval = interval or settings.expiry_sweep_interval
    while True:
        await sweep_once(store)
        await asyncio.sleep(interval)


def start_sweeper(store: ChatStore, interval: int | None = None) -> asyncio.Task:
    task = asyncio.ensure_future(sweep_loop(store, interval))
    logger.info(
        "Temporary chat sweeper started (interval=%ds)",
        interval or settings.expiry_sweep_interval,
    )
    return task

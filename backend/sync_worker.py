"""Run the settlement sync without the HTTP front end."""

from __future__ import annotations

import asyncio
import logging

from config import configure_logging, settings
from coordinator import SyncCoordinator
from lnd_client import build_ledger
from record_store import build_store

configure_logging()

logger = logging.getLogger(__name__)


async def run() -> None:
    coordinator = SyncCoordinator.from_settings(settings, build_ledger(settings), build_store(settings))
    await coordinator.start()


if __name__ == "__main__":
    logger.info("Starting settlement sync...")
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Settlement sync stopped by user")

"""Startup ordering and restart policy for the two settlement update paths."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from errors import SyncError
from scanner import ReconciliationScanner, ScanResult
from stream_consumer import SettlementStreamConsumer

logger = logging.getLogger(__name__)


def calculate_backoff(attempt: int, base_seconds: float, max_seconds: float) -> float:
    delay = base_seconds * (2 ** max(attempt - 1, 0))
    return min(delay, max_seconds)


class SyncCoordinator:
    """Run a reconciliation pass, then follow the settlement stream.

    The scan always comes first so that settlements which happened while
    nothing was listening are picked up before the subscription starts. When
    the stream fails and restarts are enabled, the coordinator waits out an
    exponential backoff, scans again and resubscribes.
    """

    def __init__(
        self,
        scanner: ReconciliationScanner,
        consumer: SettlementStreamConsumer,
        *,
        rescan_interval_seconds: float = 0.0,
        stream_restart_enabled: bool = True,
        max_stream_restarts: int = 5,
        retry_base_seconds: float = 5,
        retry_max_seconds: float = 300,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._scanner = scanner
        self._consumer = consumer
        self._rescan_interval = rescan_interval_seconds
        self._restart_enabled = stream_restart_enabled
        self._max_restarts = max_stream_restarts
        self._retry_base = retry_base_seconds
        self._retry_max = retry_max_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings, ledger, store) -> "SyncCoordinator":
        timeout = settings.call_timeout_seconds
        return cls(
            ReconciliationScanner(ledger, store, call_timeout=timeout),
            SettlementStreamConsumer(ledger, store, call_timeout=timeout),
            rescan_interval_seconds=settings.rescan_interval_seconds,
            stream_restart_enabled=settings.stream_restart_enabled,
            max_stream_restarts=settings.max_stream_restarts,
            retry_base_seconds=settings.retry_base_seconds,
            retry_max_seconds=settings.retry_max_seconds,
        )

    async def reconcile(self) -> ScanResult | None:
        """Run one scan; a failed listing is logged and reported as ``None``."""
        try:
            result = await self._scanner.run_once()
        except SyncError as exc:
            logger.error("Reconciliation pass aborted: %s", exc)
            return None
        if result.last_error is not None:
            logger.warning("Reconciliation pass had %s failures, last: %s", result.failed, result.last_error)
        return result

    async def _rescan_loop(self) -> None:
        while True:
            await self._sleep(self._rescan_interval)
            try:
                await self.reconcile()
            except Exception as exc:
                logger.exception("Unexpected error in rescan loop: %s", exc)

    async def start(self) -> None:
        await self.reconcile()

        rescan_task = None
        if self._rescan_interval > 0:
            rescan_task = asyncio.create_task(self._rescan_loop())

        failures = 0
        try:
            while True:
                try:
                    await self._consumer.run()
                except SyncError as exc:
                    if self._consumer.events_received:
                        failures = 0
                    failures += 1
                    if not self._restart_enabled or failures > self._max_restarts:
                        logger.error("Settlement stream failed, giving up: %s", exc)
                        raise
                    delay = calculate_backoff(failures, self._retry_base, self._retry_max)
                    logger.warning(
                        "Settlement stream failed (attempt %s/%s), restarting in %ss: %s",
                        failures,
                        self._max_restarts,
                        delay,
                        exc,
                    )
                    await self._sleep(delay)
                    await self.reconcile()
                    continue
                logger.info("Settlement stream ended")
                return
        finally:
            if rescan_task is not None:
                rescan_task.cancel()
                try:
                    await rescan_task
                except asyncio.CancelledError:
                    pass


__all__ = ["SyncCoordinator", "calculate_backoff"]

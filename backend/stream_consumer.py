"""Apply settlements from lnd's invoice subscription as they happen."""

from __future__ import annotations

import asyncio
import logging

from calls import call_blocking
from lnd_client import InvoiceEvent, LedgerClient, SettlementStream
from record_store import RecordStore

logger = logging.getLogger(__name__)

_END_OF_STREAM = object()


def _next_event(stream: SettlementStream) -> object:
    # StopIteration cannot cross a thread future, so map it to a sentinel.
    return next(stream, _END_OF_STREAM)


class SettlementStreamConsumer:
    """Listen for settled invoices and mark the matching records settled.

    Events are handled one at a time in the order they arrive; the store
    writes for an event finish before the next event is read. The loop ends
    normally when the ledger closes the stream and raises on a receive or
    store error. Cancelling the task running :meth:`run` cancels the
    subscription, which releases the thread blocked on the next read.
    """

    def __init__(self, ledger: LedgerClient, store: RecordStore, *, call_timeout: float = 5.0) -> None:
        self._ledger = ledger
        self._store = store
        self._call_timeout = call_timeout
        self.events_received = 0

    async def run(self) -> None:
        self.events_received = 0
        stream = await call_blocking(self._ledger.subscribe_settlements, timeout=self._call_timeout)
        logger.info("Subscribed to invoice updates")
        try:
            while True:
                event = await asyncio.to_thread(_next_event, stream)
                if event is _END_OF_STREAM:
                    logger.info("Invoice subscription closed by the node")
                    return
                self.events_received += 1
                await self.handle(event)
        finally:
            stream.cancel()

    async def handle(self, event: InvoiceEvent) -> int:
        """Apply one event and return the number of records marked settled."""
        if not event.settled:
            return 0

        logger.info("Received %s", event.payment_request)
        records = await call_blocking(
            self._store.find_by_payment_request, event.payment_request, timeout=self._call_timeout
        )
        if not records:
            logger.info("No record for settled invoice %s", event.payment_hash or event.payment_request)
            return 0

        marked = 0
        for record in records:
            if await call_blocking(self._store.mark_settled, record, timeout=self._call_timeout):
                marked += 1
                logger.info("Updated %s", record.payment_request)
        return marked


__all__ = ["SettlementStreamConsumer"]
